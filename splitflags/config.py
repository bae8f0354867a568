# splitflags/config.py
"""Environment-based configuration for SplitFlags.

Values are read from the process environment, after ``.env`` has been
loaded with python-dotenv.
"""


from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


DEFAULT_API_URL = "https://sdk.split.io/api"


def _float_env(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}.") from exc


@dataclass(frozen=True)
class Settings:
    """Runtime settings.

    Attributes:
        api_url: Base URL of the SDK API serving ``/splitChanges``.
        api_key: SDK API key, sent as a bearer token.
        splits_file: Local splitChanges JSON file; when set, splits are
            read from disk instead of the API.
        refresh_interval: Seconds between two synchronization ticks.
        request_timeout: HTTP timeout in seconds for splitChanges calls.
        ready_timeout: Seconds ``create_app`` waits for the first sync.
        log_level: Log level name.
        port: HTTP port of the evaluation service.
        debug: Flask debug mode.
    """

    api_url: str = DEFAULT_API_URL
    api_key: Optional[str] = None
    splits_file: Optional[str] = None
    refresh_interval: float = 30.0
    request_timeout: float = 10.0
    ready_timeout: float = 0.0
    log_level: str = "info"
    port: int = 8000
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        load_dotenv()

        port_raw = os.getenv("BACKEND_PORT", "8000")
        try:
            port = int(port_raw)
        except ValueError as exc:
            raise ValueError(f"BACKEND_PORT must be an integer, got {port_raw!r}.") from exc

        return cls(
            api_url=os.getenv("SPLIT_API_URL", DEFAULT_API_URL),
            api_key=os.getenv("SPLIT_API_KEY") or None,
            splits_file=os.getenv("SPLITS_FILE") or None,
            refresh_interval=_float_env("SPLIT_REFRESH_INTERVAL", "30"),
            request_timeout=_float_env("SPLIT_REQUEST_TIMEOUT", "10"),
            ready_timeout=_float_env("SPLIT_READY_TIMEOUT", "0"),
            log_level=os.getenv("LOG_LEVEL", "info"),
            port=port,
            debug=os.getenv("DEBUG", "false").lower() == "true",
        )

# splitflags/services/fetchers.py
"""Fetch collaborators for the synchronization pipeline.

A fetcher is any object with ``fetch(since) -> dict`` returning a
splitChanges envelope ``{"since", "till", "splits"}`` and raising
``FetchError`` when nothing usable could be retrieved.
"""


from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

import requests
import structlog

from splitflags.errors.handlers import FetchError


logger = structlog.get_logger(__name__)


def empty_changes(since: int) -> Dict[str, Any]:
    """Build a "no changes" envelope for ``since``."""
    return {"since": since, "till": since, "splits": []}


class HttpSplitChangesFetcher:
    """Fetch split changes from the ``splitChanges`` HTTP endpoint.

    Args:
        base_url: SDK API base URL, for example ``https://sdk.split.io/api``.
        api_key: SDK API key sent as a bearer token.
        timeout: Request timeout in seconds.
        session: Optional ``requests.Session`` to reuse connections.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._url = base_url.rstrip("/") + "/splitChanges"
        self._api_key = api_key
        self._timeout = timeout
        self._session = session or requests.Session()

    def fetch(self, since: int) -> Dict[str, Any]:
        """GET the changes that happened after ``since``.

        Raises:
            FetchError: On transport errors, non-2xx responses or bodies
                that are not JSON.
        """
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        try:
            response = self._session.get(
                self._url,
                params={"since": since},
                headers=headers,
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise FetchError(f"splitChanges request failed: {exc}") from exc

        try:
            return response.json()
        except ValueError as exc:
            raise FetchError("splitChanges response is not valid JSON.") from exc


class LocalFileSplitChangesFetcher:
    """Serve split changes from a splitChanges JSON document on disk.

    Useful for local development and tests. Once the cursor has reached the
    file's ``till``, every further fetch reports no changes; editing the
    file with a higher ``till`` makes the new definitions visible.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)

    def fetch(self, since: int) -> Dict[str, Any]:
        try:
            with self._path.open("r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, ValueError) as exc:
            raise FetchError(f"Cannot read splits file {self._path}: {exc}") from exc

        if not isinstance(document, dict):
            raise FetchError(f"Splits file {self._path} must hold a JSON object.")

        till = document.get("till", -1)
        if not isinstance(till, int) or till <= since:
            return empty_changes(since)

        logger.debug("fetcher.local_file_loaded", path=str(self._path), till=till)
        return {
            "since": since,
            "till": till,
            "splits": document.get("splits") or [],
        }

# splitflags/app.py

"""SplitFlags evaluation service entrypoint.

This module creates and configures the Flask application: it wires the
split synchronizer (HTTP or local-file fetcher) to the snapshot repository,
exposes the evaluation endpoints and applies development-time CORS
settings. It then starts the HTTP server using environment-based
configuration.
"""

from __future__ import annotations

from typing import Optional

from flask import Flask
from flask_cors import CORS

from splitflags.blueprints.system.health import health_bp
from splitflags.blueprints.treatments.treatments import treatments_bp
from splitflags.config import Settings
from splitflags.errors.handlers import register_error_handlers
from splitflags.logging_config import configure_logging
from splitflags.repositories.snapshot_repo import SnapshotRepository
from splitflags.services.fetchers import (
    HttpSplitChangesFetcher,
    LocalFileSplitChangesFetcher,
)
from splitflags.services.sync_service import SplitChangesFetcher, SplitSynchronizer
from splitflags.services.treatment_service import TreatmentClient


def build_fetcher(settings: Settings) -> SplitChangesFetcher:
    """Pick the fetch collaborator described by ``settings``.

    A configured ``splits_file`` takes precedence over the HTTP API.
    """
    if settings.splits_file:
        return LocalFileSplitChangesFetcher(settings.splits_file)
    return HttpSplitChangesFetcher(
        base_url=settings.api_url,
        api_key=settings.api_key,
        timeout=settings.request_timeout,
    )


def create_app(
    settings: Optional[Settings] = None,
    fetcher: Optional[SplitChangesFetcher] = None,
    start_sync: bool = True,
) -> Flask:
    """Create and configure the SplitFlags Flask application instance.

    Args:
        settings: Explicit settings; read from the environment when omitted.
        fetcher: Explicit fetch collaborator; built from settings when omitted.
        start_sync: Start the background synchronizer immediately.

    Returns:
        Flask: A configured Flask application instance.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = Flask(__name__)

    # Register JSON error handlers (400/404/500, etc.).
    register_error_handlers(app)

    repository = SnapshotRepository()
    synchronizer = SplitSynchronizer(
        fetcher=fetcher or build_fetcher(settings),
        repository=repository,
        interval=settings.refresh_interval,
    )
    app.extensions["splitflags"] = {
        "settings": settings,
        "synchronizer": synchronizer,
        "client": TreatmentClient(repository),
    }

    # System & health
    app.register_blueprint(health_bp)         # /health/

    # Public evaluation endpoints
    app.register_blueprint(treatments_bp)     # /treatments/

    if start_sync:
        synchronizer.start()
        if settings.ready_timeout > 0:
            synchronizer.block_until_ready(settings.ready_timeout)

    return app


if __name__ == "__main__":
    settings = Settings.from_env()
    app = create_app(settings)

    # Allow local React development frontends to call this API directly.
    # In production, CORS should be enforced at the reverse proxy layer.
    CORS(
        app,
        resources={
            r"/*": {
                "origins": [
                    "http://localhost:3000",
                    "http://localhost:5173",
                ],
            },
        },
        supports_credentials=False,
        allow_headers=["Content-Type"],
        methods=["GET", "POST", "OPTIONS"],
    )

    app.run(
        host="0.0.0.0",
        port=settings.port,
        debug=settings.debug,
    )

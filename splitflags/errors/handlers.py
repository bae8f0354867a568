# splitflags/errors/handlers.py
"""Centralized error types and JSON error handling for SplitFlags.

Defines the domain exceptions raised by the synchronization pipeline and
the HTTP layer, and registers Flask error handlers so that errors are
returned as consistent JSON payloads instead of HTML pages.

Evaluation code never lets any of these escape to callers: a failed
evaluation degrades to the ``control`` treatment instead.
"""


from __future__ import annotations

from typing import Any

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException


class SplitflagsError(Exception):
    """Base class for engine and synchronization errors.

    Attributes:
        detail: Human-readable description of the error.
    """

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class SplitParseError(SplitflagsError):
    """Raised when a single raw split definition cannot be parsed."""

    def __init__(self, detail: str, split_name: str | None = None) -> None:
        super().__init__(detail)
        self.split_name = split_name


class FetchError(SplitflagsError):
    """Raised by fetch collaborators on transport or payload failures."""


class InvariantViolation(SplitflagsError):
    """Raised when a published state would break a monotonic invariant."""


class BadRequest(Exception):
    """Exception raised for bad requests (HTTP 400).

    Attributes:
        detail: Human-readable description of the error.
    """

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


def register_error_handlers(app: Flask) -> None:
    """Register JSON error handlers for common HTTP errors.

    Attaches Flask error handlers so the API always returns JSON
    instead of HTML error pages.

    Args:
        app: The Flask application instance to configure.
    """

    @app.errorhandler(BadRequest)
    def _on_bad_request(err: BadRequest) -> tuple[Any, int]:
        """Return HTTP 400 for validation/contract issues."""
        return jsonify({"error": "BadRequest", "detail": err.detail}), 400

    @app.errorhandler(HTTPException)
    def _on_http_exception(err: HTTPException) -> tuple[Any, int]:
        """Fallback for other HTTP errors (for example 405)."""
        code = err.code or 500
        name = err.name or "HTTPException"
        return jsonify({"error": name, "detail": err.description}), code

    @app.errorhandler(Exception)
    def _on_unexpected(_: Exception) -> tuple[Any, int]:
        """Last-resort handler to avoid HTML stack traces."""
        return (
            jsonify(
                {
                    "error": "InternalServerError",
                    "detail": "An unexpected error occurred.",
                }
            ),
            500,
        )

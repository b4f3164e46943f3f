"""Exception hierarchy shared by the gateway boundaries.

Every error carries the HTTP status used by the FastAPI exception handler
to render a ``{"error": message}`` body.
"""
from __future__ import annotations


class GatewayError(Exception):
    """Base class for errors that map onto a client-visible response."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(GatewayError):
    """Requested install, app, tool or integration does not exist."""

    status_code = 404


class InvalidInputError(GatewayError):
    """Missing required parameter, malformed state token or unknown session."""

    status_code = 400


class UpstreamError(GatewayError):
    """The component engine or a provider loader/action failed."""

    status_code = 500


__all__ = [
    "GatewayError",
    "NotFoundError",
    "InvalidInputError",
    "UpstreamError",
]

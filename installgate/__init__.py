"""installgate - multi-tenant MCP integration gateway."""
from __future__ import annotations

from .errors import GatewayError, InvalidInputError, NotFoundError, UpstreamError
from .gateway import Gateway
from .main import create_app
from .settings import Settings, load_settings

__all__ = [
    "Gateway",
    "GatewayError",
    "InvalidInputError",
    "NotFoundError",
    "Settings",
    "UpstreamError",
    "create_app",
    "load_settings",
]

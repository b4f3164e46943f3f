"""Select the install and app an inbound request is addressed to."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote

from starlette.requests import Request

from .errors import InvalidInputError
from .oauth import decode_state

# Second path segments that name an endpoint rather than an install id
APP_ENDPOINTS = frozenset({"mcp", "oauth", "bindings", "channels"})

_APP_PATH = re.compile(r"^/apps/(?P<app>[^/]+)(?:/(?P<install>[^/]+))?(?:/|$)")


@dataclass(frozen=True)
class RequestTarget:
    app_name: str | None = None
    install_id: str | None = None
    state: dict[str, Any] | None = None


def install_id_from_authorization(header: str | None) -> str | None:
    """``Bearer <installId>`` -> ``<installId>``, whatever the scheme."""
    if not header:
        return None
    parts = header.split()
    return parts[1] if len(parts) > 1 else None


def parse_app_path(path: str) -> tuple[str | None, str | None]:
    match = _APP_PATH.match(path)
    if match is None:
        return None, None
    install_id = match.group("install")
    if install_id in APP_ENDPOINTS:
        install_id = None
    return unquote(match.group("app")), unquote(install_id) if install_id else None


def identify(request: Request) -> RequestTarget:
    """Resolve the request target.

    Install id precedence: Authorization header, ``installId`` query
    parameter, ``/apps/{app}/{installId}/...`` path, then a decodable
    ``state`` query parameter.
    """
    path_app, path_install_id = parse_app_path(request.url.path)
    install_id = (
        install_id_from_authorization(request.headers.get("authorization"))
        or request.query_params.get("installId")
        or path_install_id
    )

    state = None
    raw_state = request.query_params.get("state")
    if not install_id and raw_state:
        try:
            state = decode_state(raw_state)
        except InvalidInputError:
            state = None
        if state:
            install_id = state.get("installId")

    app_name = request.query_params.get("appName") or path_app or (state or {}).get("appName")
    return RequestTarget(app_name=app_name, install_id=install_id, state=state)


__all__ = [
    "APP_ENDPOINTS",
    "RequestTarget",
    "identify",
    "install_id_from_authorization",
    "parse_app_path",
]

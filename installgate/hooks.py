"""Inbound binding and channel webhooks forwarded to the installed app."""
from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .discovery import find_compatible_app
from .oauth import to_response

if TYPE_CHECKING:
    from .engine import Runtime

logger = logging.getLogger(__name__)

BINDING_INVOKE_ACTION = "/actions/bindings/invoke"
CHANNEL_INVOKE_ACTION = "/actions/channels/invoke"


async def read_body(request: Request) -> Any:
    """JSON bodies are parsed, anything else is passed on as text. Unreadable bodies become ``None``."""
    raw = await request.body()
    if "application/json" in request.headers.get("content-type", ""):
        try:
            return json.loads(raw) if raw else None
        except ValueError:
            return None
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return None


async def invoke_hook(runtime: Runtime, request: Request, action_suffix: str) -> Response:
    invoke_app = await find_compatible_app(runtime, action_suffix)
    if invoke_app is None:
        return JSONResponse({"error": "App not found"}, status_code=404)

    body = await read_body(request)
    props = body if isinstance(body, dict) else {"body": body}
    result = await runtime.invoke(f"{invoke_app}{action_suffix}", props)
    logger.debug("Forwarded %s hook to %s", action_suffix, invoke_app)
    return to_response(result) or Response(status_code=204)


__all__ = ["BINDING_INVOKE_ACTION", "CHANNEL_INVOKE_ACTION", "invoke_hook", "read_body"]

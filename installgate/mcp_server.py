"""MCP streamable-HTTP surface for resolved instances."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import Receive, Scope, Send

from .errors import GatewayError

if TYPE_CHECKING:
    from .gateway import Gateway
    from .protocol import ToolPipeline

logger = logging.getLogger(__name__)


def build_server(pipeline: ToolPipeline, name: str) -> Server:
    server: Server = Server(name)

    @server.list_tools()
    async def list_tools() -> list[types.Tool]:
        return [tool.to_mcp() for tool in await pipeline.list_tools()]

    # Arguments are validated by the blocks themselves
    @server.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict[str, Any]) -> Any:
        result = await pipeline.call_tool(name, arguments)
        return result.to_mcp_content(), result.structured_content

    return server


class MCPEndpoint:
    """ASGI endpoint resolving the target instance, then serving one stateless MCP exchange."""

    def __init__(self, gateway: Gateway) -> None:
        self.gateway = gateway

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        try:
            instance = await self.gateway.instance_for(request)
        except GatewayError as exc:
            response = JSONResponse({"error": exc.message}, status_code=exc.status_code)
            await response(scope, receive, send)
            return

        manager = StreamableHTTPSessionManager(app=instance.server, json_response=True, stateless=True)
        async with manager.run():
            await manager.handle_request(scope, receive, send)


__all__ = ["MCPEndpoint", "build_server"]

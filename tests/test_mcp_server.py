from __future__ import annotations

import mcp.types as types
import pytest

from installgate.mcp_server import build_server


@pytest.mark.asyncio
async def test_server_registers_tool_handlers(gateway) -> None:
    instance = await gateway.resolver.resolve("i1", "acme")

    server = build_server(instance.pipeline, "installgate-acme")

    assert types.ListToolsRequest in server.request_handlers
    assert types.CallToolRequest in server.request_handlers


@pytest.mark.asyncio
async def test_list_handler_exposes_pipeline_tools(gateway) -> None:
    instance = await gateway.resolver.resolve("i1", "acme")
    handler = instance.server.request_handlers[types.ListToolsRequest]

    result = await handler(types.ListToolsRequest(method="tools/list"))

    names = [tool.name for tool in result.root.tools]
    assert names == [tool.name for tool in await instance.pipeline.list_tools()]

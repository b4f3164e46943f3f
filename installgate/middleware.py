"""Synthetic per-app tools layered over an instance's own tool listing."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .discovery import ToolDescriptor
from .protocol import CallNext, CallToolRequest, ListNext, response_payload

if TYPE_CHECKING:
    from .catalog import IntegrationCatalog
    from .configuration import Configurator
    from .engine import Runtime
    from .oauth import OAuthBridge

logger = logging.getLogger(__name__)

CHECK_CONFIGURATION_TOOL = "CONFIGURATION_CHECK"
CONFIGURE_MCP_TOOL = "CONFIGURE"
OAUTH_START_TOOL = "DECO_CHAT_OAUTH_START"

SYNTHETIC_PROVIDER = "gateway"

CHECK_DESCRIPTION = (
    "Check if the configuration is valid, no input is needed, you should ensure first (once) "
    "if the configuration is valid before calling any tool, once checked, you can freely call "
    "tools. It also returns the JSON Schema of the configuration."
)


def slugify(app_name: str) -> str:
    return app_name.replace(" ", "_")


def oauth_tool() -> ToolDescriptor:
    return ToolDescriptor(
        name=OAUTH_START_TOOL,
        description="Start the OAuth flow for the given app",
        input_schema={
            "type": "object",
            "properties": {
                "appName": {"type": "string"},
                "installId": {"type": "string"},
                "returnUrl": {"type": "string"},
            },
            "required": [],
            "additionalProperties": False,
        },
        output_schema={
            "type": "object",
            "properties": {
                "redirectUrl": {"type": ["string", "null"]},
                "stateSchema": {"type": "object"},
                "error": {"type": "string"},
            },
        },
        resolve_type=OAUTH_START_TOOL,
        provider=SYNTHETIC_PROVIDER,
    )


class ConfigurationMiddleware:
    """Adds ``<app>_CONFIGURATION_CHECK``, ``<app>_CONFIGURE`` and the OAuth start tool.

    Synthetic tools are appended after the native ones; calls fall through to
    the next handler unless the name matches a synthetic tool exactly.
    """

    def __init__(
        self,
        app_name: str,
        install_id: str,
        runtime: Runtime,
        configurator: Configurator,
        catalog: IntegrationCatalog,
        oauth: OAuthBridge,
    ) -> None:
        self.app_name = app_name
        self.install_id = install_id
        self.runtime = runtime
        self.configurator = configurator
        self.catalog = catalog
        self.oauth = oauth
        self.check_tool_name = f"{slugify(app_name)}_{CHECK_CONFIGURATION_TOOL}"
        self.configure_tool_name = f"{slugify(app_name)}_{CONFIGURE_MCP_TOOL}"

    def _synthetic_tools(self) -> list[ToolDescriptor]:
        entry = self.catalog.get(self.app_name)
        return [
            ToolDescriptor(
                name=self.check_tool_name,
                description=CHECK_DESCRIPTION,
                input_schema={"type": "object"},
                output_schema={
                    "type": "object",
                    "properties": {
                        "success": {"type": "boolean"},
                        "errors": {"type": "array", "items": {"type": "string"}},
                        "inputSchema": {"type": "object"},
                        "config": {"type": "object"},
                    },
                },
                resolve_type=self.check_tool_name,
                provider=SYNTHETIC_PROVIDER,
            ),
            ToolDescriptor(
                name=self.configure_tool_name,
                description="Configure the MCP, input is the configuration",
                input_schema=entry.input_schema if entry else {"type": "object"},
                output_schema={"type": "object"},
                resolve_type=self.configure_tool_name,
                provider=SYNTHETIC_PROVIDER,
            ),
        ]

    async def list_tools(self, next_handler: ListNext) -> list[ToolDescriptor]:
        tools = await next_handler()
        has_oauth = any(tool.name == OAUTH_START_TOOL for tool in tools)
        return [*tools, *([] if has_oauth else [oauth_tool()]), *self._synthetic_tools()]

    async def call_tool(self, request: CallToolRequest, next_handler: CallNext) -> Any:
        if request.name == OAUTH_START_TOOL:
            return await self._start_oauth(request.arguments)
        if request.name == self.configure_tool_name:
            return await self.configurator.configure(self.app_name, self.install_id, request.arguments)
        if request.name == self.check_tool_name:
            return await self.configurator.check(self.install_id)
        return await next_handler(request)

    async def _start_oauth(self, arguments: dict[str, Any]) -> dict[str, Any]:
        response = await self.oauth.start(
            self.runtime,
            self.app_name,
            arguments.get("installId") or self.install_id,
            return_url=arguments.get("returnUrl"),
        )
        payload = response_payload(response)
        if payload.get("location"):
            return {"redirectUrl": payload["location"]}
        body = payload.get("body")
        if isinstance(body, dict) and "stateSchema" in body:
            return {"stateSchema": body["stateSchema"]}
        result: dict[str, Any] = {"redirectUrl": None}
        if isinstance(body, dict) and body.get("error"):
            result["error"] = body["error"]
        return result


__all__ = [
    "CHECK_CONFIGURATION_TOOL",
    "CONFIGURE_MCP_TOOL",
    "ConfigurationMiddleware",
    "OAUTH_START_TOOL",
    "oauth_tool",
    "slugify",
]

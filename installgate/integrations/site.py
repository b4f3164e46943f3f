"""Registry-wide blocks: search the catalog, configure and check installs."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..catalog import IntegrationCatalog
    from ..configuration import Configurator
    from ..engine import InvocationContext, Manifest

CONFIGURE_INPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "description": "The id of the MCP to install"},
        "installId": {
            "type": "string",
            "description": "ID of the install, its optional, if passed, will update the existing install",
        },
        "props": {
            "type": "object",
            "description": "The properties to pass to the MCP",
            "additionalProperties": True,
        },
    },
    "required": ["id"],
}


def register_site_blocks(
    manifest: Manifest,
    catalog: IntegrationCatalog,
    configurator: Configurator,
) -> None:
    @manifest.site_block(
        "site/loaders/mcps/search",
        title="SEARCH",
        description=(
            "Search for integrations by name or description. "
            "If no query is provided, all integrations will be returned."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "provider": {"type": "string"},
            },
        },
    )
    def search(props: dict[str, Any], ctx: InvocationContext) -> list[dict[str, Any]]:
        entries = catalog.search(props.get("query") or "", props.get("provider"))
        return [entry.to_dict() for entry in entries]

    @manifest.site_block(
        "site/loaders/mcps/list",
        title="LIST_AVAILABLE_MCPS",
        description="List all available MCPs",
    )
    def list_available(props: dict[str, Any], ctx: InvocationContext) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in catalog.list()]

    @manifest.site_block(
        "site/loaders/mcps/get",
        title="GET",
        description="Get an MCP by id.",
        input_schema={
            "type": "object",
            "properties": {"id": {"type": "string"}},
            "required": ["id"],
        },
    )
    def get(props: dict[str, Any], ctx: InvocationContext) -> dict[str, Any] | None:
        entry = catalog.get(props.get("id") or "")
        return entry.to_dict() if entry else None

    @manifest.site_block(
        "site/actions/mcps/configure",
        title="CONFIGURE",
        description="Configure an MCP and returns its url",
        input_schema=CONFIGURE_INPUT_SCHEMA,
    )
    async def configure(props: dict[str, Any], ctx: InvocationContext) -> dict[str, Any]:
        return await configurator.configure(props.get("id") or "", props.get("installId"), props.get("props") or {})

    @manifest.site_block(
        "site/actions/mcps/check",
        title="CONFIGURATION_CHECK",
        description="Check the configuration of an MCP if any error occurs so CONFIGURE should be used",
        input_schema={
            "type": "object",
            "properties": {"installId": {"type": "string"}},
            "required": ["installId"],
        },
    )
    async def check(props: dict[str, Any], ctx: InvocationContext) -> dict[str, Any]:
        return await configurator.check(props.get("installId"))


__all__ = ["CONFIGURE_INPUT_SCHEMA", "register_site_blocks"]

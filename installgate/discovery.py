"""Tool discovery over an execution context's exported schema graph."""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Mapping

from mcp.types import Tool as MCPTool

from .engine import (
    ACTIONS,
    LOADERS,
    RESOLVABLE_DEFINITION,
    empty_object_schema,
)
from .install_store import RESOLVE_TYPE_KEY

if TYPE_CHECKING:
    from .engine import Runtime

logger = logging.getLogger(__name__)

DEFAULT_BLOCKS = (LOADERS, ACTIONS)

# Keywords whose values are subschemas (or lists / maps of subschemas)
_SCHEMA_LIST_KEYWORDS = ("allOf", "anyOf", "oneOf", "prefixItems")
_SCHEMA_MAP_KEYWORDS = ("properties", "patternProperties")
_SCHEMA_KEYWORDS = ("additionalProperties", "items", "not", "if", "then", "else")


@dataclass
class ToolDescriptor:
    name: str
    description: str
    input_schema: dict[str, Any]
    output_schema: dict[str, Any] | None = None
    resolve_type: str = ""
    provider: str = "native"
    title: str | None = None
    icon: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
            "outputSchema": self.output_schema,
            "resolveType": self.resolve_type,
            "provider": self.provider,
        }
        if self.title:
            payload["title"] = self.title
        if self.icon:
            payload["icon"] = self.icon
        return payload

    def to_mcp(self) -> MCPTool:
        return MCPTool(
            name=self.name,
            title=self.title,
            description=self.description,
            inputSchema=self.input_schema,
            outputSchema=self.output_schema,
        )


def id_from_definition(ref: str) -> str:
    """``#/definitions/<id>`` -> ``<id>``."""
    parts = ref.split("/")
    return parts[2] if len(parts) > 2 else ""


def dereference_schema(schema: Any, definitions: Mapping[str, Any]) -> Any:
    """Inline every ``$ref`` in ``schema`` against ``definitions``.

    A reference already being expanded on the current path, or one that
    points nowhere, becomes an empty object schema, so self-referential
    graphs terminate.
    """
    return _dereference(schema, definitions, frozenset())


def _dereference(node: Any, definitions: Mapping[str, Any], seen: frozenset[str]) -> Any:
    if not isinstance(node, dict):
        return copy.deepcopy(node)

    ref = node.get("$ref")
    if isinstance(ref, str):
        ref_id = id_from_definition(ref)
        target = definitions.get(ref_id)
        if ref_id in seen or not isinstance(target, dict):
            return empty_object_schema()
        resolved = _dereference(target, definitions, seen | {ref_id})
        siblings = {key: value for key, value in node.items() if key != "$ref"}
        if siblings:
            resolved = {**resolved, **_dereference(siblings, definitions, seen)}
        return resolved

    result: dict[str, Any] = {}
    for key, value in node.items():
        if key in _SCHEMA_LIST_KEYWORDS and isinstance(value, list):
            result[key] = [_dereference(item, definitions, seen) for item in value]
        elif key in _SCHEMA_MAP_KEYWORDS and isinstance(value, dict):
            result[key] = {
                name: _dereference(item, definitions, seen) for name, item in value.items()
            }
        elif key in _SCHEMA_KEYWORDS and isinstance(value, dict):
            result[key] = _dereference(value, definitions, seen)
        elif key == "items" and isinstance(value, list):
            result[key] = [_dereference(item, definitions, seen) for item in value]
        elif key == "definitions":
            continue
        else:
            result[key] = copy.deepcopy(value)
    return result


def _input_schema(definition: Mapping[str, Any], definitions: Mapping[str, Any]) -> dict[str, Any]:
    all_of = definition.get("allOf") or []
    ref = all_of[0].get("$ref") if all_of and isinstance(all_of[0], dict) else None
    if not ref:
        return empty_object_schema()
    schema = dereference_schema({"$ref": ref}, definitions)
    if isinstance(schema, dict) and schema.get("type") == "object":
        return schema
    return empty_object_schema()


def tools_from_schema(
    schema: Mapping[str, Any] | None,
    blocks: Iterable[str] = DEFAULT_BLOCKS,
) -> list[ToolDescriptor]:
    if not schema:
        return []
    definitions = schema.get("definitions") or {}
    root = schema.get("root") or {}

    tools: list[ToolDescriptor] = []
    seen_names: set[str] = set()
    for block in blocks:
        for entry in (root.get(block) or {}).get("anyOf") or []:
            ref = entry.get("$ref") if isinstance(entry, dict) else None
            if not ref or ref == RESOLVABLE_DEFINITION:
                continue
            definition = definitions.get(id_from_definition(ref))
            if not isinstance(definition, dict):
                logger.debug("Skipping dangling tool reference %s", ref)
                continue
            resolve_type = (
                (definition.get("properties") or {}).get(RESOLVE_TYPE_KEY) or {}
            ).get("default")
            if not resolve_type or resolve_type in seen_names:
                continue
            seen_names.add(resolve_type)

            input_schema = _input_schema(definition, definitions)
            output_schema = definition.get("outputSchema")
            tools.append(
                ToolDescriptor(
                    name=resolve_type,
                    title=definition.get("title"),
                    description=definition.get("description") or input_schema.get("description") or "",
                    input_schema=input_schema,
                    output_schema=dereference_schema(output_schema, definitions) if output_schema else None,
                    resolve_type=resolve_type,
                    icon=definition.get("icon"),
                )
            )
    return tools


async def list_tools(runtime: Runtime, blocks: Iterable[str] = DEFAULT_BLOCKS) -> list[ToolDescriptor]:
    return tools_from_schema(await runtime.meta(), blocks)


async def find_compatible_app(runtime: Runtime, path_suffix: str) -> str | None:
    """Return the prefix of the first tool whose resolve type ends with ``path_suffix``.

    ``"github/loaders/oauth/start"`` with suffix ``"/loaders/oauth/start"``
    yields ``"github"``.
    """
    for tool in await list_tools(runtime):
        if tool.resolve_type.endswith(path_suffix):
            return tool.resolve_type[: -len(path_suffix)]
    return None


__all__ = [
    "DEFAULT_BLOCKS",
    "ToolDescriptor",
    "dereference_schema",
    "find_compatible_app",
    "id_from_definition",
    "list_tools",
    "tools_from_schema",
]

"""Configure and check installs."""
from __future__ import annotations

import logging
import re
import uuid
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError
from jsonschema.validators import validator_for

from .install_store import RESOLVE_TYPE_KEY, InstallStore, strip_resolve_type

if TYPE_CHECKING:
    from .catalog import IntegrationCatalog
    from .settings import Settings

logger = logging.getLogger(__name__)

CONNECTION_TYPE = "HTTP"
REDACTED = "********"
_SECRET_KEY_PATTERN = re.compile(r"secret|token|password|passwd|api[_-]?key|private[_-]?key", re.IGNORECASE)


def connection_url(base_url: str, app_id: str, install_id: str) -> str:
    return f"{base_url}/apps/{quote(app_id, safe='')}/{quote(install_id, safe='')}/mcp/messages"


def _is_secret(name: str, schema: Any) -> bool:
    if isinstance(schema, dict) and (schema.get("format") == "password" or schema.get("writeOnly")):
        return True
    return bool(_SECRET_KEY_PATTERN.search(name))


def redact(config: dict[str, Any], schema: dict[str, Any] | None = None) -> dict[str, Any]:
    """Mask values of secret-looking properties, recursing into nested objects."""
    properties = (schema or {}).get("properties") or {}
    redacted: dict[str, Any] = {}
    for name, value in config.items():
        prop_schema = properties.get(name)
        if value not in (None, "") and _is_secret(name, prop_schema):
            redacted[name] = REDACTED
        elif isinstance(value, dict):
            redacted[name] = redact(value, prop_schema if isinstance(prop_schema, dict) else None)
        else:
            redacted[name] = value
    return redacted


def validation_errors(schema: dict[str, Any], instance: Any) -> list[str]:
    cls = validator_for(schema, default=Draft7Validator)
    try:
        cls.check_schema(schema)
    except SchemaError as exc:
        return [f"Invalid input schema: {exc.message}"]
    validator = cls(schema)
    errors = sorted(
        validator.iter_errors(instance),
        key=lambda error: [str(part) for part in error.absolute_path],
    )
    return [error.message for error in errors]


class Configurator:
    def __init__(self, store: InstallStore, catalog: IntegrationCatalog, settings: Settings) -> None:
        self.store = store
        self.catalog = catalog
        self.settings = settings

    async def configure(
        self,
        app_id: str,
        install_id: str | None = None,
        props: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Persist ``props`` for ``app_id`` under ``install_id``, replacing any previous record.

        A missing install id is generated. Writing through the store
        invalidates the cached instance for that install.
        """
        integration = self.catalog.get(app_id)
        if integration is None or not integration.resolve_type:
            return {"success": False, "message": f"MCP {app_id} not found"}

        install_id = install_id or str(uuid.uuid4())
        record = {app_id: {**(props or {}), RESOLVE_TYPE_KEY: integration.resolve_type}}
        await self.store.set(install_id, record)
        logger.info("Configured %s for install %s", app_id, install_id)

        return {
            "success": True,
            "installId": install_id,
            "data": {
                "name": integration.name,
                "description": integration.description,
                "icon": integration.icon,
                "connection": {
                    "url": connection_url(self.settings.base_url, app_id, install_id),
                    "type": CONNECTION_TYPE,
                },
            },
        }

    async def check(self, install_id: str | None) -> dict[str, Any]:
        """Validate the stored configuration of ``install_id`` against its app's input schema."""
        if not install_id:
            return {"success": False, "errors": ["Install ID is required"]}

        record = await self.store.get(install_id)
        if not record:
            return {"success": False, "errors": ["Install not found"]}

        app_id = next(iter(record))
        integration = self.catalog.get(app_id)
        if integration is None:
            return {"success": False, "errors": ["MCP not found"]}

        schema = integration.input_schema
        config = strip_resolve_type(record[app_id])
        errors = validation_errors(schema, config)
        return {
            "success": not errors,
            "errors": errors,
            "inputSchema": schema,
            "config": redact(config, schema),
        }

    async def get_configuration(self, install_id: str) -> dict[str, Any] | None:
        """Return the stored properties of ``install_id`` without the resolve-type marker."""
        record = await self.store.get(install_id)
        if not record:
            return None
        return strip_resolve_type(next(iter(record.values())))


__all__ = [
    "CONNECTION_TYPE",
    "Configurator",
    "REDACTED",
    "connection_url",
    "redact",
    "validation_errors",
]

"""Catalog of installable integrations."""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any

from .discovery import ToolDescriptor, tools_from_schema
from .engine import APPS, Manifest, build_schema


@dataclass
class CatalogEntry(ToolDescriptor):
    @property
    def id(self) -> str:
        return self.name

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, **super().to_dict()}


class IntegrationCatalog:
    """Entries are built once per manifest version and reused across requests."""

    def __init__(self, manifest: Manifest) -> None:
        self.manifest = manifest
        self._entries: dict[str, CatalogEntry] = {}
        self._version: int | None = None

    def _load(self) -> dict[str, CatalogEntry]:
        if self._version != self.manifest.version:
            entries: dict[str, CatalogEntry] = {}
            for tool in tools_from_schema(build_schema(self.manifest, []), (APPS,)):
                # App tools are keyed by the bare app name rather than site/apps/<name>
                name = tool.title or tool.resolve_type.rsplit("/", 1)[-1]
                entries[name] = CatalogEntry(**{**dataclasses.asdict(tool), "name": name})
            self._entries = entries
            self._version = self.manifest.version
        return self._entries

    def list(self) -> list[CatalogEntry]:
        return list(self._load().values())

    def search(self, query: str = "", provider: str | None = None) -> list[CatalogEntry]:
        """Case-insensitive match on name or description; an empty query matches everything."""
        needle = query.lower()
        return [
            entry
            for entry in self.list()
            if (provider is None or entry.provider == provider)
            and (needle in entry.name.lower() or needle in entry.description.lower())
        ]

    def get(self, integration_id: str) -> CatalogEntry | None:
        return self._load().get(integration_id)


__all__ = ["CatalogEntry", "IntegrationCatalog"]

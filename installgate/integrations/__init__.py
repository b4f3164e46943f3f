"""Integration registration for installgate."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..catalog import IntegrationCatalog
    from ..configuration import Configurator
    from ..engine import Manifest


def register_all_integrations(manifest: "Manifest") -> None:
    """Register every built-in installable app with the manifest."""
    from .discohook import register_discohook
    from .github import register_github
    from .spoonacular import register_spoonacular

    register_github(manifest)
    register_spoonacular(manifest)
    register_discohook(manifest)


def register_site_blocks(
    manifest: "Manifest",
    catalog: "IntegrationCatalog",
    configurator: "Configurator",
) -> None:
    """Register the registry-wide discovery and management blocks."""
    from .site import register_site_blocks as register

    register(manifest, catalog, configurator)


__all__ = ["register_all_integrations", "register_site_blocks"]

"""Wires stores, caches, engine and bridges into one gateway object."""
from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from starlette.requests import Request

from .catalog import IntegrationCatalog
from .configuration import Configurator
from .db import build_engine, build_sessionmaker, init_db
from .engine import ComponentEngine, Manifest
from .errors import NotFoundError
from .identify import identify
from .install_store import InstallStore
from .instances import InstanceCache
from .integrations import register_all_integrations, register_site_blocks
from .oauth import OAuthBridge
from .resolver import Instance, InstanceResolver
from .sessions import CustomBotSessionStore, sweep_loop
from .settings import Settings, load_settings

logger = logging.getLogger(__name__)


class Gateway:
    """Owns every process-wide component. Tests build one per case."""

    def __init__(
        self,
        settings: Settings | None = None,
        manifest: Manifest | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or load_settings()

        self.db_engine = build_engine(self.settings.database_url)
        self.session_factory = build_sessionmaker(self.db_engine)

        self.cache: InstanceCache[Instance] = InstanceCache(
            maxsize=self.settings.instance_cache_size,
            ttl=self.settings.instance_cache_ttl_seconds,
        )
        # Every install write drops the cached instance for that install
        self.store = InstallStore(self.session_factory, on_change=self.cache.delete)

        if manifest is None:
            manifest = Manifest()
            register_all_integrations(manifest)
        self.manifest = manifest
        self.catalog = IntegrationCatalog(self.manifest)
        self.configurator = Configurator(self.store, self.catalog, self.settings)
        register_site_blocks(self.manifest, self.catalog, self.configurator)

        self.sessions = CustomBotSessionStore(ttl_seconds=self.settings.session_ttl_seconds)
        self.oauth = OAuthBridge(self.settings, self.sessions, self.catalog)
        self.engine = ComponentEngine(self.manifest, http=http)
        self.resolver = InstanceResolver(
            store=self.store,
            cache=self.cache,
            engine=self.engine,
            configurator=self.configurator,
            catalog=self.catalog,
            oauth=self.oauth,
        )

        self.shutdown_event = asyncio.Event()
        self._sweep_task: asyncio.Task[Any] | None = None

    async def start(self) -> None:
        init_db(self.db_engine)
        await self.resolver.start()
        self.shutdown_event.clear()
        self._sweep_task = asyncio.create_task(
            sweep_loop(self.sessions, self.shutdown_event, self.settings.session_sweep_interval_seconds)
        )
        logger.info("Gateway started at %s", self.settings.base_url)

    async def aclose(self) -> None:
        logger.info("Shutting down gracefully...")
        self.shutdown_event.set()
        if self._sweep_task and not self._sweep_task.done():
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None
        await self.engine.aclose()
        self.db_engine.dispose()
        logger.info("Shutdown complete")

    async def instance_for(self, request: Request) -> Instance:
        """Resolve the instance addressed by ``request``.

        An app name without any install id gets a fresh install with an
        empty configuration before resolution.
        """
        target = identify(request)
        install_id = target.install_id
        if target.app_name and not install_id:
            result = await self.configurator.configure(target.app_name, None, {})
            if not result.get("success"):
                raise NotFoundError(result.get("message") or f"App {target.app_name} not found")
            install_id = result["installId"]
        return await self.resolver.resolve(install_id, target.app_name)


__all__ = ["Gateway"]

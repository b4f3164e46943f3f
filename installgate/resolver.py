"""Maps ``(install id, app name)`` onto a live, cached execution context."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from .engine import decode_record
from .errors import NotFoundError
from .install_store import strip_resolve_type
from .mcp_server import build_server
from .middleware import ConfigurationMiddleware
from .protocol import ToolPipeline

if TYPE_CHECKING:
    from mcp.server.lowlevel import Server

    from .catalog import IntegrationCatalog
    from .configuration import Configurator
    from .engine import ComponentEngine, Runtime
    from .install_store import InstallStore
    from .instances import InstanceCache
    from .oauth import OAuthBridge

logger = logging.getLogger(__name__)

DEFAULT_INSTALL_ID = "default"
REGISTRY_SERVER_NAME = "installgate-registry"


@dataclass
class Instance:
    install_id: str
    app_name: str | None
    runtime: Runtime
    pipeline: ToolPipeline
    server: Server


def base_path_for(app_name: str | None, install_id: str | None) -> str | None:
    if not app_name or not install_id:
        return None
    return f"/apps/{quote(app_name, safe='')}/{quote(install_id, safe='')}"


class InstanceResolver:
    def __init__(
        self,
        store: InstallStore,
        cache: InstanceCache[Instance],
        engine: ComponentEngine,
        configurator: Configurator,
        catalog: IntegrationCatalog,
        oauth: OAuthBridge,
    ) -> None:
        self.store = store
        self.cache = cache
        self.engine = engine
        self.configurator = configurator
        self.catalog = catalog
        self.oauth = oauth
        self._default: Instance | None = None

    async def start(self) -> Instance:
        """Build the registry-wide instance served under the ``default`` install id.

        It lives outside the cache and is never evicted.
        """
        if self._default is None:
            runtime = await self.engine.build(
                None,
                globals={"install_id": DEFAULT_INSTALL_ID, "app_name": None},
                include=[block.resolve_type for block in self.engine.manifest.site_blocks],
            )
            pipeline = ToolPipeline(runtime)
            self._default = Instance(
                install_id=DEFAULT_INSTALL_ID,
                app_name=None,
                runtime=runtime,
                pipeline=pipeline,
                server=build_server(pipeline, REGISTRY_SERVER_NAME),
            )
            logger.info("Registry instance ready with %d site blocks", len(self.engine.manifest.site_blocks))
        return self._default

    async def resolve(self, install_id: str | None = None, app_name: str | None = None) -> Instance:
        """Return the instance for ``install_id``, building and caching it on a miss.

        An install id with no stored record is configured with empty
        properties first, so resolution may write to the install store.
        """
        if not install_id or install_id == DEFAULT_INSTALL_ID:
            return await self.start()

        generation = self.store.generation(install_id)
        record = await self.store.get(install_id)
        if record is None:
            if not app_name:
                raise NotFoundError(f"Install {install_id} not found")
            result = await self.configurator.configure(app_name, install_id, {})
            if not result.get("success"):
                raise NotFoundError(result.get("message") or f"App {app_name} not found")
            logger.info("Created default configuration of %s for install %s", app_name, install_id)
            generation = self.store.generation(install_id)
            record = await self.store.get(install_id)
            if record is None:
                raise NotFoundError(f"Install {install_id} not found")

        app_name = app_name or next(iter(record), None)
        if not app_name:
            raise NotFoundError("App not found")

        cached = self.cache.get(install_id)
        if cached is not None and cached.app_name == app_name:
            logger.debug("Instance cache hit for install %s", install_id)
            return cached

        instance = await self._build(install_id, app_name, record)
        if self.store.generation(install_id) != generation:
            # Written after the read, so only this request sees the old record
            logger.debug("Install %s changed during resolution, not caching", install_id)
            return instance
        self.cache.set(install_id, instance)
        return instance

    async def _build(self, install_id: str, app_name: str, record: dict[str, Any]) -> Instance:
        decofile = decode_record(record) or {}
        configuration = strip_resolve_type(decofile.get(app_name))

        async def configure(props: dict[str, Any]) -> dict[str, Any]:
            return await self.configurator.configure(app_name, install_id, props)

        def get_configuration() -> dict[str, Any]:
            return dict(configuration)

        runtime = await self.engine.build(
            decofile,
            base_path=base_path_for(app_name, install_id),
            globals={
                "install_id": install_id,
                "app_name": app_name,
                "configure": configure,
                "get_configuration": get_configuration,
            },
        )
        middleware = ConfigurationMiddleware(
            app_name=app_name,
            install_id=install_id,
            runtime=runtime,
            configurator=self.configurator,
            catalog=self.catalog,
            oauth=self.oauth,
        )
        pipeline = ToolPipeline(runtime, [middleware.list_tools], [middleware.call_tool])
        logger.debug("Built instance for install %s (%s)", install_id, app_name)
        return Instance(
            install_id=install_id,
            app_name=app_name,
            runtime=runtime,
            pipeline=pipeline,
            server=build_server(pipeline, f"installgate-{app_name}"),
        )


__all__ = ["DEFAULT_INSTALL_ID", "Instance", "InstanceResolver", "base_path_for"]

"""Component engine.

Integrations ("apps") declare their loaders and actions up front; the
:class:`Manifest` is the string-keyed table from resolve type to handler.
An install record is decoded into a decofile and bound to a
:class:`Runtime`, the execution context that invokes blocks by resolve type
and exports the schema graph the tool discovery layer walks.
"""
from __future__ import annotations

import copy
import inspect
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping

import httpx

from .errors import NotFoundError, UpstreamError
from .install_store import RESOLVE_TYPE_KEY, strip_resolve_type

if TYPE_CHECKING:
    from .install_store import Record

logger = logging.getLogger(__name__)

LOADERS = "loaders"
ACTIONS = "actions"
APPS = "apps"
BLOCK_KINDS = (LOADERS, ACTIONS)

SITE_NAMESPACE = "site"
RESOLVABLE_DEFINITION = "#/definitions/Resolvable"

Decofile = dict[str, dict[str, Any]]
BlockFunc = Callable[[dict[str, Any], "InvocationContext"], Any]


def empty_object_schema() -> dict[str, Any]:
    return {"type": "object", "properties": {}}


def definition_ref(definition_id: str) -> str:
    return f"#/definitions/{definition_id}"


def definition_id(resolve_type: str) -> str:
    return resolve_type.replace("/", "-").replace(" ", "_")


@dataclass
class Block:
    """A loader or action addressed by ``<namespace>/<kind>/<path>``."""

    resolve_type: str
    func: BlockFunc
    title: str | None = None
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=empty_object_schema)
    output_schema: dict[str, Any] | None = None
    # Extra schema definitions referenced from input_schema via $ref
    definitions: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        parts = self.resolve_type.split("/")
        if len(parts) < 3 or parts[1] not in BLOCK_KINDS:
            raise ValueError(
                f"Invalid resolve type '{self.resolve_type}': expected <namespace>/loaders|actions/<path>"
            )

    @property
    def namespace(self) -> str:
        return self.resolve_type.split("/", 1)[0]

    @property
    def kind(self) -> str:
        return self.resolve_type.split("/")[1]


@dataclass
class AppBlock:
    """An installable integration and the blocks it contributes once configured."""

    name: str
    description: str = ""
    icon: str | None = None
    input_schema: dict[str, Any] = field(default_factory=empty_object_schema)
    definitions: dict[str, Any] = field(default_factory=dict)
    blocks: dict[str, Block] = field(default_factory=dict)

    @property
    def resolve_type(self) -> str:
        return f"{SITE_NAMESPACE}/{APPS}/{self.name}"

    def add_block(self, block: Block) -> Block:
        if block.namespace != self.name:
            raise ValueError(f"Block {block.resolve_type} does not belong to app {self.name}")
        self.blocks[block.resolve_type] = block
        return block

    def _register(self, kind: str, path: str, **kwargs: Any) -> Callable[[BlockFunc], BlockFunc]:
        def decorator(func: BlockFunc) -> BlockFunc:
            self.add_block(Block(resolve_type=f"{self.name}/{kind}/{path}", func=func, **kwargs))
            return func

        return decorator

    def loader(self, path: str, **kwargs: Any) -> Callable[[BlockFunc], BlockFunc]:
        return self._register(LOADERS, path, **kwargs)

    def action(self, path: str, **kwargs: Any) -> Callable[[BlockFunc], BlockFunc]:
        return self._register(ACTIONS, path, **kwargs)


class Manifest:
    """Registry of every app and site block the engine can resolve.

    Unknown keys raise :class:`NotFoundError`; lookups never no-op.
    """

    def __init__(self) -> None:
        self._apps: dict[str, AppBlock] = {}
        self._site_blocks: dict[str, Block] = {}
        # Bumped on every app registration
        self.version = 0

    @property
    def apps(self) -> list[AppBlock]:
        return list(self._apps.values())

    @property
    def site_blocks(self) -> list[Block]:
        return list(self._site_blocks.values())

    def register_app(self, app: AppBlock) -> AppBlock:
        if app.name in self._apps:
            raise ValueError(f"App {app.name} is already registered")
        if app.name == SITE_NAMESPACE:
            raise ValueError(f"App name '{SITE_NAMESPACE}' is reserved")
        self._apps[app.name] = app
        self.version += 1
        return app

    def register_site_block(self, block: Block) -> Block:
        if block.namespace != SITE_NAMESPACE:
            raise ValueError(f"Site block {block.resolve_type} must live under '{SITE_NAMESPACE}/'")
        self._site_blocks[block.resolve_type] = block
        return block

    def site_block(self, resolve_type: str, **kwargs: Any) -> Callable[[BlockFunc], BlockFunc]:
        def decorator(func: BlockFunc) -> BlockFunc:
            self.register_site_block(Block(resolve_type=resolve_type, func=func, **kwargs))
            return func

        return decorator

    def find_app(self, name: str) -> AppBlock | None:
        return self._apps.get(name)

    def app(self, name: str) -> AppBlock:
        app = self._apps.get(name)
        if app is None:
            raise NotFoundError(f"App {name} not found")
        return app

    def app_for_resolve_type(self, resolve_type: str) -> AppBlock:
        prefix = f"{SITE_NAMESPACE}/{APPS}/"
        if not resolve_type.startswith(prefix):
            raise NotFoundError(f"Unknown app resolve type {resolve_type}")
        return self.app(resolve_type[len(prefix):])

    def block(self, resolve_type: str) -> Block:
        block = self._site_blocks.get(resolve_type)
        if block is None:
            app = self._apps.get(resolve_type.split("/", 1)[0])
            block = app.blocks.get(resolve_type) if app else None
        if block is None:
            raise NotFoundError(f"Block {resolve_type} not found")
        return block


def build_schema(manifest: Manifest, blocks: Iterable[Block]) -> dict[str, Any]:
    """Export the schema graph for ``blocks`` plus every installable app."""
    definitions: dict[str, Any] = {
        "Resolvable": {
            "type": "object",
            "properties": {RESOLVE_TYPE_KEY: {"type": "string"}},
            "required": [RESOLVE_TYPE_KEY],
        }
    }
    root: dict[str, dict[str, list[dict[str, str]]]] = {
        LOADERS: {"anyOf": []},
        ACTIONS: {"anyOf": []},
        APPS: {"anyOf": []},
    }

    def add(kind: str, resolve_type: str, input_schema: dict[str, Any], extra: dict[str, Any]) -> None:
        def_id = definition_id(resolve_type)
        props_id = f"{def_id}__props"
        definitions[props_id] = copy.deepcopy(input_schema)
        definitions[def_id] = {
            "type": "object",
            "properties": {RESOLVE_TYPE_KEY: {"type": "string", "default": resolve_type}},
            "allOf": [{"$ref": definition_ref(props_id)}],
            **{key: value for key, value in extra.items() if value is not None},
        }
        root[kind]["anyOf"].append({"$ref": definition_ref(def_id)})

    for block in blocks:
        definitions.update(copy.deepcopy(block.definitions))
        add(
            block.kind,
            block.resolve_type,
            block.input_schema,
            {
                "title": block.title,
                "description": block.description,
                "outputSchema": copy.deepcopy(block.output_schema),
            },
        )

    for app in manifest.apps:
        definitions.update(copy.deepcopy(app.definitions))
        add(APPS, app.resolve_type, app.input_schema, {
            "title": app.name,
            "description": app.description,
            "icon": app.icon,
        })

    for kind in root.values():
        kind["anyOf"].append({"$ref": RESOLVABLE_DEFINITION})
    return {"definitions": definitions, "root": root}


def decode_record(record: Record | None) -> Decofile | None:
    """Turn a stored install record into a decofile the engine can bind."""
    if record is None:
        return None
    if not isinstance(record, Mapping):
        raise UpstreamError("Install record is not an object")
    decofile: Decofile = {}
    for key, entry in record.items():
        if not isinstance(entry, Mapping) or not isinstance(entry.get(RESOLVE_TYPE_KEY), str):
            raise UpstreamError(f"Install record entry '{key}' has no resolve type")
        decofile[key] = copy.deepcopy(dict(entry))
    return decofile


class InvocationContext:
    """What a block sees while it runs."""

    def __init__(self, runtime: Runtime, app: AppBlock | None, props: dict[str, Any]) -> None:
        self.runtime = runtime
        self.app = app
        self.props = props

    @property
    def globals(self) -> dict[str, Any]:
        return self.runtime.globals

    @property
    def install_id(self) -> str | None:
        return self.globals.get("install_id")

    @property
    def app_name(self) -> str | None:
        return self.globals.get("app_name")

    @property
    def http(self) -> httpx.AsyncClient:
        return self.runtime.http

    async def configure(self, props: dict[str, Any]) -> Any:
        configure = self.globals.get("configure")
        if configure is None:
            raise NotFoundError("This context cannot be configured")
        return await configure(props)

    def get_configuration(self) -> dict[str, Any]:
        get_configuration = self.globals.get("get_configuration")
        if get_configuration is None:
            return dict(self.props)
        return get_configuration()

    async def invoke(self, key: str, props: dict[str, Any] | None = None) -> Any:
        return await self.runtime.invoke(key, props)


class Runtime:
    """An execution context bound to one decofile (or none for the registry)."""

    def __init__(
        self,
        manifest: Manifest,
        decofile: Decofile | None,
        *,
        http: httpx.AsyncClient,
        base_path: str | None = None,
        globals: dict[str, Any] | None = None,
        include: Iterable[str] | None = None,
    ) -> None:
        self.manifest = manifest
        self.decofile = decofile or {}
        self.http = http
        self.base_path = base_path
        self.globals: dict[str, Any] = dict(globals or {})
        self._installed: dict[str, tuple[AppBlock, dict[str, Any]]] = {}
        for entry in self.decofile.values():
            app = manifest.app_for_resolve_type(entry[RESOLVE_TYPE_KEY])
            self._installed[app.name] = (app, strip_resolve_type(entry))
        self._include = [manifest.block(key).resolve_type for key in include] if include is not None else None

    @property
    def installed_apps(self) -> list[str]:
        return list(self._installed)

    def available_blocks(self) -> list[Block]:
        if self._include is not None:
            return [self.manifest.block(key) for key in self._include]
        blocks: list[Block] = []
        for app, _ in self._installed.values():
            blocks.extend(app.blocks.values())
        return blocks

    def _lookup(self, key: str) -> tuple[Block, AppBlock | None, dict[str, Any]]:
        if self._include is not None:
            if key not in self._include:
                raise NotFoundError(f"Block {key} not found")
            return self.manifest.block(key), None, {}
        installed = self._installed.get(key.split("/", 1)[0])
        if installed is None:
            raise NotFoundError(f"Block {key} not found")
        app, props = installed
        block = app.blocks.get(key)
        if block is None:
            raise NotFoundError(f"Block {key} not found")
        return block, app, props

    async def invoke(self, key: str, props: dict[str, Any] | None = None) -> Any:
        block, app, app_props = self._lookup(key)
        ctx = InvocationContext(self, app, dict(app_props))
        result = block.func(dict(props or {}), ctx)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def meta(self) -> dict[str, Any]:
        return build_schema(self.manifest, self.available_blocks())


class ComponentEngine:
    def __init__(self, manifest: Manifest, http: httpx.AsyncClient | None = None) -> None:
        self.manifest = manifest
        self._http = http
        self._owns_http = http is None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=5.0),
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
            )
        return self._http

    async def build(
        self,
        decofile: Decofile | None = None,
        *,
        base_path: str | None = None,
        globals: dict[str, Any] | None = None,
        include: Iterable[str] | None = None,
    ) -> Runtime:
        try:
            runtime = Runtime(
                self.manifest,
                decofile,
                http=self.http,
                base_path=base_path,
                globals=globals,
                include=include,
            )
        except NotFoundError as exc:
            raise UpstreamError(f"Failed to initialize context: {exc.message}") from exc
        logger.debug(
            "Built runtime at %s with apps [%s]",
            base_path or "/",
            ", ".join(runtime.installed_apps),
        )
        return runtime

    async def aclose(self) -> None:
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None


__all__ = [
    "ACTIONS",
    "APPS",
    "AppBlock",
    "Block",
    "ComponentEngine",
    "Decofile",
    "InvocationContext",
    "LOADERS",
    "Manifest",
    "RESOLVABLE_DEFINITION",
    "Runtime",
    "SITE_NAMESPACE",
    "build_schema",
    "decode_record",
    "definition_id",
    "empty_object_schema",
]

"""Shared pytest fixtures for installgate tests."""
from __future__ import annotations

from typing import Any, Callable, Generator
from urllib.parse import urlencode

import httpx
import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request
from starlette.responses import RedirectResponse

from installgate.db import init_db
from installgate.engine import AppBlock, InvocationContext, Manifest
from installgate.gateway import Gateway
from installgate.main import create_app
from installgate.settings import Settings, load_settings

BASE_URL = "https://gateway.test"

ACME_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "apiKey": {"type": "string"},
        "region": {"type": "string", "enum": ["us", "eu"]},
    },
    "required": ["apiKey"],
}

SLACK_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"token": {"type": "string"}},
    "required": ["token"],
}


class FakeOAuthProvider:
    """Records what the gateway hands to a native OAuth app."""

    def __init__(self) -> None:
        self.start_calls: list[dict[str, Any]] = []
        self.callback_calls: list[dict[str, Any]] = []
        self.fail_callback = False

    def register(self, manifest: Manifest) -> AppBlock:
        app = manifest.register_app(
            AppBlock(
                name="github",
                description="Fake GitHub with native OAuth",
                input_schema={
                    "type": "object",
                    "properties": {"accessToken": {"type": "string"}},
                    "required": ["accessToken"],
                },
            )
        )

        @app.loader("oauth/start", description="Start OAuth")
        def oauth_start(props: dict[str, Any], ctx: InvocationContext) -> RedirectResponse:
            self.start_calls.append(props)
            query = urlencode({"client_id": props["clientId"], "state": props["state"]})
            return RedirectResponse(f"https://provider.test/authorize?{query}", status_code=302)

        @app.action("oauth/callback", description="Finish OAuth")
        async def oauth_callback(props: dict[str, Any], ctx: InvocationContext) -> dict[str, Any]:
            self.callback_calls.append(props)
            if self.fail_callback:
                raise RuntimeError("token exchange failed")
            result = await ctx.configure({"accessToken": f"token-{props['code']}"})
            return {"installId": result["installId"], "name": "GitHub", "account": "octocat"}

        return app


def build_manifest(oauth_provider: FakeOAuthProvider) -> Manifest:
    manifest = Manifest()

    acme = manifest.register_app(
        AppBlock(name="acme", description="Acme widgets", icon="https://acme.test/icon.png", input_schema=ACME_SCHEMA)
    )

    @acme.loader("ping", title="ACME_PING", description="Ping Acme")
    def ping(props: dict[str, Any], ctx: InvocationContext) -> dict[str, Any]:
        return {
            "pong": True,
            "installId": ctx.install_id,
            "config": ctx.get_configuration(),
            "echo": props,
        }

    @acme.action("bindings/invoke", description="Binding hook")
    async def binding(props: dict[str, Any], ctx: InvocationContext) -> dict[str, Any]:
        return {"received": props, "installId": ctx.install_id}

    @acme.action("channels/invoke", description="Channel hook")
    async def channel(props: dict[str, Any], ctx: InvocationContext) -> None:
        return None

    slack = manifest.register_app(
        AppBlock(name="slack", description="Slack messaging", input_schema=SLACK_SCHEMA)
    )

    @slack.loader("channels", description="List channels")
    def channels(props: dict[str, Any], ctx: InvocationContext) -> list[str]:
        return ["general", "random"]

    oauth_provider.register(manifest)
    return manifest


def make_request(path: str, query: dict[str, str] | None = None, headers: dict[str, str] | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "scheme": "https",
        "server": ("gateway.test", 443),
        "path": path,
        "root_path": "",
        "query_string": urlencode(query or {}).encode(),
        "headers": [(key.lower().encode(), value.encode()) for key, value in (headers or {}).items()],
    }
    return Request(scope)


# =============================================================================
# Gateway Fixtures
# =============================================================================


@pytest.fixture
def env() -> dict[str, str]:
    return {
        "PUBLIC_BASE_URL": BASE_URL,
        "DATABASE_URL": "sqlite:///:memory:",
        "OAUTH_CLIENT_ID_GITHUB": "gh-client",
        "OAUTH_CLIENT_SECRET_GITHUB": "gh-secret",
    }


@pytest.fixture
def settings(env: dict[str, str]) -> Settings:
    return load_settings(env)


@pytest.fixture
def oauth_provider() -> FakeOAuthProvider:
    return FakeOAuthProvider()


@pytest.fixture
def http_handler() -> Callable[[httpx.Request], httpx.Response]:
    """Outbound HTTP handler; override in a test module to script responses."""
    return lambda request: httpx.Response(404, json={"message": "Not Found"})


@pytest.fixture
def gateway(
    settings: Settings,
    oauth_provider: FakeOAuthProvider,
    http_handler: Callable[[httpx.Request], httpx.Response],
) -> Generator[Gateway, None, None]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(http_handler))
    gw = Gateway(settings, manifest=build_manifest(oauth_provider), http=http)
    init_db(gw.db_engine)
    yield gw
    gw.db_engine.dispose()


# =============================================================================
# HTTP Client Fixtures
# =============================================================================


@pytest.fixture
def client(gateway: Gateway) -> Generator[TestClient, None, None]:
    with TestClient(create_app(gateway=gateway), raise_server_exceptions=False) as test_client:
        yield test_client

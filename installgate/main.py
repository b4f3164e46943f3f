from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from .errors import GatewayError
from .gateway import Gateway
from .hooks import BINDING_INVOKE_ACTION, CHANNEL_INVOKE_ACTION, invoke_hook
from .mcp_server import MCPEndpoint
from .oauth import decode_state
from .settings import Settings

logger = logging.getLogger(__name__)

MCP_PATHS = (
    "/mcp/messages",
    "/apps/{app}/mcp/messages",
    "/apps/{app}/{install_id}/mcp/messages",
)
OAUTH_START_PATHS = (
    "/oauth/start",
    "/apps/{app}/oauth/start",
    "/apps/{app}/{install_id}/oauth/start",
)
OAUTH_CALLBACK_PATHS = (
    "/oauth/callback",
    "/apps/{app}/{install_id}/oauth/callback",
)


def create_app(settings: Settings | None = None, gateway: Gateway | None = None) -> FastAPI:
    gateway = gateway or Gateway(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await gateway.start()
        try:
            yield
        finally:
            await gateway.aclose()

    app = FastAPI(title="installgate", lifespan=lifespan)
    app.state.gateway = gateway

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    @app.get("/health")
    def health_check() -> dict[str, str]:
        """Health check endpoint for load balancers."""
        if gateway.shutdown_event.is_set():
            raise HTTPException(status_code=503, detail="Shutting down")
        return {"status": "healthy"}

    endpoint = MCPEndpoint(gateway)
    for path in MCP_PATHS:
        app.add_route(path, endpoint, methods=["GET", "POST", "DELETE"], include_in_schema=False)

    async def oauth_start(request: Request) -> Response:
        instance = await gateway.instance_for(request)
        params = request.query_params
        return await gateway.oauth.start(
            instance.runtime,
            instance.app_name,
            instance.install_id,
            return_url=params.get("returnUrl"),
            integration_id=params.get("integrationId"),
            client_id=params.get("clientId"),
            client_secret=params.get("clientSecret"),
            bot_name=params.get("botName"),
            session_token=params.get("sessionToken"),
        )

    async def oauth_callback(request: Request) -> Response:
        raw_state = request.query_params.get("state")
        if not raw_state:
            return JSONResponse({"error": "State is required"}, status_code=400)
        state = decode_state(raw_state)
        instance = await gateway.resolver.resolve(state.get("installId"), state.get("appName"))
        return await gateway.oauth.callback(
            instance.runtime,
            state,
            raw_state,
            request.query_params.get("code"),
            dict(request.query_params),
        )

    for path in OAUTH_START_PATHS:
        app.add_api_route(path, oauth_start, methods=["GET"])
    for path in OAUTH_CALLBACK_PATHS:
        app.add_api_route(path, oauth_callback, methods=["GET"])

    @app.post("/apps/{app_name}/{install_id}/bindings/hooks")
    async def bindings_hook(request: Request) -> Response:
        instance = await gateway.instance_for(request)
        return await invoke_hook(instance.runtime, request, BINDING_INVOKE_ACTION)

    @app.post("/apps/{app_name}/{install_id}/channels/hooks")
    async def channels_hook(request: Request) -> Response:
        instance = await gateway.instance_for(request)
        return await invoke_hook(instance.runtime, request, CHANNEL_INVOKE_ACTION)

    return app


__all__ = ["create_app"]

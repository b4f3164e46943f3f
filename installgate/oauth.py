"""Two-leg OAuth bridge between the gateway and integration-provided OAuth blocks.

The flow is stateless: everything the callback leg needs travels inside the
``state`` query parameter, encoded by :func:`encode_state`. Ad-hoc app
credentials ("custom bots") are the only thing kept server side, in the
:class:`~installgate.sessions.CustomBotSessionStore`.
"""
from __future__ import annotations

import base64
import json
import logging
from typing import TYPE_CHECKING, Any, Mapping
from urllib.parse import parse_qsl, unquote, urlencode, urlsplit, urlunsplit

from starlette.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse, Response

from .configuration import connection_url
from .discovery import find_compatible_app
from .errors import InvalidInputError, NotFoundError
from .providers import PROVIDERS, extract_provider_from_app_name, provider_credentials

if TYPE_CHECKING:
    from .catalog import IntegrationCatalog
    from .engine import Runtime
    from .sessions import CustomBotSessionStore
    from .settings import Settings

logger = logging.getLogger(__name__)

OAUTH_START_LOADER = "/loaders/oauth/start"
OAUTH_CALLBACK_ACTION = "/actions/oauth/callback"
SUCCESS_HTML = "<html><body>Success! You may close this window.</body></html>"


def encode_state(state: Mapping[str, Any]) -> str:
    """URL-safe base64 of the JSON state, unset fields dropped."""
    payload = {key: value for key, value in state.items() if value is not None}
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _decode_payload(raw: str) -> dict[str, Any]:
    text = unquote(raw).strip().replace("+", "-").replace("/", "_")
    text += "=" * (-len(text) % 4)
    try:
        decoded = json.loads(base64.urlsafe_b64decode(text.encode("ascii")))
    except ValueError as exc:
        raise InvalidInputError("Invalid state") from exc
    if not isinstance(decoded, dict):
        raise InvalidInputError("Invalid state")
    return decoded


def decode_state(raw: str | None) -> dict[str, Any]:
    """Decode a state token, unwrapping ``original_state`` until no nesting is left.

    Providers that substitute their own state hand ours back either as an
    encoded string or as an already decoded object.
    """
    if not raw:
        raise InvalidInputError("State is required")
    state = _decode_payload(raw)
    while True:
        nested = state.get("original_state")
        if isinstance(nested, str) and nested:
            state = _decode_payload(nested)
        elif isinstance(nested, dict):
            state = nested
        else:
            return state


def decorate_url(url: str, params: Mapping[str, Any]) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((key, str(value)) for key, value in params.items() if value is not None)
    return urlunsplit(parts._replace(query=urlencode(query)))


def to_response(value: Any) -> Response | None:
    if value is None:
        return None
    if isinstance(value, Response):
        return value
    if isinstance(value, str):
        return PlainTextResponse(value)
    return JSONResponse(value)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


class OAuthBridge:
    def __init__(
        self,
        settings: Settings,
        sessions: CustomBotSessionStore,
        catalog: IntegrationCatalog,
    ) -> None:
        self.settings = settings
        self.sessions = sessions
        self.catalog = catalog

    def state_schema(self, app_name: str) -> dict[str, Any]:
        entry = self.catalog.get(app_name)
        return entry.input_schema if entry else {"type": "object", "properties": {}}

    async def start(
        self,
        runtime: Runtime,
        app_name: str | None,
        install_id: str | None,
        *,
        return_url: str | None = None,
        integration_id: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        bot_name: str | None = None,
        session_token: str | None = None,
    ) -> Response:
        """Start leg: hand off to the integration's own ``oauth/start`` loader."""
        if not app_name:
            raise NotFoundError("App not found")
        if not install_id:
            raise InvalidInputError("Install ID is required")

        invoke_app = await find_compatible_app(runtime, OAUTH_START_LOADER)
        if invoke_app is None:
            # No native OAuth: the caller has to configure properties instead
            return JSONResponse({"stateSchema": self.state_schema(app_name)})

        if bool(client_id) != bool(client_secret):
            return _error("clientId and clientSecret must be provided together", 400)
        if client_id and client_secret:
            session_token = self.sessions.store(client_id, client_secret, bot_name)

        scopes: list[str] = []
        if session_token:
            bot = self.sessions.retrieve(session_token)
            if bot is None:
                return _error("Session expired or not found", 400)
            client_id = bot.client_id
            bot_name = bot.bot_name
            provider = extract_provider_from_app_name(app_name)
            scopes = list(PROVIDERS[provider].scopes) if provider else []
        else:
            credentials = provider_credentials(app_name, self.settings.oauth_env)
            if credentials is None:
                return _error(f"App {app_name} not supported", 404)
            client_id = credentials.client_id
            scopes = credentials.scopes

        redirect_uri = self.settings.oauth_callback_url()
        state = encode_state(
            {
                "appName": app_name,
                "installId": install_id,
                "invokeApp": invoke_app,
                "returnUrl": return_url,
                "redirectUri": redirect_uri,
                "integrationId": integration_id,
                "botName": bot_name,
                "sessionToken": session_token,
            }
        )
        props = {
            "installId": install_id,
            "appName": app_name,
            "redirectUri": redirect_uri,
            "state": state,
            "returnUrl": return_url,
            "clientId": client_id,
            "scopes": scopes,
            "integrationId": integration_id,
        }
        try:
            result = await runtime.invoke(f"{invoke_app}{OAUTH_START_LOADER}", props)
        except Exception:
            logger.exception("OAuth start failed for app %s install %s", app_name, install_id)
            return _error("Failed to start OAuth flow", 500)

        logger.info("Started OAuth flow for app %s install %s", app_name, install_id)
        return to_response(result) or Response(status_code=204)

    async def callback(
        self,
        runtime: Runtime,
        state: Mapping[str, Any],
        raw_state: str,
        code: str | None,
        query_params: Mapping[str, str] | None = None,
    ) -> Response:
        """Callback leg: let the integration exchange ``code`` and finish the install."""
        app_name = state.get("appName")
        install_id = state.get("installId")
        invoke_app = state.get("invokeApp")
        if not app_name or not install_id or not invoke_app:
            return _error("Invalid state", 400)
        if not code:
            return _error("Code is required", 400)

        session_token = state.get("sessionToken")
        if session_token:
            bot = self.sessions.retrieve(session_token)
            if bot is None:
                return _error("Session expired or not found", 400)
            client_id, client_secret = bot.client_id, bot.client_secret
        else:
            credentials = provider_credentials(app_name, self.settings.oauth_env)
            if credentials is None:
                return _error(f"App {app_name} not supported", 404)
            if not credentials.client_secret:
                return _error("Client secret not found", 404)
            client_id, client_secret = credentials.client_id, credentials.client_secret

        return_url = state.get("returnUrl")
        props = {
            "installId": install_id,
            "appName": app_name,
            "code": code,
            "state": raw_state,
            "returnUrl": return_url,
            "redirectUri": state.get("redirectUri") or self.settings.oauth_callback_url(),
            "integrationId": state.get("integrationId"),
            "clientId": client_id,
            "clientSecret": client_secret,
            "queryParams": dict(query_params or {}),
        }
        try:
            result = await runtime.invoke(f"{invoke_app}{OAUTH_CALLBACK_ACTION}", props)
        except Exception:
            logger.exception("OAuth callback failed for app %s install %s", app_name, install_id)
            return _error("Failed to complete OAuth flow", 500)

        self.sessions.invalidate(session_token)
        logger.info("Completed OAuth flow for app %s install %s", app_name, install_id)

        if isinstance(result, Response):
            return result
        info = result if isinstance(result, dict) else {}
        if return_url:
            final_install_id = info.get("installId") or install_id
            location = decorate_url(
                return_url,
                {
                    "appName": app_name,
                    "installId": final_install_id,
                    "mcpUrl": connection_url(self.settings.base_url, app_name, final_install_id),
                    "name": info.get("name"),
                    "account": info.get("account"),
                },
            )
            return RedirectResponse(location, status_code=302)
        return HTMLResponse(SUCCESS_HTML)


__all__ = [
    "OAUTH_CALLBACK_ACTION",
    "OAUTH_START_LOADER",
    "OAuthBridge",
    "SUCCESS_HTML",
    "decode_state",
    "decorate_url",
    "encode_state",
    "to_response",
]

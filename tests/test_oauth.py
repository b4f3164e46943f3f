from __future__ import annotations

import base64
import dataclasses
import json
from urllib.parse import parse_qs, quote, urlsplit

import pytest

from conftest import ACME_SCHEMA, BASE_URL
from installgate.errors import InvalidInputError, NotFoundError
from installgate.oauth import SUCCESS_HTML, OAuthBridge, decode_state, decorate_url, encode_state


def standard_b64(payload: dict) -> str:
    return base64.b64encode(json.dumps(payload).encode()).decode()


# =============================================================================
# State Token
# =============================================================================


def test_state_round_trip() -> None:
    state = {"appName": "github", "installId": "abc", "invokeApp": "gh/", "returnUrl": "https://x"}

    assert decode_state(encode_state(state)) == state


def test_state_drops_unset_fields() -> None:
    token = encode_state({"appName": "github", "returnUrl": None})

    assert decode_state(token) == {"appName": "github"}
    assert "=" not in token


def test_state_accepts_url_encoded_standard_base64() -> None:
    state = {"appName": "github", "installId": "abc", "invokeApp": "gh"}

    assert decode_state(quote(standard_b64(state), safe="")) == state


def test_nested_original_state_is_unwrapped_recursively() -> None:
    inner = {"appName": "github", "installId": "abc", "invokeApp": "gh"}
    middle = encode_state({"provider": "p2", "original_state": encode_state(inner)})
    outer = encode_state({"provider": "p1", "original_state": middle})

    assert decode_state(outer) == inner


def test_nested_original_state_may_be_an_object() -> None:
    inner = {"appName": "github", "installId": "abc", "invokeApp": "gh"}
    wrapped = encode_state({"original_state": {"original_state": inner}})

    assert decode_state(wrapped) == inner


@pytest.mark.parametrize("raw", ["", None, "%%%not-base64%%%", "bm90IGpzb24"])
def test_missing_or_malformed_state_is_invalid_input(raw) -> None:
    with pytest.raises(InvalidInputError):
        decode_state(raw)


def test_non_object_state_is_invalid_input() -> None:
    token = base64.urlsafe_b64encode(b"[1, 2]").decode()

    with pytest.raises(InvalidInputError):
        decode_state(token)


def test_decorate_url_keeps_existing_query() -> None:
    url = decorate_url("https://app.test/done?tab=1#frag", {"appName": "github", "name": None})

    parts = urlsplit(url)
    assert parse_qs(parts.query) == {"tab": ["1"], "appName": ["github"]}
    assert parts.fragment == "frag"


# =============================================================================
# Start Leg
# =============================================================================


@pytest.mark.asyncio
async def test_start_invokes_native_loader_with_env_credentials(gateway, oauth_provider) -> None:
    instance = await gateway.resolver.resolve("i1", "github")

    response = await gateway.oauth.start(
        instance.runtime, "github", "i1", return_url="https://app.test/done", integration_id="int-1"
    )

    assert response.status_code == 302
    props = oauth_provider.start_calls[0]
    assert props["clientId"] == "gh-client"
    assert props["installId"] == "i1"
    assert props["appName"] == "github"
    assert props["redirectUri"] == f"{BASE_URL}/oauth/callback"
    assert props["integrationId"] == "int-1"
    assert "repo" in props["scopes"]
    assert decode_state(props["state"]) == {
        "appName": "github",
        "installId": "i1",
        "invokeApp": "github",
        "returnUrl": "https://app.test/done",
        "redirectUri": f"{BASE_URL}/oauth/callback",
        "integrationId": "int-1",
    }


@pytest.mark.asyncio
async def test_start_without_provider_config_is_not_supported(gateway) -> None:
    bridge = OAuthBridge(dataclasses.replace(gateway.settings, oauth_env={}), gateway.sessions, gateway.catalog)
    instance = await gateway.resolver.resolve("i1", "github")

    response = await bridge.start(instance.runtime, "github", "i1")

    assert response.status_code == 404
    assert json.loads(response.body) == {"error": "App github not supported"}


@pytest.mark.asyncio
async def test_start_without_native_loader_returns_state_schema(gateway) -> None:
    instance = await gateway.resolver.resolve("i1", "acme")

    response = await gateway.oauth.start(instance.runtime, "acme", "i1")

    assert response.status_code == 200
    assert json.loads(response.body) == {"stateSchema": ACME_SCHEMA}


@pytest.mark.asyncio
async def test_start_requires_app_and_install(gateway) -> None:
    instance = await gateway.resolver.resolve("i1", "github")

    with pytest.raises(NotFoundError):
        await gateway.oauth.start(instance.runtime, None, "i1")
    with pytest.raises(InvalidInputError):
        await gateway.oauth.start(instance.runtime, "github", None)


@pytest.mark.asyncio
async def test_start_with_custom_credentials_creates_session(gateway, oauth_provider) -> None:
    instance = await gateway.resolver.resolve("i1", "github")

    response = await gateway.oauth.start(
        instance.runtime, "github", "i1", client_id="bot-id", client_secret="bot-secret", bot_name="my-bot"
    )

    assert response.status_code == 302
    props = oauth_provider.start_calls[0]
    assert props["clientId"] == "bot-id"
    state = decode_state(props["state"])
    assert state["botName"] == "my-bot"
    credentials = gateway.sessions.retrieve(state["sessionToken"])
    assert credentials.client_secret == "bot-secret"


@pytest.mark.asyncio
async def test_start_with_half_credentials_is_rejected(gateway, oauth_provider) -> None:
    instance = await gateway.resolver.resolve("i1", "github")

    response = await gateway.oauth.start(instance.runtime, "github", "i1", client_id="bot-id")

    assert response.status_code == 400
    assert oauth_provider.start_calls == []
    assert len(gateway.sessions) == 0


@pytest.mark.asyncio
async def test_start_with_unknown_session_token(gateway) -> None:
    instance = await gateway.resolver.resolve("i1", "github")

    response = await gateway.oauth.start(instance.runtime, "github", "i1", session_token="expired")

    assert response.status_code == 400
    assert json.loads(response.body) == {"error": "Session expired or not found"}


# =============================================================================
# Callback Leg
# =============================================================================


def github_state(**extra) -> dict:
    return {"appName": "github", "installId": "i1", "invokeApp": "github", **extra}


@pytest.mark.asyncio
async def test_callback_redirects_to_decorated_return_url(gateway, oauth_provider) -> None:
    instance = await gateway.resolver.resolve("i1", "github")
    state = github_state(returnUrl="https://app.test/done?x=1")
    raw_state = encode_state(state)

    response = await gateway.oauth.callback(instance.runtime, state, raw_state, "the-code", {"code": "the-code"})

    assert response.status_code == 302
    query = parse_qs(urlsplit(response.headers["location"]).query)
    assert query == {
        "x": ["1"],
        "appName": ["github"],
        "installId": ["i1"],
        "mcpUrl": [f"{BASE_URL}/apps/github/i1/mcp/messages"],
        "name": ["GitHub"],
        "account": ["octocat"],
    }
    props = oauth_provider.callback_calls[0]
    assert props["clientId"] == "gh-client"
    assert props["clientSecret"] == "gh-secret"
    assert props["state"] == raw_state
    assert props["queryParams"] == {"code": "the-code"}
    assert await gateway.configurator.get_configuration("i1") == {"accessToken": "token-the-code"}


@pytest.mark.asyncio
async def test_callback_without_return_url_renders_success_page(gateway) -> None:
    instance = await gateway.resolver.resolve("i1", "github")
    state = github_state()

    response = await gateway.oauth.callback(instance.runtime, state, encode_state(state), "code")

    assert response.status_code == 200
    assert response.body.decode() == SUCCESS_HTML


@pytest.mark.asyncio
async def test_callback_uses_and_invalidates_custom_session(gateway, oauth_provider) -> None:
    instance = await gateway.resolver.resolve("i1", "github")
    token = gateway.sessions.store("bot-id", "bot-secret")
    state = github_state(sessionToken=token)

    response = await gateway.oauth.callback(instance.runtime, state, encode_state(state), "code")

    assert response.status_code == 200
    assert oauth_provider.callback_calls[0]["clientSecret"] == "bot-secret"
    assert gateway.sessions.retrieve(token) is None


@pytest.mark.asyncio
async def test_callback_failure_is_logged_and_generic(gateway, oauth_provider) -> None:
    oauth_provider.fail_callback = True
    instance = await gateway.resolver.resolve("i1", "github")
    token = gateway.sessions.store("bot-id", "bot-secret")
    state = github_state(sessionToken=token)

    response = await gateway.oauth.callback(instance.runtime, state, encode_state(state), "code")

    assert response.status_code == 500
    assert json.loads(response.body) == {"error": "Failed to complete OAuth flow"}
    # Kept for a retry of the exchange
    assert gateway.sessions.retrieve(token) is not None


@pytest.mark.asyncio
async def test_callback_client_errors(gateway) -> None:
    instance = await gateway.resolver.resolve("i1", "github")
    state = github_state()

    missing_code = await gateway.oauth.callback(instance.runtime, state, encode_state(state), None)
    assert missing_code.status_code == 400
    assert json.loads(missing_code.body) == {"error": "Code is required"}

    bad_state = await gateway.oauth.callback(instance.runtime, {"appName": "github"}, "x", "code")
    assert bad_state.status_code == 400

    expired = github_state(sessionToken="gone")
    expired_response = await gateway.oauth.callback(instance.runtime, expired, encode_state(expired), "code")
    assert expired_response.status_code == 400

    unsupported = {"appName": "acme", "installId": "i1", "invokeApp": "github"}
    unsupported_response = await gateway.oauth.callback(
        instance.runtime, unsupported, encode_state(unsupported), "code"
    )
    assert unsupported_response.status_code == 404
    assert json.loads(unsupported_response.body) == {"error": "App acme not supported"}

"""GitHub integration: native OAuth plus profile and repository loaders."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

from starlette.responses import RedirectResponse

from ..engine import AppBlock
from ..errors import InvalidInputError, UpstreamError

if TYPE_CHECKING:
    from ..engine import InvocationContext, Manifest

GITHUB_AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
GITHUB_TOKEN_URL = "https://github.com/login/oauth/access_token"
GITHUB_API_URL = "https://api.github.com"
GITHUB_ICON = "https://github.githubassets.com/favicons/favicon.svg"

INPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "accessToken": {
            "type": "string",
            "title": "Access token",
            "description": "OAuth or personal access token",
            "format": "password",
        },
        "account": {
            "type": "string",
            "title": "Account",
            "description": "Login of the connected GitHub account",
        },
    },
    "required": ["accessToken"],
}


def _api_headers(token: str) -> dict[str, str]:
    return {
        "Accept": "application/vnd.github+json",
        "Authorization": f"Bearer {token}",
        "X-GitHub-Api-Version": "2022-11-28",
    }


def _access_token(ctx: InvocationContext) -> str:
    token = ctx.props.get("accessToken")
    if not token:
        raise InvalidInputError("GitHub is not connected, run the OAuth flow or configure accessToken")
    return token


def register_github(manifest: Manifest) -> AppBlock:
    app = manifest.register_app(
        AppBlock(
            name="github",
            description="Access GitHub profile and repositories of the connected account",
            icon=GITHUB_ICON,
            input_schema=INPUT_SCHEMA,
        )
    )

    @app.loader("oauth/start", description="Redirect to the GitHub authorization page")
    def oauth_start(props: dict[str, Any], ctx: InvocationContext) -> RedirectResponse:
        query = {
            "client_id": props.get("clientId") or "",
            "redirect_uri": props.get("redirectUri") or "",
            "state": props.get("state") or "",
            "scope": " ".join(props.get("scopes") or []),
        }
        return RedirectResponse(f"{GITHUB_AUTHORIZE_URL}?{urlencode(query)}", status_code=302)

    @app.action("oauth/callback", description="Exchange the authorization code and store the token")
    async def oauth_callback(props: dict[str, Any], ctx: InvocationContext) -> dict[str, Any]:
        response = await ctx.http.post(
            GITHUB_TOKEN_URL,
            data={
                "client_id": props.get("clientId"),
                "client_secret": props.get("clientSecret"),
                "code": props.get("code"),
                "redirect_uri": props.get("redirectUri"),
            },
            headers={"Accept": "application/json"},
        )
        response.raise_for_status()
        payload = response.json()
        token = payload.get("access_token")
        if not token:
            raise UpstreamError(payload.get("error_description") or "GitHub did not return an access token")

        user = await ctx.http.get(f"{GITHUB_API_URL}/user", headers=_api_headers(token))
        user.raise_for_status()
        login = user.json().get("login")

        result = await ctx.configure({"accessToken": token, "account": login})
        return {
            "installId": result.get("installId") or ctx.install_id,
            "name": "GitHub",
            "account": login,
        }

    @app.loader(
        "user",
        title="GITHUB_USER",
        description="Get the profile of the connected GitHub account",
    )
    async def user(props: dict[str, Any], ctx: InvocationContext) -> dict[str, Any]:
        response = await ctx.http.get(f"{GITHUB_API_URL}/user", headers=_api_headers(_access_token(ctx)))
        response.raise_for_status()
        return response.json()

    @app.loader(
        "repos",
        title="GITHUB_REPOSITORIES",
        description="List repositories of the connected GitHub account",
        input_schema={
            "type": "object",
            "properties": {
                "visibility": {"type": "string", "enum": ["all", "public", "private"]},
                "perPage": {"type": "integer", "minimum": 1, "maximum": 100},
                "page": {"type": "integer", "minimum": 1},
            },
        },
    )
    async def repos(props: dict[str, Any], ctx: InvocationContext) -> dict[str, Any]:
        params = {
            "visibility": props.get("visibility") or "all",
            "per_page": props.get("perPage") or 30,
            "page": props.get("page") or 1,
        }
        response = await ctx.http.get(
            f"{GITHUB_API_URL}/user/repos",
            headers=_api_headers(_access_token(ctx)),
            params=params,
        )
        response.raise_for_status()
        return {
            "repositories": [
                {
                    "name": repo.get("full_name"),
                    "private": repo.get("private"),
                    "url": repo.get("html_url"),
                    "description": repo.get("description"),
                }
                for repo in response.json()
            ]
        }

    return app


__all__ = ["INPUT_SCHEMA", "register_github"]

"""Well-known OAuth providers and their environment-configured app credentials."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping


@dataclass(frozen=True)
class OAuthProvider:
    name: str
    scopes: tuple[str, ...] = field(default_factory=tuple)

    @property
    def client_id_env(self) -> str:
        return f"OAUTH_CLIENT_ID_{self.name.upper()}"

    @property
    def client_secret_env(self) -> str:
        return f"OAUTH_CLIENT_SECRET_{self.name.upper()}"


@dataclass(frozen=True)
class ProviderCredentials:
    provider: OAuthProvider
    client_id: str
    client_secret: str | None

    @property
    def scopes(self) -> list[str]:
        return list(self.provider.scopes)


PROVIDERS: dict[str, OAuthProvider] = {
    provider.name: provider
    for provider in (
        OAuthProvider("github", ("repo", "read:user", "user:email")),
        OAuthProvider("google", ("openid", "email", "profile")),
        OAuthProvider("airtable", ("data.records:read", "data.records:write", "schema.bases:read")),
        OAuthProvider("slack", ("channels:read", "chat:write", "users:read")),
        OAuthProvider("spotify", ("user-read-email", "playlist-read-private")),
        OAuthProvider("discord", ("identify", "guilds")),
        OAuthProvider("notion"),
        OAuthProvider("hubspot", ("crm.objects.contacts.read", "crm.objects.contacts.write")),
        OAuthProvider("linear", ("read", "write")),
        OAuthProvider("dropbox"),
    )
}

# Longest names first so a more specific provider wins over a shorter prefix
_BY_LENGTH = sorted(PROVIDERS, key=len, reverse=True)


def extract_provider_from_app_name(app_name: str | None) -> str | None:
    """Map an app name onto a known provider.

    Matches the provider exactly (case-insensitive), or as a prefix followed
    by ``-``, ``_`` or an uppercase letter: ``GithubEnterprise`` and
    ``github-enterprise`` are ``github``, ``githubx`` is nothing.
    """
    if not app_name:
        return None
    lowered = app_name.lower()
    for name in _BY_LENGTH:
        if lowered == name:
            return name
        if lowered.startswith(name) and len(app_name) > len(name):
            boundary = app_name[len(name)]
            if boundary in "-_" or boundary.isupper():
                return name
    return None


def provider_credentials(app_name: str | None, oauth_env: Mapping[str, str]) -> ProviderCredentials | None:
    """Environment credentials for the provider behind ``app_name``, if any are configured."""
    name = extract_provider_from_app_name(app_name)
    if name is None:
        return None
    provider = PROVIDERS[name]
    client_id = oauth_env.get(provider.client_id_env)
    if not client_id:
        return None
    return ProviderCredentials(
        provider=provider,
        client_id=client_id,
        client_secret=oauth_env.get(provider.client_secret_env) or None,
    )


__all__ = [
    "OAuthProvider",
    "PROVIDERS",
    "ProviderCredentials",
    "extract_provider_from_app_name",
    "provider_credentials",
]

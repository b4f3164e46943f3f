from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Mapping

OAUTH_ENV_PREFIXES = ("OAUTH_CLIENT_ID_", "OAUTH_CLIENT_SECRET_")


@dataclass(frozen=True)
class Settings:
    public_base_url: str
    database_url: str
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    # Instance cache
    instance_cache_size: int = 100
    instance_cache_ttl_seconds: int = 3600
    # Custom bot sessions
    session_ttl_seconds: int = 600
    session_sweep_interval_seconds: int = 300
    # Snapshot of OAUTH_CLIENT_ID_* / OAUTH_CLIENT_SECRET_* variables
    oauth_env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.instance_cache_size < 1:
            raise ValueError("INSTANCE_CACHE_SIZE must be at least 1")
        if self.session_ttl_seconds < 1:
            raise ValueError("SESSION_TTL_SECONDS must be at least 1")

    @property
    def base_url(self) -> str:
        return self.public_base_url.rstrip("/")

    def oauth_callback_url(self) -> str:
        return f"{self.base_url}/oauth/callback"


def _get_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_str(environ: Mapping[str, str], name: str, default: str) -> str:
    value = environ.get(name)
    if value is None or value == "":
        return default
    return value


def _oauth_env(environ: Mapping[str, str]) -> dict[str, str]:
    return {
        key: value
        for key, value in environ.items()
        if key.startswith(OAUTH_ENV_PREFIXES) and value
    }


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build settings from ``environ`` (``os.environ`` when omitted)."""
    env = os.environ if environ is None else environ
    port = _get_int(env, "PORT", 8000)
    public_base_url = (
        env.get("PUBLIC_BASE_URL")
        or env.get("MY_DOMAIN")
        or f"http://localhost:{port}"
    )
    return Settings(
        public_base_url=public_base_url,
        database_url=_get_str(env, "DATABASE_URL", "sqlite:///./data/installs.db"),
        host=_get_str(env, "HOST", "0.0.0.0"),
        port=port,
        log_level=_get_str(env, "LOG_LEVEL", "INFO").upper(),
        instance_cache_size=_get_int(env, "INSTANCE_CACHE_SIZE", 100),
        instance_cache_ttl_seconds=_get_int(env, "INSTANCE_CACHE_TTL_SECONDS", 3600),
        session_ttl_seconds=_get_int(env, "SESSION_TTL_SECONDS", 600),
        session_sweep_interval_seconds=_get_int(env, "SESSION_SWEEP_INTERVAL_SECONDS", 300),
        oauth_env=_oauth_env(env),
    )

from __future__ import annotations

import dataclasses

import pytest

from installgate.settings import Settings, load_settings


def test_defaults() -> None:
    settings = load_settings({})

    assert settings.public_base_url == "http://localhost:8000"
    assert settings.database_url == "sqlite:///./data/installs.db"
    assert settings.port == 8000
    assert settings.log_level == "INFO"
    assert settings.instance_cache_size == 100
    assert settings.instance_cache_ttl_seconds == 3600
    assert settings.session_ttl_seconds == 600
    assert settings.session_sweep_interval_seconds == 300
    assert settings.oauth_env == {}


def test_overrides_from_environment() -> None:
    settings = load_settings(
        {
            "PUBLIC_BASE_URL": "https://gw.example.com/",
            "PORT": "9000",
            "LOG_LEVEL": "debug",
            "INSTANCE_CACHE_SIZE": "5",
            "SESSION_TTL_SECONDS": "30",
        }
    )

    assert settings.base_url == "https://gw.example.com"
    assert settings.oauth_callback_url() == "https://gw.example.com/oauth/callback"
    assert settings.port == 9000
    assert settings.log_level == "DEBUG"
    assert settings.instance_cache_size == 5
    assert settings.session_ttl_seconds == 30


def test_bad_integers_fall_back_to_defaults() -> None:
    settings = load_settings({"PORT": "eighty", "INSTANCE_CACHE_TTL_SECONDS": ""})

    assert settings.port == 8000
    assert settings.instance_cache_ttl_seconds == 3600


def test_my_domain_is_an_alias_for_public_base_url() -> None:
    assert load_settings({"MY_DOMAIN": "https://alias.test"}).base_url == "https://alias.test"
    assert (
        load_settings({"MY_DOMAIN": "https://alias.test", "PUBLIC_BASE_URL": "https://main.test"}).base_url
        == "https://main.test"
    )


def test_oauth_environment_is_snapshotted() -> None:
    environ = {
        "OAUTH_CLIENT_ID_GITHUB": "id",
        "OAUTH_CLIENT_SECRET_GITHUB": "secret",
        "OAUTH_CLIENT_ID_SLACK": "",
        "UNRELATED": "x",
    }

    settings = load_settings(environ)
    environ["OAUTH_CLIENT_ID_GITHUB"] = "changed"

    assert settings.oauth_env == {"OAUTH_CLIENT_ID_GITHUB": "id", "OAUTH_CLIENT_SECRET_GITHUB": "secret"}


def test_invalid_values_are_rejected() -> None:
    with pytest.raises(ValueError):
        load_settings({"INSTANCE_CACHE_SIZE": "0"})

    with pytest.raises(dataclasses.FrozenInstanceError):
        Settings(public_base_url="x", database_url="y").port = 1  # type: ignore[misc]

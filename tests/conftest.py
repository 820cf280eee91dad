"""
Pytest configuration and fixtures.
"""

from __future__ import annotations

import pytest

from verifygate.config_store import ConfigStore
from verifygate.decision import Guild, Principal
from verifygate.utils.config_validator import Settings


@pytest.fixture
def store(tmp_path) -> ConfigStore:
    return ConfigStore(tmp_path / "verifygate.db")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        discord_token="bot-token",
        client_id="client-id",
        client_secret="client-secret",
        redirect_url="http://localhost:3000/auth/callback",
        hcaptcha_sitekey="site-key",
        hcaptcha_secret="captcha-secret",
        session_secret="test-session-secret-0123456789",
        public_base_url="http://localhost:3000",
    )


def make_principal(*guild_ids: str, username: str = "alice") -> Principal:
    return Principal(
        id="1001",
        username=username,
        guilds=tuple(Guild(id=g, name=f"guild-{g}") for g in guild_ids),
    )


@pytest.fixture
def principal_factory():
    return make_principal

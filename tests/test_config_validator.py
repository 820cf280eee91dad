"""
Tests for environment validation.
"""

import pytest

from verifygate.utils.config_validator import ConfigError, ConfigValidator, load_settings

REQUIRED = {
    "DISCORD_TOKEN": "bot-token",
    "CLIENT_ID": "cid",
    "CLIENT_SECRET": "csecret",
    "REDIRECT_URL": "https://gate.test/auth/callback",
    "HCAPTCHA_SITEKEY": "site",
    "HCAPTCHA_SECRET": "secret",
}


class TestLoadSettings:

    def test_defaults(self) -> None:
        settings = load_settings(dict(REQUIRED))

        assert settings.port == 3000
        assert settings.session_max_age == 600
        assert settings.public_base_url == "http://localhost:3000"
        assert settings.verify_destination == "http://localhost:3000/auth/discord"
        assert settings.session_secret  # generated

    def test_missing_discord_token_is_fatal(self) -> None:
        env = dict(REQUIRED)
        del env["DISCORD_TOKEN"]

        with pytest.raises(ConfigError) as exc_info:
            load_settings(env)
        assert any("DISCORD_TOKEN" in e for e in exc_info.value.errors)

    def test_reports_every_missing_value(self) -> None:
        with pytest.raises(ConfigError) as exc_info:
            load_settings({})
        assert len(exc_info.value.errors) == len(REQUIRED)

    def test_overrides(self) -> None:
        env = dict(REQUIRED, PORT="8080", PUBLIC_BASE_URL="https://gate.test/",
                   VERIFY_LINK_URL="https://docs.test/verify", SESSION_SECRET="s" * 32)
        settings = load_settings(env)

        assert settings.port == 8080
        assert settings.auth_entry_url == "https://gate.test/auth/discord"
        assert settings.verify_destination == "https://docs.test/verify"
        assert settings.session_secret == "s" * 32

    @pytest.mark.parametrize("key,value", [
        ("PORT", "abc"),
        ("PORT", "70000"),
        ("SESSION_SECRET", "short"),
        ("LOG_LEVEL", "LOUD"),
    ])
    def test_invalid_values(self, key: str, value: str) -> None:
        with pytest.raises(ConfigError):
            load_settings(dict(REQUIRED, **{key: value}))


def test_validator_warns_without_session_secret() -> None:
    validator = ConfigValidator(dict(REQUIRED))
    ok, _ = validator.validate()
    assert ok
    assert any("SESSION_SECRET" in w for w in validator.warnings)

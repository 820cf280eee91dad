#!/usr/bin/env python3
"""
Configuration Validation

Validates the process environment on startup and turns it into a frozen
``Settings`` object. Missing required values are collected and reported
together rather than failing on the first one.
"""
import os
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from verifygate.utils.logger import get_logger

logger = get_logger("config")


class ConfigError(Exception):
    """Raised when the environment cannot produce a usable Settings."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


# =============================================================================
# CONFIGURATION SCHEMA
# =============================================================================

CONFIG_SCHEMA: Dict[str, Dict[str, Any]] = {
    # Required - the process cannot serve verifications without these
    "DISCORD_TOKEN": {"type": str, "required": True},
    "CLIENT_ID": {"type": str, "required": True},
    "CLIENT_SECRET": {"type": str, "required": True},
    "REDIRECT_URL": {"type": str, "required": True},
    "HCAPTCHA_SITEKEY": {"type": str, "required": True},
    "HCAPTCHA_SECRET": {"type": str, "required": True},

    # Optional - with defaults
    "PORT": {"type": int, "default": 3000, "min": 1, "max": 65535},
    "CONFIG_DB_PATH": {"type": str, "default": "verifygate.db"},
    "DEFAULT_RETURN_URL": {"type": str, "default": "https://discord.com/channels/@me"},
    "DEFAULT_SERVER_NAME": {"type": str, "default": "Morx Server"},
    "SESSION_MAX_AGE": {"type": int, "default": 600, "min": 30},
    "LOG_LEVEL": {"type": str, "default": "INFO", "valid": ["DEBUG", "INFO", "WARNING", "ERROR"]},

    # Optional - derived when unset
    "SESSION_SECRET": {"type": str, "optional": True, "min_length": 16},
    "PUBLIC_BASE_URL": {"type": str, "optional": True},
    "VERIFY_LINK_URL": {"type": str, "optional": True},
}


@dataclass(frozen=True)
class Settings:
    discord_token: str
    client_id: str
    client_secret: str
    redirect_url: str
    hcaptcha_sitekey: str
    hcaptcha_secret: str
    port: int = 3000
    config_db_path: str = "verifygate.db"
    default_return_url: str = "https://discord.com/channels/@me"
    default_server_name: str = "Morx Server"
    session_max_age: int = 600
    log_level: str = "INFO"
    session_secret: str = ""
    public_base_url: str = ""
    verify_link_url: str = ""

    @property
    def auth_entry_url(self) -> str:
        return f"{self.public_base_url.rstrip('/')}/auth/discord"

    @property
    def verify_destination(self) -> str:
        """Where the verify button sends users: a hosted page or our own OAuth entry."""
        return self.verify_link_url or self.auth_entry_url


# =============================================================================
# VALIDATION
# =============================================================================

class ConfigValidator:
    """Validates configuration on startup."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.validated_config: Dict[str, Any] = {}

    def _coerce(self, key: str, schema: Dict[str, Any], value: str) -> Any:
        if schema["type"] == int:
            try:
                number = int(value)
            except (ValueError, TypeError):
                self.errors.append(f"{key}: Invalid type, expected int, got {value!r}")
                return None
            if "min" in schema and number < schema["min"]:
                self.errors.append(f"{key}: Value {number} is below minimum {schema['min']}")
                return None
            if "max" in schema and number > schema["max"]:
                self.errors.append(f"{key}: Value {number} is above maximum {schema['max']}")
                return None
            return number

        value = str(value)
        if "min_length" in schema and len(value) < schema["min_length"]:
            self.errors.append(f"{key}: Length {len(value)} is below minimum {schema['min_length']}")
            return None
        if "valid" in schema and value.upper() not in schema["valid"]:
            self.errors.append(f"{key}: Value '{value}' not in valid values: {schema['valid']}")
            return None
        return value

    def validate(self) -> Tuple[bool, Dict[str, Any]]:
        """
        Validate all configuration.

        Returns:
            (is_valid, validated_config)
        """
        for key, schema in CONFIG_SCHEMA.items():
            value = self.environ.get(key, "").strip()

            if not value:
                if schema.get("required"):
                    self.errors.append(f"{key} is required but not set")
                elif "default" in schema:
                    self.validated_config[key] = schema["default"]
                else:
                    self.validated_config[key] = None
                continue

            coerced = self._coerce(key, schema, value)
            if coerced is not None:
                self.validated_config[key] = coerced

        if not self.validated_config.get("SESSION_SECRET"):
            self.warnings.append(
                "SESSION_SECRET not set; using a random per-process key, "
                "in-flight verifications will not survive a restart"
            )

        for error in self.errors:
            logger.error(f"Config validation error: {error}")
        for warning in self.warnings:
            logger.warning(f"Config validation warning: {warning}")

        if not self.errors:
            logger.info("Configuration validated successfully", extra={
                "warnings": len(self.warnings),
                "validated_keys": len(self.validated_config),
            })

        return len(self.errors) == 0, self.validated_config


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Validate the environment and build Settings.

    Raises:
        ConfigError: if any required value is missing or malformed
    """
    validator = ConfigValidator(environ)
    ok, config = validator.validate()
    if not ok:
        raise ConfigError(validator.errors)

    port = config["PORT"]
    public_base_url = config["PUBLIC_BASE_URL"] or f"http://localhost:{port}"
    settings = Settings(
        discord_token=config["DISCORD_TOKEN"],
        client_id=config["CLIENT_ID"],
        client_secret=config["CLIENT_SECRET"],
        redirect_url=config["REDIRECT_URL"],
        hcaptcha_sitekey=config["HCAPTCHA_SITEKEY"],
        hcaptcha_secret=config["HCAPTCHA_SECRET"],
        port=port,
        config_db_path=config["CONFIG_DB_PATH"],
        default_return_url=config["DEFAULT_RETURN_URL"],
        default_server_name=config["DEFAULT_SERVER_NAME"],
        session_max_age=config["SESSION_MAX_AGE"],
        log_level=config["LOG_LEVEL"].upper(),
        session_secret=config["SESSION_SECRET"] or secrets.token_urlsafe(32),
        public_base_url=public_base_url,
        verify_link_url=config["VERIFY_LINK_URL"] or "",
    )
    return settings

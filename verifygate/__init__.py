"""Discord verification gateway: OAuth2 + hCaptcha check against a guild ban list."""

__version__ = "1.0.0"

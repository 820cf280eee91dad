"""
Authentication Module
=====================
Discord OAuth2 identity exchange, hCaptcha gate and signed verification
sessions for the verification flow.
"""

from .discord_oauth import (
    DiscordOAuthClient,
    OAuthExchangeError,
)
from .hcaptcha import (
    CaptchaResult,
    HCaptchaVerifier,
)
from .sessions import (
    VerificationSessions,
)

__all__ = [
    'DiscordOAuthClient',
    'OAuthExchangeError',
    'CaptchaResult',
    'HCaptchaVerifier',
    'VerificationSessions',
]

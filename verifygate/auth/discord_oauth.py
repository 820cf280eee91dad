"""
Discord OAuth2 Identity Exchange
================================
Authorization-code flow against Discord:
- Authorization URL with a CSRF state token
- Code -> access token exchange
- Principal lookup (/users/@me) and guild memberships (/users/@me/guilds)

Token exchange and user lookup failures are fatal to the flow and raise
OAuthExchangeError. The guild lookup fails open: anything other than a
list is treated as "no guilds".
"""

from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from verifygate.decision import Guild, Principal
from verifygate.utils.logger import get_logger

logger = get_logger("oauth")

# =============================================================================
# CONFIGURATION
# =============================================================================

DISCORD_AUTH_URL = 'https://discord.com/api/oauth2/authorize'
DISCORD_TOKEN_URL = 'https://discord.com/api/oauth2/token'
DISCORD_USER_URL = 'https://discord.com/api/users/@me'
DISCORD_GUILDS_URL = 'https://discord.com/api/users/@me/guilds'

OAUTH_SCOPES = ('identify', 'guilds')
REQUEST_TIMEOUT = 10


class OAuthExchangeError(Exception):
    """Raised when Discord refuses or fails the code exchange or user lookup."""


# =============================================================================
# OAUTH CLIENT
# =============================================================================

class DiscordOAuthClient:
    """Thin requests-based client for the Discord OAuth2 endpoints."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        session: Optional[requests.Session] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.session = session or requests.Session()

    def get_auth_url(self, state: str) -> str:
        """Discord authorization URL for the identify+guilds scopes."""
        params = {
            'client_id': self.client_id,
            'redirect_uri': self.redirect_uri,
            'response_type': 'code',
            'scope': ' '.join(OAUTH_SCOPES),
            'state': state,
            'prompt': 'none',
        }
        return f"{DISCORD_AUTH_URL}?{urlencode(params)}"

    def exchange_code_for_token(self, code: str) -> Dict[str, Any]:
        """Exchange authorization code for an access token payload."""
        data = {
            'client_id': self.client_id,
            'client_secret': self.client_secret,
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': self.redirect_uri,
        }
        headers = {'Content-Type': 'application/x-www-form-urlencoded'}

        try:
            response = self.session.post(DISCORD_TOKEN_URL, data=data, headers=headers, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise OAuthExchangeError(f"token exchange failed: {e}") from e

        if not isinstance(payload, dict) or 'access_token' not in payload:
            raise OAuthExchangeError("token exchange returned no access_token")
        return payload

    def get_discord_user(self, access_token: str) -> Dict[str, Any]:
        """Get the authenticated user from Discord."""
        headers = {'Authorization': f'Bearer {access_token}'}

        try:
            response = self.session.get(DISCORD_USER_URL, headers=headers, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            user = response.json()
        except (requests.RequestException, ValueError) as e:
            raise OAuthExchangeError(f"user lookup failed: {e}") from e

        if not isinstance(user, dict) or 'id' not in user:
            raise OAuthExchangeError("user lookup returned no id")
        return user

    def get_user_guilds(self, access_token: str) -> List[Guild]:
        """Guild memberships of the user; empty on any unexpected response."""
        headers = {'Authorization': f'Bearer {access_token}'}

        try:
            response = self.session.get(DISCORD_GUILDS_URL, headers=headers, timeout=REQUEST_TIMEOUT)
            guilds = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Guild lookup failed, continuing without guilds: {e}")
            return []

        if not isinstance(guilds, list):
            logger.warning("Guild lookup response is not a list", extra={"response": guilds})
            return []

        return [Guild.from_discord(g) for g in guilds if isinstance(g, dict)]

    def resolve_principal(self, code: str) -> Principal:
        """Run the whole exchange: code -> token -> user + guilds."""
        token_data = self.exchange_code_for_token(code)
        access_token = token_data['access_token']

        user = self.get_discord_user(access_token)
        guilds = self.get_user_guilds(access_token)

        return Principal(
            id=str(user['id']),
            username=str(user.get('username', '')),
            guilds=tuple(guilds),
        )

"""
Verification sessions.

Carries the OAuth2 principal from the callback to the captcha step as a
signed, time-limited token instead of server-side session state:

- OAuth ``state`` values: signed, expire after ``max_age``, single use
- Verification tokens: signed principal + nonce, expire after ``max_age``,
  consumed once by POST /verify

Only the replay memory (used states/nonces) lives in this process.
"""

import secrets
import threading
import time
from typing import Dict, Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from verifygate.decision import Principal
from verifygate.utils.logger import get_logger

logger = get_logger("sessions")

SESSION_MAX_AGE = 60 * 10  # 10 minutes
TOKEN_BYTES = 16


class VerificationSessions:

    def __init__(self, secret_key: str, max_age: int = SESSION_MAX_AGE):
        self.max_age = max_age
        self._state_serializer = URLSafeTimedSerializer(secret_key, salt='verifygate-oauth-state')
        self._session_serializer = URLSafeTimedSerializer(secret_key, salt='verifygate-session')
        self._used: Dict[str, float] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # replay memory
    # -------------------------------------------------------------------------

    def _prune(self, now: float) -> None:
        for key in [k for k, expires_at in self._used.items() if expires_at <= now]:
            del self._used[key]

    def _mark_used(self, key: str) -> bool:
        """Record ``key`` as used; False if it already was."""
        now = time.time()
        with self._lock:
            self._prune(now)
            if key in self._used:
                return False
            self._used[key] = now + self.max_age
            return True

    # -------------------------------------------------------------------------
    # OAuth state (CSRF)
    # -------------------------------------------------------------------------

    def issue_state(self) -> str:
        return self._state_serializer.dumps(secrets.token_urlsafe(TOKEN_BYTES))

    def consume_state(self, state: Optional[str]) -> bool:
        """Verify and consume an OAuth state token."""
        if not state:
            return False
        try:
            nonce = self._state_serializer.loads(state, max_age=self.max_age)
        except SignatureExpired:
            logger.info("OAuth state expired")
            return False
        except BadSignature:
            logger.warning("OAuth state signature invalid")
            return False
        return self._mark_used(f"state:{nonce}")

    # -------------------------------------------------------------------------
    # verification session
    # -------------------------------------------------------------------------

    def issue(self, principal: Principal) -> str:
        payload = {'principal': principal.to_dict(), 'nonce': secrets.token_urlsafe(TOKEN_BYTES)}
        return self._session_serializer.dumps(payload)

    def _decode(self, token: Optional[str]) -> Optional[dict]:
        if not token:
            return None
        try:
            payload = self._session_serializer.loads(token, max_age=self.max_age)
        except SignatureExpired:
            logger.info("Verification session expired")
            return None
        except BadSignature:
            logger.warning("Verification session signature invalid")
            return None
        if not isinstance(payload, dict) or not isinstance(payload.get('principal'), dict):
            return None
        return payload

    def load(self, token: Optional[str]) -> Optional[Principal]:
        """Principal for a valid, unexpired, unconsumed token."""
        payload = self._decode(token)
        if payload is None:
            return None
        with self._lock:
            if f"session:{payload.get('nonce')}" in self._used:
                return None
        return Principal.from_dict(payload['principal'])

    def consume(self, token: Optional[str]) -> Optional[Principal]:
        """Like load(), but the token cannot be used again afterwards."""
        payload = self._decode(token)
        if payload is None:
            return None
        if not self._mark_used(f"session:{payload.get('nonce')}"):
            logger.warning("Verification session replayed")
            return None
        return Principal.from_dict(payload['principal'])

"""
hCaptcha human-verification gate.

Forwards the client's response token to hCaptcha's siteverify endpoint and
accepts only an explicit ``success: true``. No retries; transport errors
propagate to the caller.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

import requests

from verifygate.utils.logger import get_logger

logger = get_logger("hcaptcha")

HCAPTCHA_VERIFY_URL = 'https://hcaptcha.com/siteverify'
REQUEST_TIMEOUT = 10


@dataclass(frozen=True)
class CaptchaResult:
    success: bool
    error_codes: Tuple[str, ...] = field(default=())


MISSING_TOKEN = CaptchaResult(success=False, error_codes=('missing-input-response',))


class HCaptchaVerifier:

    def __init__(
        self,
        secret: str,
        session: Optional[requests.Session] = None,
        verify_url: str = HCAPTCHA_VERIFY_URL,
    ):
        self.secret = secret
        self.session = session or requests.Session()
        self.verify_url = verify_url

    def verify(self, token: Optional[str], remote_ip: Optional[str] = None) -> CaptchaResult:
        """
        Check a client response token.

        A missing or empty token is rejected without calling hCaptcha.

        Raises:
            requests.RequestException: transport failure talking to hCaptcha
        """
        if not token:
            return MISSING_TOKEN

        data = {'secret': self.secret, 'response': token}
        if remote_ip:
            data['remoteip'] = remote_ip

        response = self.session.post(
            self.verify_url,
            data=data,
            headers={'Content-Type': 'application/x-www-form-urlencoded'},
            timeout=REQUEST_TIMEOUT,
        )
        payload = response.json()

        success = isinstance(payload, dict) and payload.get('success') is True
        error_codes = tuple(payload.get('error-codes') or ()) if isinstance(payload, dict) else ()
        if not success:
            logger.info("hCaptcha rejected token", extra={"error_codes": list(error_codes)})
        return CaptchaResult(success=success, error_codes=error_codes)

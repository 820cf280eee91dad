"""
Tests for the verification HTTP flow.
"""

import sqlite3
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from verifygate.auth import DiscordOAuthClient, HCaptchaVerifier, OAuthExchangeError, VerificationSessions
from verifygate.auth.hcaptcha import CaptchaResult
from verifygate.config_store import ConfigRecord, ConfigStore
from verifygate.decision import Classification, Guild, Principal, build_log_message
from verifygate.server import create_app
from tests.conftest import make_principal


@pytest.fixture
def sessions(settings) -> VerificationSessions:
    return VerificationSessions(settings.session_secret)


@pytest.fixture
def oauth(settings) -> DiscordOAuthClient:
    client = DiscordOAuthClient(settings.client_id, settings.client_secret, settings.redirect_url,
                                session=MagicMock(spec=requests.Session))
    client.resolve_principal = MagicMock()
    return client


@pytest.fixture
def captcha() -> MagicMock:
    verifier = MagicMock(spec=HCaptchaVerifier)
    verifier.verify.return_value = CaptchaResult(success=True)
    return verifier


@pytest.fixture
def notify() -> MagicMock:
    return MagicMock()


@pytest.fixture
def client(settings, store, sessions, oauth, captcha, notify):
    app = create_app(settings, store, sessions, oauth, captcha, notify=notify, bot_ready=lambda: True)
    app.config["TESTING"] = True
    return app.test_client()


def _db_bytes(store: ConfigStore) -> bytes:
    with open(store.db_path, "rb") as f:
        return f.read()


class TestPages:

    def test_index(self, client) -> None:
        response = client.get("/")
        assert response.status_code == 200
        assert "稼働中" in response.get_data(as_text=True)

    def test_health(self, client) -> None:
        assert client.get("/health").get_json() == {"status": "ok", "bot_ready": True}

    def test_unknown_route_is_still_404(self, client) -> None:
        assert client.get("/nope").status_code == 404

    def test_auth_error_page(self, client) -> None:
        assert "失敗" in client.get("/auth/error").get_data(as_text=True)


class TestOAuthFlow:

    def _start(self, client, path="/auth/discord") -> str:
        response = client.get(path)
        assert response.status_code == 302
        location = urlparse(response.headers["Location"])
        assert location.netloc == "discord.com"
        return parse_qs(location.query)["state"][0]

    def test_callback_redirects_to_captcha(self, client, oauth) -> None:
        oauth.resolve_principal.return_value = make_principal("G1")
        state = self._start(client)

        response = client.get(f"/auth/callback?code=abc&state={state}")

        assert response.status_code == 302
        location = urlparse(response.headers["Location"])
        assert location.path == "/hcaptcha"
        assert parse_qs(location.query)["session"]
        oauth.resolve_principal.assert_called_once_with("abc")

    def test_auth_alias(self, client) -> None:
        assert self._start(client, "/auth")

    def test_state_cannot_be_reused(self, client, oauth) -> None:
        oauth.resolve_principal.return_value = make_principal()
        state = self._start(client)
        client.get(f"/auth/callback?code=abc&state={state}")

        response = client.get(f"/auth/callback?code=abc&state={state}")

        assert urlparse(response.headers["Location"]).path == "/auth/error"
        assert oauth.resolve_principal.call_count == 1

    def test_missing_code(self, client) -> None:
        state = self._start(client)
        response = client.get(f"/auth/callback?state={state}")
        assert urlparse(response.headers["Location"]).path == "/auth/error"

    def test_consent_denied(self, client) -> None:
        response = client.get("/auth/callback?error=access_denied")
        assert urlparse(response.headers["Location"]).path == "/auth/error"

    def test_exchange_failure_redirects_to_error(self, client, oauth) -> None:
        oauth.resolve_principal.side_effect = OAuthExchangeError("nope")
        state = self._start(client)

        response = client.get(f"/auth/callback?code=abc&state={state}")

        assert urlparse(response.headers["Location"]).path == "/auth/error"


class TestCaptchaPage:

    def test_requires_session(self, client) -> None:
        assert client.get("/hcaptcha").status_code == 401
        assert client.get("/hcaptcha?session=garbage").status_code == 401

    def test_renders_sitekey_and_server_name(self, client, store, sessions) -> None:
        store.update(lambda c: ConfigRecord(return_url="https://discord.com/channels/555/1"))
        principal = Principal("1", "alice", (Guild("555", "Home Server"),))

        response = client.get(f"/hcaptcha?session={sessions.issue(principal)}")

        html = response.get_data(as_text=True)
        assert response.status_code == 200
        assert 'data-sitekey="site-key"' in html
        assert "Home Server" in html

    def test_default_server_name(self, client, sessions) -> None:
        response = client.get(f"/hcaptcha?session={sessions.issue(make_principal())}")
        assert "Morx Server" in response.get_data(as_text=True)


class TestVerify:

    def _post(self, client, sessions, principal, token="tok"):
        data = {"session": sessions.issue(principal)}
        if token is not None:
            data["h-captcha-response"] = token
        return client.post("/verify", data=data)

    def test_banned_member_is_denied_and_logged(self, client, store, sessions, notify) -> None:
        store.update(lambda c: c.with_ban_guild("G1"))
        principal = make_principal("G1", "G2", username="mallory")

        response = self._post(client, sessions, principal)

        assert response.status_code == 200
        assert "BANNED" in response.get_data(as_text=True)

        notify.assert_called_once()
        config, notified_principal, outcome = notify.call_args.args
        assert outcome.classification is Classification.DENIED
        message = build_log_message(notified_principal, outcome)
        assert "mallory" in message and "BANNED" in message

    def test_other_member_is_allowed(self, client, store, sessions, notify) -> None:
        store.update(lambda c: c.with_ban_guild("G1"))

        response = self._post(client, sessions, make_principal("G2", "G3"))

        assert response.status_code == 200
        outcome = notify.call_args.args[2]
        assert outcome.classification is Classification.ALLOWED
        assert "認証成功" in response.get_data(as_text=True)

    def test_missing_token(self, client, sessions, captcha, notify) -> None:
        response = self._post(client, sessions, make_principal(), token=None)

        assert response.status_code == 400
        captcha.verify.assert_not_called()
        notify.assert_not_called()

    def test_rejected_captcha(self, client, store, sessions, captcha, notify) -> None:
        store.update(lambda c: c.with_ban_guild("G1"))
        before = _db_bytes(store)
        captcha.verify.return_value = CaptchaResult(success=False, error_codes=("invalid-input-response",))

        response = self._post(client, sessions, make_principal("G1"))

        assert response.status_code == 400
        notify.assert_not_called()
        assert _db_bytes(store) == before

    def test_rejected_captcha_leaves_session_usable(self, client, sessions, captcha, notify) -> None:
        token = sessions.issue(make_principal())
        captcha.verify.return_value = CaptchaResult(success=False)
        client.post("/verify", data={"session": token, "h-captcha-response": "bad"})

        captcha.verify.return_value = CaptchaResult(success=True)
        response = client.post("/verify", data={"session": token, "h-captcha-response": "good"})

        assert response.status_code == 200

    def test_session_cannot_be_replayed(self, client, sessions, notify) -> None:
        token = sessions.issue(make_principal())
        client.post("/verify", data={"session": token, "h-captcha-response": "tok"})

        response = client.post("/verify", data={"session": token, "h-captcha-response": "tok"})

        assert response.status_code == 401
        assert notify.call_count == 1

    def test_requires_session(self, client, captcha) -> None:
        response = client.post("/verify", data={"h-captcha-response": "tok"})
        assert response.status_code == 401
        captcha.verify.assert_not_called()

    def test_captcha_transport_failure_is_500(self, client, sessions, captcha, notify) -> None:
        captcha.verify.side_effect = requests.ConnectionError("down")

        response = self._post(client, sessions, make_principal())

        assert response.status_code == 500
        notify.assert_not_called()

    def test_store_failure_is_plain_500(self, client, store, sessions, notify, monkeypatch) -> None:
        monkeypatch.setattr(store, "load", MagicMock(side_effect=sqlite3.OperationalError("database is locked")))

        response = self._post(client, sessions, make_principal())

        assert response.status_code == 500
        assert response.get_data(as_text=True) == "Internal Server Error"
        notify.assert_not_called()

    def test_notification_failure_still_renders_result(self, client, sessions, notify) -> None:
        notify.side_effect = RuntimeError("discord down")
        response = self._post(client, sessions, make_principal())
        assert response.status_code == 200

    def test_return_url_on_result_page(self, client, store, sessions) -> None:
        store.update(lambda c: ConfigRecord(return_url="https://discord.com/channels/9/9"))
        html = self._post(client, sessions, make_principal()).get_data(as_text=True)
        assert 'href="https://discord.com/channels/9/9"' in html

    def test_default_return_url(self, client, sessions) -> None:
        html = self._post(client, sessions, make_principal()).get_data(as_text=True)
        assert 'href="https://discord.com/channels/@me"' in html

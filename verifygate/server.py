#!/usr/bin/env python3
"""
Verification Gateway HTTP Server

Browser side of the verification flow:
  /auth/discord -> Discord consent -> /auth/callback -> /hcaptcha -> POST /verify

The OAuth2 principal travels between steps as a signed, time-limited
session token (query string, then hidden form field).
"""
from typing import Callable, Optional

import requests
from flask import Flask, jsonify, redirect, render_template, request, url_for
from werkzeug.exceptions import HTTPException

from verifygate.auth import DiscordOAuthClient, HCaptchaVerifier, OAuthExchangeError, VerificationSessions
from verifygate.config_store import ConfigRecord, ConfigStore
from verifygate.decision import Principal, VerificationOutcome, classify, names_and_icons, server_name_for
from verifygate.utils.config_validator import Settings
from verifygate.utils.logger import get_logger

logger = get_logger("server")

NotifyFn = Callable[[ConfigRecord, Principal, VerificationOutcome], object]


def create_app(
    settings: Settings,
    store: ConfigStore,
    sessions: VerificationSessions,
    oauth: DiscordOAuthClient,
    captcha: HCaptchaVerifier,
    notify: Optional[NotifyFn] = None,
    bot_ready: Callable[[], bool] = lambda: False,
) -> Flask:
    """
    Build the Flask app.

    Args:
        notify: called with (config, principal, outcome) after a decision;
            exceptions from it are logged, the user still sees the result
        bot_ready: reported by /health
    """
    app = Flask(__name__)

    # =========================================================================
    # PAGES
    # =========================================================================

    @app.route('/')
    def index():
        return '✅ Bot Webサーバー稼働中'

    @app.route('/health')
    def health():
        return jsonify({'status': 'ok', 'bot_ready': bool(bot_ready())})

    @app.route('/auth/error')
    def auth_error():
        return '❌ Discord認証に失敗しました。'

    # =========================================================================
    # AUTHENTICATION (Discord OAuth)
    # =========================================================================

    @app.route('/auth')
    @app.route('/auth/discord')
    def auth_discord_start():
        """Start Discord OAuth flow."""
        return redirect(oauth.get_auth_url(sessions.issue_state()))

    @app.route('/auth/callback')
    def auth_discord_callback():
        """
        Discord OAuth callback.

        Query params:
        - code: Authorization code from Discord
        - state: CSRF state token
        """
        ip = request.remote_addr or ''

        if request.args.get('error'):
            logger.info("OAuth consent denied", extra={"error": request.args.get('error'), "ip": ip})
            return redirect(url_for('auth_error'))

        code = request.args.get('code', '')
        if not code or not sessions.consume_state(request.args.get('state')):
            logger.warning("OAuth callback with missing code or bad state", extra={"ip": ip})
            return redirect(url_for('auth_error'))

        try:
            principal = oauth.resolve_principal(code)
        except OAuthExchangeError as e:
            logger.error(f"OAuth exchange failed: {e}", extra={"ip": ip})
            return redirect(url_for('auth_error'))

        logger.info(
            f"✅ OAuth認証成功: {principal.username}",
            extra={"user_id": principal.id, "guilds": len(principal.guilds)},
        )
        return redirect(url_for('hcaptcha_page', session=sessions.issue(principal)))

    # =========================================================================
    # HUMAN VERIFICATION
    # =========================================================================

    @app.route('/hcaptcha')
    def hcaptcha_page():
        session_token = request.args.get('session', '')
        principal = sessions.load(session_token)
        if principal is None:
            return '⚠️ 認証が必要です', 401

        config = store.load()
        server_name = server_name_for(principal, config.return_url, settings.default_server_name)

        return render_template(
            'hcaptcha.html',
            sitekey=settings.hcaptcha_sitekey,
            server_name=server_name,
            session_token=session_token,
        )

    @app.route('/verify', methods=['POST'])
    def verify():
        token = request.form.get('h-captcha-response', '')
        if not token:
            return 'HCaptchaトークンが見つかりません。', 400

        session_token = request.form.get('session', '')
        if sessions.load(session_token) is None:
            return '⚠️ 認証が必要です', 401

        result = captcha.verify(token, remote_ip=request.remote_addr)
        if not result.success:
            return 'HCaptcha認証に失敗しました。', 400

        principal = sessions.consume(session_token)
        if principal is None:
            return '⚠️ 認証が必要です', 401

        config = store.load()
        outcome = classify(principal, config)

        if notify is not None:
            try:
                notify(config, principal, outcome)
            except Exception as e:
                logger.error(f"Outcome notification failed: {e}", extra={"user_id": principal.id}, exc_info=True)

        ban_names, ban_icons = names_and_icons(outcome.banned)
        success_names, success_icons = names_and_icons(outcome.allowed)

        logger.info(
            f"✅ {principal.username} 認証完了 → {outcome.summary}",
            extra={
                "user_id": principal.id,
                "classification": outcome.classification.value,
                "matched_guilds": [g.id for g in outcome.matched_groups],
            },
        )

        return render_template(
            'success.html',
            user=principal,
            result=outcome.summary,
            denied=outcome.is_denied,
            return_url=config.return_url or settings.default_return_url,
            ban_names=ban_names,
            ban_icons=ban_icons,
            success_names=success_names,
            success_icons=success_icons,
        )

    # =========================================================================
    # ERRORS
    # =========================================================================

    @app.errorhandler(requests.RequestException)
    def upstream_error(error):
        logger.error(f"❌ Upstream request failed: {error}", exc_info=True)
        return 'Internal Server Error', 500

    @app.errorhandler(Exception)
    def unhandled_error(error):
        if isinstance(error, HTTPException):
            return error
        logger.error(f"❌ Unhandled error on {request.path}: {error}", exc_info=True)
        return 'Internal Server Error', 500

    return app

#!/usr/bin/env python3
"""
Process entry point.

Loads .env, validates the environment, then runs the Flask server on a
background thread and the Discord bot on the main thread. Both share the
same ConfigStore; outcome notifications hop from Flask threads onto the
bot's event loop.

Run with: python -m verifygate.main   (or the `verifygate` console script)
"""
import sys
import threading

from dotenv import load_dotenv

# Before package imports: the logger reads LOG_* at import time
load_dotenv()

from verifygate.auth import DiscordOAuthClient, HCaptchaVerifier, VerificationSessions
from verifygate.config_store import ConfigStore
from verifygate.discord_bot.bot import VerifyGateBot
from verifygate.server import create_app
from verifygate.utils.config_validator import ConfigError, Settings, load_settings
from verifygate.utils.logger import get_logger, route_library_loggers, set_log_level

logger = get_logger("main")


def build(settings: Settings):
    """Wire the bot and the Flask app around one ConfigStore."""
    store = ConfigStore(settings.config_db_path)
    bot = VerifyGateBot(settings, store)

    app = create_app(
        settings,
        store,
        sessions=VerificationSessions(settings.session_secret, max_age=settings.session_max_age),
        oauth=DiscordOAuthClient(settings.client_id, settings.client_secret, settings.redirect_url),
        captcha=HCaptchaVerifier(settings.hcaptcha_secret),
        notify=bot.notifier.notify_outcome_threadsafe,
        bot_ready=bot.is_ready,
    )
    return bot, app


def main() -> int:
    try:
        settings = load_settings()
    except ConfigError as e:
        logger.critical(f"❌ Invalid configuration, refusing to start: {e}")
        return 1

    set_log_level(settings.log_level)
    route_library_loggers("discord", "werkzeug")

    bot, app = build(settings)

    server = threading.Thread(
        target=app.run,
        kwargs={"host": "0.0.0.0", "port": settings.port, "use_reloader": False},
        name="flask",
        daemon=True,
    )
    server.start()
    logger.info(f"🌐 Webサーバー起動: http://localhost:{settings.port}")

    bot.run(settings.discord_token, log_handler=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())

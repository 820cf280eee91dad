#!/usr/bin/env python3
"""
Operator command logic.

Each command is one atomic read-modify-write on the ConfigStore and
returns a CommandResult carrying the reply text. The discord.py handlers in
bot.py only extract options and forward here, so the authorization gate and
input validation live in one place.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional
from urllib.parse import urlparse

from verifygate.config_store import ConfigRecord, ConfigStore
from verifygate.utils.logger import get_logger

logger = get_logger("commands")

ADMIN_ONLY_MESSAGE = "⚠️ 管理者のみ使用可能です"
ALREADY_POSTED_MESSAGE = "⚠️ 認証ボタンはすでに送信済みです。"
MAX_ROLE_NAME_LENGTH = 100


@dataclass(frozen=True)
class CommandResult:
    ok: bool
    message: str


def _reject(message: str) -> CommandResult:
    return CommandResult(ok=False, message=message)


def is_guild_id(value: str) -> bool:
    return bool(value) and not any(ch.isspace() for ch in value)


def validate_return_url(url: str) -> Optional[str]:
    """Error message for an unusable return URL, None if it is fine."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return f"⚠️ URLの形式が正しくありません (http/https の絶対URLを指定してください): {url}"
    return None


# =============================================================================
# COMMANDS
# =============================================================================

def set_ban_guild(store: ConfigStore, guild_id: str) -> CommandResult:
    guild_id = (guild_id or "").strip()
    if not is_guild_id(guild_id):
        return _reject(f"⚠️ サーバーIDが正しくありません: {guild_id}")

    def add(config: ConfigRecord) -> ConfigRecord:
        if config.is_banned_guild(guild_id):
            return config
        return config.with_ban_guild(guild_id)

    store.update(add)
    return CommandResult(True, f"✅ Ban判定サーバーに {guild_id} を追加しました")


def remove_ban_guild(store: ConfigStore, guild_id: str) -> CommandResult:
    guild_id = (guild_id or "").strip()
    before = store.load()
    if not before.is_banned_guild(guild_id):
        return _reject(f"⚠️ {guild_id} はBan判定サーバーに登録されていません")

    store.update(lambda config: config.without_ban_guild(guild_id))
    return CommandResult(True, f"✅ Ban判定サーバーから {guild_id} を削除しました")


def _set_role(store: ConfigStore, attr: str, name: str, label: str) -> CommandResult:
    name = (name or "").strip()
    if not name or len(name) > MAX_ROLE_NAME_LENGTH:
        return _reject(f"⚠️ {label}は1〜{MAX_ROLE_NAME_LENGTH}文字で指定してください")

    store.update(lambda config: replace(config, **{attr: name}))
    return CommandResult(True, f"✅ {label}を {name} に設定しました")


def set_ban_role(store: ConfigStore, name: str) -> CommandResult:
    return _set_role(store, "ban_role_name", name, "Banロール名")


def set_success_role(store: ConfigStore, name: str) -> CommandResult:
    return _set_role(store, "success_role_name", name, "成功ロール名")


def set_log_channel(store: ConfigStore, channel_id: str, channel_name: str) -> CommandResult:
    channel_id = str(channel_id)
    store.update(lambda config: replace(config, log_channel_id=channel_id))
    return CommandResult(True, f"✅ ログチャンネルを {channel_name} に設定しました")


def set_log_channel2(store: ConfigStore, channel_id: str, channel_name: str) -> CommandResult:
    channel_id = str(channel_id)
    store.update(lambda config: replace(config, log_channel_id2=channel_id))
    return CommandResult(True, f"✅ 2つ目のログチャンネルを {channel_name} に設定しました")


def set_return_url(store: ConfigStore, url: str) -> CommandResult:
    url = (url or "").strip()
    error = validate_return_url(url)
    if error:
        return _reject(error)

    store.update(lambda config: replace(config, return_url=url))
    return CommandResult(True, f"✅ 認証後の戻り先URLを設定しました: {url}")


def show_config(store: ConfigStore) -> CommandResult:
    return CommandResult(True, f"```json\n{store.export_json()}\n```")


OPERATOR_COMMANDS: Dict[str, Callable[..., CommandResult]] = {
    "setbanguild": set_ban_guild,
    "removebanguild": remove_ban_guild,
    "setbanrole": set_ban_role,
    "setsuccessrole": set_success_role,
    "setlogchannel": set_log_channel,
    "setlogchannel2": set_log_channel2,
    "setreturnurl": set_return_url,
    "return": set_return_url,
    "showconfig": show_config,
}


def run_operator_command(
    store: ConfigStore,
    name: str,
    is_admin: bool,
    *args,
    invoker: str = "",
) -> CommandResult:
    """
    Authorize and run an operator command.

    Non-administrators are rejected before the store is touched.
    """
    if not is_admin:
        logger.warning("Operator command refused", extra={"command": name, "invoker": invoker})
        return _reject(ADMIN_ONLY_MESSAGE)

    handler = OPERATOR_COMMANDS.get(name)
    if handler is None:
        return _reject(f"⚠️ 不明なコマンドです: {name}")

    result = handler(store, *args)
    logger.info(
        "Operator command handled",
        extra={"command": name, "invoker": invoker, "ok": result.ok},
    )
    return result


def should_post_verify_control(
    last_author_id: Optional[int], bot_user_id: int, last_is_control: bool
) -> bool:
    """False only when the channel's newest message is a verification control we posted."""
    return not (last_author_id == bot_user_id and last_is_control)

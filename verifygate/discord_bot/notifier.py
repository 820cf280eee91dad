#!/usr/bin/env python3
"""
Discord Notifier Service

Reports verification outcomes to the operator's log channels:
- Primary log channel: one-line verdict
- Secondary log channel: server-list embed (banned / allowed guilds)

Channels are looked up in the bot's cache only. Unknown, uncached or
non-text channels are a silent no-op.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import discord

from verifygate.config_store import ConfigRecord
from verifygate.decision import Guild, Principal, VerificationOutcome, build_log_message
from verifygate.utils.logger import get_logger

logger = get_logger("notifier")

EMBED_FIELD_LIMIT = 1024
NOTIFY_TIMEOUT = 15  # seconds a Flask worker waits on the bot loop

COLOR_DENIED = 0xED4245
COLOR_ALLOWED = 0x57F287


def _field_value(guilds: Iterable[Guild]) -> str:
    lines: List[str] = []
    length = 0
    for guild in guilds:
        line = f"• {guild.name}"
        if length + len(line) + 1 > EMBED_FIELD_LIMIT - 4:
            lines.append("…")
            break
        lines.append(line)
        length += len(line) + 1
    return "\n".join(lines) or "-"


def build_server_list_embed(principal: Principal, outcome: VerificationOutcome) -> dict:
    """Build a Discord embed listing the principal's banned and allowed servers."""
    embed: Dict[str, Any] = {
        "title": f"🎨 {principal.username} のサーバーリスト",
        "color": COLOR_DENIED if outcome.is_denied else COLOR_ALLOWED,
        "fields": [
            {
                "name": f"❌ Ban servers ({len(outcome.banned)})",
                "value": _field_value(outcome.banned),
                "inline": False
            },
            {
                "name": f"✅ Success servers ({len(outcome.allowed)})",
                "value": _field_value(outcome.allowed),
                "inline": False
            },
        ],
        "footer": {"text": f"User ID: {principal.id}"},
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

    # Banned server icon takes precedence for the thumbnail
    for guild in outcome.banned + outcome.allowed:
        if guild.icon_url:
            embed["thumbnail"] = {"url": guild.icon_url}
            break

    return embed


class Notifier:
    """Sends outcome notifications through a running discord.py client."""

    def __init__(self, client: discord.Client):
        self.client = client

    def _text_channel(self, channel_id: Optional[str]) -> Optional[discord.abc.Messageable]:
        if not channel_id:
            return None
        try:
            channel = self.client.get_channel(int(channel_id))
        except (TypeError, ValueError):
            logger.warning("Log channel id is not numeric", extra={"channel_id": channel_id})
            return None
        if channel is None or not isinstance(channel, discord.abc.Messageable):
            return None
        return channel

    async def notify(self, channel_id: Optional[str], content: str = None, embed: dict = None) -> bool:
        """Send to a cached text channel; False when there is nowhere to send."""
        channel = self._text_channel(channel_id)
        if channel is None:
            logger.debug("Notification skipped, channel unavailable", extra={"channel_id": channel_id})
            return False

        discord_embed = discord.Embed.from_dict(embed) if embed else None
        await channel.send(content=content, embed=discord_embed)
        return True

    async def notify_outcome(
        self,
        config: ConfigRecord,
        principal: Principal,
        outcome: VerificationOutcome,
    ) -> bool:
        """
        Report one verification.

        Returns whether the primary log line was delivered. A failure on the
        secondary channel is logged and does not affect the result.
        """
        delivered = await self.notify(config.log_channel_id, content=build_log_message(principal, outcome))

        if config.log_channel_id2 and principal.guilds:
            try:
                await self.notify(
                    config.log_channel_id2,
                    content=f"🎨 **{principal.username}** のサーバーリスト",
                    embed=build_server_list_embed(principal, outcome),
                )
            except discord.DiscordException as e:
                logger.error(f"Server list notification failed: {e}", extra={"user_id": principal.id})

        return delivered

    def notify_outcome_threadsafe(
        self,
        config: ConfigRecord,
        principal: Principal,
        outcome: VerificationOutcome,
    ) -> bool:
        """
        Synchronous wrapper for notify_outcome.
        Called from Flask worker threads; runs the coroutine on the bot loop.
        """
        if not self.client.is_ready():
            logger.warning("Bot not ready, outcome notification dropped", extra={"user_id": principal.id})
            return False

        future = asyncio.run_coroutine_threadsafe(
            self.notify_outcome(config, principal, outcome),
            self.client.loop,
        )
        return future.result(timeout=NOTIFY_TIMEOUT)

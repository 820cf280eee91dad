#!/usr/bin/env python3
"""
Verification decision.

A principal is denied when any guild they belong to is on the operator's
ban list; one banned guild is enough, regardless of how many others they
are in. Everything else is allowed.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple
from urllib.parse import urlparse

from verifygate.config_store import ConfigRecord

DISCORD_CDN_ICON_URL = "https://cdn.discordapp.com/icons/{guild_id}/{icon}.png"

ALLOWED_SUMMARY = "✅ 認証成功！"
DENIED_SUMMARY = "❌ 認証失敗 (BANNED)"


class Classification(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"


@dataclass(frozen=True)
class Guild:
    id: str
    name: str
    icon_url: Optional[str] = None

    @classmethod
    def from_discord(cls, payload: Dict[str, Any]) -> "Guild":
        """Build from a /users/@me/guilds entry."""
        guild_id = str(payload.get("id", ""))
        icon = payload.get("icon")
        icon_url = DISCORD_CDN_ICON_URL.format(guild_id=guild_id, icon=icon) if icon else None
        return cls(id=guild_id, name=str(payload.get("name", "")), icon_url=icon_url)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "iconURL": self.icon_url}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Guild":
        return cls(id=str(data["id"]), name=str(data.get("name", "")), icon_url=data.get("iconURL"))


@dataclass(frozen=True)
class Principal:
    id: str
    username: str
    guilds: Tuple[Guild, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "guilds": [g.to_dict() for g in self.guilds],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Principal":
        guilds = data.get("guilds")
        return cls(
            id=str(data.get("id", "")),
            username=str(data.get("username", "")),
            guilds=tuple(Guild.from_dict(g) for g in guilds) if isinstance(guilds, list) else (),
        )


@dataclass(frozen=True)
class VerificationOutcome:
    classification: Classification
    matched_groups: Tuple[Guild, ...]
    banned: Tuple[Guild, ...]
    allowed: Tuple[Guild, ...]

    @property
    def is_denied(self) -> bool:
        return self.classification is Classification.DENIED

    @property
    def summary(self) -> str:
        return DENIED_SUMMARY if self.is_denied else ALLOWED_SUMMARY


def classify(principal: Principal, config: ConfigRecord) -> VerificationOutcome:
    """Classify ``principal`` against ``config.ban_guilds``."""
    banned = tuple(g for g in principal.guilds if config.is_banned_guild(g.id))
    allowed = tuple(g for g in principal.guilds if not config.is_banned_guild(g.id))

    return VerificationOutcome(
        classification=Classification.DENIED if banned else Classification.ALLOWED,
        matched_groups=banned,
        banned=banned,
        allowed=allowed,
    )


def build_log_message(principal: Principal, outcome: VerificationOutcome) -> str:
    return f"🎯 **{principal.username}** の判定: {outcome.summary}"


def guild_id_from_return_url(return_url: str) -> Optional[str]:
    """Extract <guild> from https://discord.com/channels/<guild>/<channel>."""
    if not return_url:
        return None
    parts = [p for p in urlparse(return_url).path.split("/") if p]
    if len(parts) >= 2 and parts[0] == "channels" and parts[1].isdigit():
        return parts[1]
    return None


def server_name_for(principal: Principal, return_url: str, default: str) -> str:
    """Name of the guild the return URL points into, if the principal is a member."""
    guild_id = guild_id_from_return_url(return_url)
    if guild_id:
        for guild in principal.guilds:
            if guild.id == guild_id:
                return guild.name
    return default


def names_and_icons(guilds: Iterable[Guild]) -> Tuple[list, list]:
    """Split guilds into parallel name and icon lists for the result page."""
    guilds = list(guilds)
    return [g.name for g in guilds], [g.icon_url for g in guilds if g.icon_url]

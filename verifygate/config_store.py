#!/usr/bin/env python3
"""
Operator configuration storage.

One flat record (ban list, role names, log channels, return URL) kept as a
single JSON row in SQLite:

- Missing or malformed rows load as defaults
- Every save bumps a version number; callers may pass the version they
  read to get optimistic-concurrency protection
- ``update()`` does the read-modify-write inside one IMMEDIATE transaction
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from verifygate.utils.logger import get_logger

logger = get_logger("config_store")

DEFAULT_BAN_ROLE_NAME = "禁止"
DEFAULT_SUCCESS_ROLE_NAME = "成功"

# Record field -> key in the stored JSON document
_FIELD_KEYS = {
    "ban_guilds": "banGuilds",
    "ban_role_name": "banRoleName",
    "success_role_name": "successRoleName",
    "log_channel_id": "logChannelId",
    "log_channel_id2": "logChannelId2",
    "return_url": "returnURL",
}


class ConfigConflictError(Exception):
    """Raised when a versioned save finds the record changed underneath it."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"config version conflict: expected {expected}, found {actual}")


def _dedupe(values: Iterable[Any]) -> Tuple[str, ...]:
    seen: List[str] = []
    for value in values:
        value = str(value).strip()
        if value and value not in seen:
            seen.append(value)
    return tuple(seen)


@dataclass(frozen=True)
class ConfigRecord:
    ban_guilds: Tuple[str, ...] = ()
    ban_role_name: str = DEFAULT_BAN_ROLE_NAME
    success_role_name: str = DEFAULT_SUCCESS_ROLE_NAME
    log_channel_id: str = ""
    log_channel_id2: str = ""
    return_url: str = ""
    version: int = field(default=0, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "ban_guilds", _dedupe(self.ban_guilds))

    def is_banned_guild(self, guild_id: str) -> bool:
        return str(guild_id) in self.ban_guilds

    def with_ban_guild(self, guild_id: str) -> "ConfigRecord":
        return replace(self, ban_guilds=self.ban_guilds + (str(guild_id),))

    def without_ban_guild(self, guild_id: str) -> "ConfigRecord":
        return replace(self, ban_guilds=tuple(g for g in self.ban_guilds if g != str(guild_id)))

    def to_document(self) -> Dict[str, Any]:
        """The flat camelCase document (same shape as the legacy banConfig.json)."""
        doc: Dict[str, Any] = {}
        for attr, key in _FIELD_KEYS.items():
            value = getattr(self, attr)
            doc[key] = list(value) if attr == "ban_guilds" else value
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any], version: int = 0) -> "ConfigRecord":
        kwargs: Dict[str, Any] = {}
        for attr, key in _FIELD_KEYS.items():
            if key not in doc or doc[key] is None:
                continue
            value = doc[key]
            if attr == "ban_guilds":
                kwargs[attr] = tuple(value) if isinstance(value, list) else ()
            else:
                kwargs[attr] = str(value)
        return cls(version=version, **kwargs)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


class ConfigStore:
    """Single-row SQLite store for the operator ConfigRecord."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = str(db_path)
        self._init_db()

    @contextmanager
    def _connect(self):
        # isolation_level=None: transactions are opened explicitly
        conn = sqlite3.connect(self.db_path, timeout=10, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS config (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    version INTEGER NOT NULL,
                    data TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    @staticmethod
    def _read(conn: sqlite3.Connection) -> ConfigRecord:
        row = conn.execute("SELECT version, data FROM config WHERE id = 1").fetchone()
        if row is None:
            return ConfigRecord()

        version = int(row["version"])
        try:
            doc = json.loads(row["data"])
        except (TypeError, ValueError):
            doc = None
        if not isinstance(doc, dict):
            logger.warning("Stored config is malformed, using defaults", extra={"version": version})
            return ConfigRecord(version=version)
        return ConfigRecord.from_document(doc, version=version)

    @staticmethod
    def _write(conn: sqlite3.Connection, record: ConfigRecord, current_version: int) -> ConfigRecord:
        saved = replace(record, version=current_version + 1)
        conn.execute(
            """
            INSERT INTO config (id, version, data, updated_at) VALUES (1, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                version = excluded.version,
                data = excluded.data,
                updated_at = excluded.updated_at
            """,
            (saved.version, json.dumps(saved.to_document(), ensure_ascii=False, indent=2), _utc_now_iso()),
        )
        return saved

    def load(self) -> ConfigRecord:
        with self._connect() as conn:
            return self._read(conn)

    def save(self, record: ConfigRecord, expected_version: Optional[int] = None) -> ConfigRecord:
        """
        Overwrite the whole record.

        Args:
            record: the new record (its own ``version`` is ignored)
            expected_version: when given, the save fails unless the stored
                version still equals it

        Returns:
            the record as stored, carrying its new version

        Raises:
            ConfigConflictError: on a version mismatch
        """
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                current = self._read(conn)
                if expected_version is not None and current.version != expected_version:
                    raise ConfigConflictError(expected_version, current.version)
                saved = self._write(conn, record, current.version)
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise

        logger.info("Config saved", extra={"version": saved.version})
        return saved

    def update(self, mutator: Callable[[ConfigRecord], ConfigRecord]) -> ConfigRecord:
        """Atomically apply ``mutator`` to the current record and store the result."""
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                current = self._read(conn)
                updated = mutator(current)
                if updated == current:
                    conn.execute("ROLLBACK")
                    return current
                saved = self._write(conn, updated, current.version)
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise

        logger.info("Config updated", extra={"version": saved.version})
        return saved

    def get_return_link(self) -> str:
        return self.load().return_url

    def export_json(self) -> str:
        return json.dumps(self.load().to_document(), ensure_ascii=False, indent=2)

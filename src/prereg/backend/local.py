"""Embedded backend on SQLite.

Implements the hosted schema locally: the tables, the statistics views and
the stored procedures the services call, plus in-process realtime channels
that fire after every insert and update. Uses synchronous sqlite3; local
disk I/O is fast enough that a worker thread is not worth it.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import re
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set

from ..core.global_paths import GlobalPath
from ..core.id import Identifier
from ..util.error import log_error
from ..util.log import Log
from .base import (
    CHECK_VIOLATION,
    FOREIGN_KEY_VIOLATION,
    UNIQUE_VIOLATION,
    BackendError,
    ChangeEvent,
    ChangeHandler,
    ChannelStatus,
    Row,
    StatusHandler,
    matches,
)

log = Log.create({"service": "backend.local"})

DEFAULT_TARGET_MILESTONE = 100_000

_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

JSON_COLUMNS = {"reward_title", "reward_description"}
BOOL_COLUMNS = {"claimed"}

TIMESTAMP_COLUMNS = {
    "users": ("created_at", "updated_at"),
    "referrals": ("created_at",),
    "reward_tiers": ("created_at",),
    "user_rewards": ("unlocked_at",),
    "registration_stats": ("created_at", "updated_at"),
}

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    nickname TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL UNIQUE,
    phone TEXT,
    playstyle TEXT CHECK (playstyle IN ('warrior', 'assassin', 'mage')),
    language TEXT NOT NULL DEFAULT 'ko' CHECK (language IN ('ko', 'en', 'ja')),
    referral_code TEXT NOT NULL UNIQUE,
    referred_by TEXT REFERENCES users(id),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    CONSTRAINT users_email_check CHECK (email LIKE '%_@_%._%'),
    CONSTRAINT users_nickname_check CHECK (length(nickname) BETWEEN 2 AND 50)
);

CREATE TABLE IF NOT EXISTS referrals (
    id TEXT PRIMARY KEY,
    referrer_id TEXT NOT NULL REFERENCES users(id),
    referee_id TEXT NOT NULL REFERENCES users(id),
    created_at TEXT NOT NULL,
    UNIQUE (referrer_id, referee_id),
    CONSTRAINT referrals_no_self_referral CHECK (referrer_id <> referee_id)
);

CREATE TABLE IF NOT EXISTS reward_tiers (
    id TEXT PRIMARY KEY,
    tier_name TEXT NOT NULL,
    tier_order INTEGER NOT NULL UNIQUE,
    referral_requirement INTEGER NOT NULL,
    reward_title TEXT NOT NULL,
    reward_description TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_rewards (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id),
    tier_id TEXT NOT NULL REFERENCES reward_tiers(id),
    unlocked_at TEXT NOT NULL,
    claimed INTEGER NOT NULL DEFAULT 0,
    claimed_at TEXT,
    UNIQUE (user_id, tier_id)
);

CREATE TABLE IF NOT EXISTS registration_stats (
    id TEXT PRIMARY KEY,
    stat_date TEXT NOT NULL UNIQUE,
    daily_registrations INTEGER NOT NULL DEFAULT 0,
    cumulative_registrations INTEGER NOT NULL DEFAULT 0,
    target_milestone INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE VIEW IF NOT EXISTS user_referral_stats_mv AS
WITH RECURSIVE tree(root, member, depth) AS (
    SELECT referrer_id, referee_id, 1 FROM referrals
    UNION ALL
    SELECT tree.root, r.referee_id, tree.depth + 1
    FROM referrals r JOIN tree ON r.referrer_id = tree.member
    WHERE tree.depth < 10
)
SELECT
    u.id,
    u.nickname,
    u.email,
    u.referral_code,
    (SELECT COUNT(*) FROM tree WHERE tree.root = u.id AND tree.depth = 1) AS direct_referrals,
    (SELECT COUNT(*) FROM tree WHERE tree.root = u.id AND tree.depth > 1) AS indirect_referrals,
    (SELECT COUNT(*) FROM tree WHERE tree.root = u.id) AS total_population,
    strftime('%Y-%m-%dT%H:%M:%fZ', 'now') AS last_updated
FROM users u;

CREATE VIEW IF NOT EXISTS user_current_tier AS
SELECT
    s.id AS user_id,
    s.nickname,
    s.direct_referrals,
    t.tier_name,
    t.tier_order,
    t.reward_title,
    t.reward_description,
    t.referral_requirement,
    COALESCE(
        (SELECT MIN(n.referral_requirement) FROM reward_tiers n WHERE n.tier_order > t.tier_order)
            - s.direct_referrals,
        0
    ) AS referrals_to_next_tier
FROM user_referral_stats_mv s
JOIN reward_tiers t ON t.tier_order = (
    SELECT MAX(x.tier_order) FROM reward_tiers x WHERE x.referral_requirement <= s.direct_referrals
);

CREATE VIEW IF NOT EXISTS leaderboard AS
SELECT
    nickname,
    referral_code,
    direct_referrals,
    total_population,
    RANK() OVER (ORDER BY total_population DESC, direct_referrals DESC) AS rank
FROM user_referral_stats_mv
WHERE direct_referrals > 0
ORDER BY rank;
"""

DEFAULT_TIERS: List[Row] = [
    {
        "tier_name": "bronze",
        "tier_order": 1,
        "referral_requirement": 1,
        "reward_title": {"ko": "브론즈 보급품", "en": "Bronze Supply Crate", "ja": "ブロンズ補給品"},
        "reward_description": {
            "ko": "골드 1,000과 체력 물약 10개",
            "en": "1,000 gold and 10 health potions",
            "ja": "ゴールド1,000と体力ポーション10個",
        },
    },
    {
        "tier_name": "silver",
        "tier_order": 2,
        "referral_requirement": 3,
        "reward_title": {"ko": "실버 무기 상자", "en": "Silver Weapon Chest", "ja": "シルバー武器ボックス"},
        "reward_description": {
            "ko": "희귀 등급 무기 선택권",
            "en": "Rare weapon selection ticket",
            "ja": "レア武器選択券",
        },
    },
    {
        "tier_name": "gold",
        "tier_order": 3,
        "referral_requirement": 5,
        "reward_title": {"ko": "골드 탈것", "en": "Golden Mount", "ja": "ゴールド騎乗物"},
        "reward_description": {
            "ko": "한정판 황금 탈것",
            "en": "Limited edition golden mount",
            "ja": "限定版の黄金の騎乗物",
        },
    },
    {
        "tier_name": "legendary",
        "tier_order": 4,
        "referral_requirement": 10,
        "reward_title": {"ko": "전설의 칭호", "en": "Legendary Title", "ja": "伝説の称号"},
        "reward_description": {
            "ko": "전설 칭호와 전용 코스튬",
            "en": "Legendary title and exclusive costume",
            "ja": "伝説の称号と専用コスチューム",
        },
    },
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def _ident(name: str) -> str:
    if not _IDENT.match(name):
        raise BackendError("42601", f"invalid identifier: {name!r}")
    return name


def _columns(columns: str) -> str:
    if columns.strip() == "*":
        return "*"
    return ", ".join(_ident(c.strip()) for c in columns.split(","))


def _encode(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return value


def _decode(row: sqlite3.Row) -> Row:
    result: Row = {}
    for key in row.keys():
        value = row[key]
        if key in JSON_COLUMNS and isinstance(value, str):
            value = json.loads(value)
        elif key in BOOL_COLUMNS and value is not None:
            value = bool(value)
        result[key] = value
    return result


def _translate(error: sqlite3.Error) -> BackendError:
    """Map a sqlite error onto the PostgreSQL code the hosted schema raises."""
    text = str(error)
    if isinstance(error, sqlite3.IntegrityError):
        if text.startswith("UNIQUE constraint failed:"):
            cols = [c.strip() for c in text.split(":", 1)[1].split(",")]
            table = cols[0].split(".")[0]
            name = "_".join([table] + [c.split(".")[-1] for c in cols]) + "_key"
            return BackendError(
                UNIQUE_VIOLATION,
                f'duplicate key value violates unique constraint "{name}"',
                details=text,
            )
        if text.startswith("FOREIGN KEY constraint failed"):
            return BackendError(
                FOREIGN_KEY_VIOLATION,
                "insert or update violates foreign key constraint",
                details=text,
            )
        if text.startswith("CHECK constraint failed:"):
            name = text.split(":", 1)[1].strip()
            return BackendError(
                CHECK_VIOLATION,
                f'new row violates check constraint "{name}"',
                details=text,
            )
        if text.startswith("NOT NULL constraint failed:"):
            return BackendError("23502", "null value violates not-null constraint", details=text)
    if isinstance(error, sqlite3.OperationalError):
        if text.startswith("no such table"):
            return BackendError("42P01", "relation does not exist", details=text)
        if text.startswith("no such column"):
            return BackendError("42703", "column does not exist", details=text)
    return BackendError("XX000", text)


class LocalChannel:
    """In-process realtime channel."""

    def __init__(
        self,
        backend: "LocalBackend",
        name: str,
        table: str,
        on_change: ChangeHandler,
        *,
        eq: Optional[Dict[str, Any]] = None,
        event: Optional[str] = None,
        on_status: Optional[StatusHandler] = None,
    ) -> None:
        self.name = name
        self.table = table
        self._backend = backend
        self._on_change = on_change
        self._eq = dict(eq or {})
        self._event = event
        self._on_status = on_status
        self._status = ChannelStatus.SUBSCRIBED

    @property
    def status(self) -> ChannelStatus:
        return self._status

    def _set_status(self, status: ChannelStatus) -> None:
        self._status = status
        if self._on_status is None:
            return
        try:
            self._on_status(status)
        except Exception as e:
            log_error(e, f"channel:{self.name}:status")

    def wants(self, event: ChangeEvent) -> bool:
        if self._status != ChannelStatus.SUBSCRIBED or event.table != self.table:
            return False
        if self._event is not None and self._event != event.type:
            return False
        return matches(event.new, self._eq)

    async def deliver(self, event: ChangeEvent) -> None:
        if self._status != ChannelStatus.SUBSCRIBED:
            return
        try:
            result = self._on_change(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            log_error(e, f"channel:{self.name}:callback")

    async def close(self) -> None:
        if self._status == ChannelStatus.CLOSED:
            return
        self._backend._detach(self)
        self._set_status(ChannelStatus.CLOSED)
        log.debug("channel closed", {"name": self.name})


class LocalBackend:
    """SQLite implementation of the backend protocol.

    Args:
        database: SQLite path, ``":memory:"``, or ``None`` for
            ``<data dir>/prereg.db``
        target_milestone: Registration goal reported by the stats
        seed: Insert the default reward tiers into an empty database
    """

    def __init__(
        self,
        database: Optional[str] = None,
        *,
        target_milestone: int = DEFAULT_TARGET_MILESTONE,
        seed: bool = True,
    ) -> None:
        if database is None:
            data = Path(GlobalPath.data())
            data.mkdir(parents=True, exist_ok=True)
            database = str(data / "prereg.db")
        self.database = database
        self.target_milestone = target_milestone
        self._channels: List[LocalChannel] = []
        self._deliveries: Set[asyncio.Task[None]] = set()

        self._db = sqlite3.connect(database)
        self._db.row_factory = sqlite3.Row
        self._db.execute("PRAGMA foreign_keys=ON")
        if database != ":memory:":
            self._db.execute("PRAGMA journal_mode=WAL")
            self._db.execute("PRAGMA synchronous=NORMAL")
            self._db.execute("PRAGMA busy_timeout=5000")
        self._db.executescript(SCHEMA)
        self._db.commit()
        if seed:
            self._seed()
        log.info("local backend ready", {"database": database})

    def _seed(self) -> None:
        count = self._db.execute("SELECT COUNT(*) FROM reward_tiers").fetchone()[0]
        if count:
            return
        with self._db:
            for tier in DEFAULT_TIERS:
                self._insert_row("reward_tiers", dict(tier))

    # ------------------------------------------------------------------
    # Query surface
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        eq: Optional[Dict[str, Any]] = None,
        gt: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        sql = f"SELECT {_columns(columns)} FROM {_ident(table)}"
        clauses: List[str] = []
        params: List[Any] = []
        for key, value in (eq or {}).items():
            clauses.append(f"{_ident(key)} = ?")
            params.append(_encode(value))
        for key, value in (gt or {}).items():
            clauses.append(f"{_ident(key)} > ?")
            params.append(_encode(value))
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        if order:
            sql += f" ORDER BY {_ident(order)} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        return self._query(sql, params)

    async def insert(self, table: str, rows: Sequence[Row]) -> List[Row]:
        _ident(table)
        inserted: List[Row] = []
        events: List[ChangeEvent] = []
        try:
            with self._db:
                for row in rows:
                    new = self._insert_row(table, dict(row))
                    inserted.append(new)
                    events.append(ChangeEvent(type="INSERT", table=table, new=new))
                    if table == "users":
                        events.append(self._bump_registration_stats())
        except sqlite3.Error as e:
            raise _translate(e) from e

        for event in events:
            self._notify(event)
        return inserted

    async def update(self, table: str, values: Row, *, eq: Dict[str, Any]) -> List[Row]:
        if not eq:
            raise BackendError("21000", "UPDATE requires a WHERE clause")
        where = " AND ".join(f"{_ident(k)} = ?" for k in eq)
        where_params = [_encode(v) for v in eq.values()]
        values = dict(values)
        if table in ("users", "registration_stats"):
            values.setdefault("updated_at", _now())
        assignments = ", ".join(f"{_ident(k)} = ?" for k in values)

        try:
            with self._db:
                before = self._query(f"SELECT * FROM {_ident(table)} WHERE {where}", where_params)
                self._db.execute(
                    f"UPDATE {table} SET {assignments} WHERE {where}",
                    [_encode(v) for v in values.values()] + where_params,
                )
        except sqlite3.Error as e:
            raise _translate(e) from e

        ids = [row["id"] for row in before if "id" in row]
        updated = [self._get(table, id) for id in ids]
        for old, new in zip(before, updated):
            if new is not None:
                self._notify(ChangeEvent(type="UPDATE", table=table, new=new, old=old))
        return [row for row in updated if row is not None]

    async def rpc(self, fn: str, params: Optional[Dict[str, Any]] = None) -> Any:
        handler = getattr(self, f"_rpc_{fn}", None)
        if handler is None:
            raise BackendError("PGRST202", f"Could not find the function public.{fn}")
        try:
            return handler(**(params or {}))
        except sqlite3.Error as e:
            raise _translate(e) from e

    def channel(
        self,
        name: str,
        table: str,
        on_change: ChangeHandler,
        *,
        eq: Optional[Dict[str, Any]] = None,
        event: Optional[str] = None,
        on_status: Optional[StatusHandler] = None,
    ) -> LocalChannel:
        channel = LocalChannel(self, name, table, on_change, eq=eq, event=event, on_status=on_status)
        self._channels.append(channel)
        channel._set_status(ChannelStatus.SUBSCRIBED)
        log.debug("channel subscribed", {"name": name, "table": table})
        return channel

    async def aclose(self) -> None:
        for channel in list(self._channels):
            await channel.close()
        for task in list(self._deliveries):
            task.cancel()
        if self._deliveries:
            await asyncio.gather(*self._deliveries, return_exceptions=True)
        self._db.close()
        log.info("local backend closed", {"database": self.database})

    @property
    def channel_count(self) -> int:
        return len(self._channels)

    # ------------------------------------------------------------------
    # Stored procedures
    # ------------------------------------------------------------------

    def _rpc_get_global_stats(self) -> List[Row]:
        total_users = self._scalar("SELECT COUNT(*) FROM users")
        total_referrals = self._scalar("SELECT COUNT(*) FROM referrals")
        today = self._scalar(
            "SELECT daily_registrations FROM registration_stats WHERE stat_date = ?", [_today()]
        ) or 0
        target = self.target_milestone
        percentage = round(total_users / target * 100, 2) if target else 0
        return [{
            "total_users": total_users,
            "total_referrals": total_referrals,
            "today_registrations": today,
            "target_milestone": target,
            "completion_percentage": percentage,
        }]

    def _rpc_get_recent_referrals(self, user_uuid: str, limit_count: int = 10) -> List[Row]:
        return self._query(
            """
            SELECT r.referee_id, u.nickname, u.email, r.created_at,
                   (SELECT COUNT(*) FROM referrals x WHERE x.referrer_id = r.referee_id) AS referral_count
            FROM referrals r JOIN users u ON u.id = r.referee_id
            WHERE r.referrer_id = ?
            ORDER BY r.created_at DESC
            LIMIT ?
            """,
            [user_uuid, int(limit_count)],
        )

    def _rpc_get_user_by_referral_code(self, code: str) -> List[Row]:
        return self._query(
            "SELECT id, nickname, email FROM users WHERE referral_code = ?",
            [code.upper()],
        )

    def _rpc_check_and_unlock_rewards(self, user_uuid: str) -> None:
        direct = self._scalar("SELECT COUNT(*) FROM referrals WHERE referrer_id = ?", [user_uuid])
        tiers = self._query(
            """
            SELECT t.id FROM reward_tiers t
            WHERE t.referral_requirement <= ?
              AND NOT EXISTS (
                SELECT 1 FROM user_rewards r WHERE r.user_id = ? AND r.tier_id = t.id
              )
            ORDER BY t.tier_order
            """,
            [direct, user_uuid],
        )
        unlocked: List[Row] = []
        with self._db:
            for tier in tiers:
                unlocked.append(self._insert_row("user_rewards", {"user_id": user_uuid, "tier_id": tier["id"]}))
        for row in unlocked:
            self._notify(ChangeEvent(type="INSERT", table="user_rewards", new=row))
        if unlocked:
            log.info("rewards unlocked", {"user_id": user_uuid, "count": len(unlocked)})

    def _rpc_refresh_referral_stats(self) -> None:
        # The statistics view is computed on read; nothing to refresh.
        return None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        try:
            return [_decode(row) for row in self._db.execute(sql, list(params)).fetchall()]
        except sqlite3.Error as e:
            raise _translate(e) from e

    def _scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        row = self._db.execute(sql, list(params)).fetchone()
        return row[0] if row is not None else None

    def _get(self, table: str, id: str) -> Optional[Row]:
        rows = self._query(f"SELECT * FROM {_ident(table)} WHERE id = ?", [id])
        return rows[0] if rows else None

    def _prepare(self, table: str, row: Row) -> Row:
        row.setdefault("id", Identifier.row_id())
        now = _now()
        for column in TIMESTAMP_COLUMNS.get(table, ()):
            row.setdefault(column, now)
        if table == "users":
            if isinstance(row.get("email"), str):
                row["email"] = row["email"].strip().lower()
            row.setdefault("language", "ko")
            code = row.get("referral_code")
            row["referral_code"] = code.upper() if code else self._new_referral_code()
        elif table == "user_rewards":
            row.setdefault("claimed", False)
        return row

    def _new_referral_code(self) -> str:
        while True:
            code = Identifier.referral_code()
            if self._scalar("SELECT 1 FROM users WHERE referral_code = ?", [code]) is None:
                return code

    def _insert_row(self, table: str, row: Row) -> Row:
        row = self._prepare(table, row)
        keys = list(row)
        self._db.execute(
            f"INSERT INTO {_ident(table)} ({', '.join(_ident(k) for k in keys)}) "
            f"VALUES ({', '.join('?' for _ in keys)})",
            [_encode(row[k]) for k in keys],
        )
        return self._query(f"SELECT * FROM {table} WHERE id = ?", [row["id"]])[0]

    def _bump_registration_stats(self) -> ChangeEvent:
        today = _today()
        total = self._scalar("SELECT COUNT(*) FROM users")
        existing = self._query("SELECT * FROM registration_stats WHERE stat_date = ?", [today])
        if existing:
            old = existing[0]
            self._db.execute(
                """
                UPDATE registration_stats
                SET daily_registrations = daily_registrations + 1,
                    cumulative_registrations = ?, updated_at = ?
                WHERE id = ?
                """,
                [total, _now(), old["id"]],
            )
            new = self._query("SELECT * FROM registration_stats WHERE id = ?", [old["id"]])[0]
            return ChangeEvent(type="UPDATE", table="registration_stats", new=new, old=old)

        new = self._insert_row("registration_stats", {
            "stat_date": today,
            "daily_registrations": 1,
            "cumulative_registrations": total,
            "target_milestone": self.target_milestone,
        })
        return ChangeEvent(type="INSERT", table="registration_stats", new=new)

    def _notify(self, event: ChangeEvent) -> None:
        targets = [channel for channel in self._channels if channel.wants(event)]
        if not targets:
            return
        loop = asyncio.get_running_loop()
        for channel in targets:
            task = loop.create_task(channel.deliver(event))
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)

    def _detach(self, channel: LocalChannel) -> None:
        if channel in self._channels:
            self._channels.remove(channel)

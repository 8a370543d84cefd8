#!/usr/bin/env python3
"""
Pool Store — SQLite Persistence for Monitored Positions
========================================================

Tables:
  users            owner and linked Telegram chat
  monitored_pools  one row per watched position: identity, user thresholds
                   and the last snapshot written back by the monitor
  alerts_history   every alert decided (kind, text, delivery outcome)
  pool_metrics     one row per monitoring cycle per position

Tri-state columns (``last_in_range``, ``in_range``) store NULL for unknown;
they are never coerced to 0.
"""

import logging
import sqlite3
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from liquidity_guard.alerts import AlertThresholds

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    telegram_chat_id TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS monitored_pools (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
    position_id INTEGER NOT NULL,
    chain TEXT NOT NULL,
    protocol TEXT NOT NULL DEFAULT 'uniswap_v3',
    pool_address TEXT,
    token0_symbol TEXT,
    token1_symbol TEXT,
    fee_tier INTEGER,
    price_lower REAL,
    price_upper REAL,

    -- User thresholds
    alert_out_of_range INTEGER NOT NULL DEFAULT 1,
    alert_fees_threshold REAL NOT NULL DEFAULT 0,
    alert_il_threshold REAL NOT NULL DEFAULT 5,
    is_active INTEGER NOT NULL DEFAULT 1,

    -- Last snapshot (NULL = unknown)
    last_checked_at TEXT,
    last_in_range INTEGER,
    current_price REAL,
    fees_uncollected_usd REAL,
    impermanent_loss REAL,

    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS alerts_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pool_id INTEGER REFERENCES monitored_pools(id) ON DELETE CASCADE,
    alert_type TEXT NOT NULL,
    message TEXT NOT NULL,
    sent_at TEXT NOT NULL,
    was_sent_telegram INTEGER NOT NULL DEFAULT 0,
    telegram_message_id INTEGER,
    telegram_error TEXT
);

CREATE TABLE IF NOT EXISTS pool_metrics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pool_id INTEGER REFERENCES monitored_pools(id) ON DELETE CASCADE,
    current_price REAL,
    in_range INTEGER,
    tvl REAL,
    fees_earned_24h REAL,
    impermanent_loss REAL,
    apr REAL,
    recorded_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_monitored_pools_user_id ON monitored_pools(user_id);
CREATE INDEX IF NOT EXISTS idx_monitored_pools_is_active ON monitored_pools(is_active);
CREATE INDEX IF NOT EXISTS idx_alerts_history_pool_id ON alerts_history(pool_id);
CREATE INDEX IF NOT EXISTS idx_pool_metrics_pool_id ON pool_metrics(pool_id);
"""

# Identity columns the monitor may fill in once known; NULL never overwrites
_IDENTITY_COLUMNS = (
    "pool_address", "token0_symbol", "token1_symbol",
    "fee_tier", "price_lower", "price_upper",
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _tri_state(value) -> Optional[bool]:
    return None if value is None else bool(value)


def _to_db_bool(value: Optional[bool]) -> Optional[int]:
    return None if value is None else int(bool(value))


@dataclass
class MonitoredPool:
    """A ``monitored_pools`` row joined with its owner's Telegram chat."""

    id: int
    user_id: Optional[int]
    position_id: int
    chain: str
    protocol: str = "uniswap_v3"
    pool_address: Optional[str] = None
    token0_symbol: Optional[str] = None
    token1_symbol: Optional[str] = None
    fee_tier: Optional[int] = None
    price_lower: Optional[float] = None
    price_upper: Optional[float] = None
    alert_out_of_range: bool = True
    alert_fees_threshold: float = 0.0
    alert_il_threshold: float = 5.0
    is_active: bool = True
    last_checked_at: Optional[str] = None
    last_in_range: Optional[bool] = None
    current_price: Optional[float] = None
    fees_uncollected_usd: Optional[float] = None
    impermanent_loss: Optional[float] = None
    telegram_chat_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MonitoredPool":
        keys = row.keys()
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            position_id=row["position_id"],
            chain=row["chain"],
            protocol=row["protocol"],
            pool_address=row["pool_address"],
            token0_symbol=row["token0_symbol"],
            token1_symbol=row["token1_symbol"],
            fee_tier=row["fee_tier"],
            price_lower=row["price_lower"],
            price_upper=row["price_upper"],
            alert_out_of_range=bool(row["alert_out_of_range"]),
            alert_fees_threshold=row["alert_fees_threshold"] or 0.0,
            alert_il_threshold=row["alert_il_threshold"] or 0.0,
            is_active=bool(row["is_active"]),
            last_checked_at=row["last_checked_at"],
            last_in_range=_tri_state(row["last_in_range"]),
            current_price=row["current_price"],
            fees_uncollected_usd=row["fees_uncollected_usd"],
            impermanent_loss=row["impermanent_loss"],
            telegram_chat_id=row["telegram_chat_id"] if "telegram_chat_id" in keys else None,
        )

    def thresholds(self) -> AlertThresholds:
        return AlertThresholds(
            alert_out_of_range=self.alert_out_of_range,
            fees_threshold_usd=float(self.alert_fees_threshold or 0),
            il_threshold_pct=float(self.alert_il_threshold or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_SELECT_POOLS = """
    SELECT p.*, u.telegram_chat_id
    FROM monitored_pools p
    LEFT JOIN users u ON u.id = p.user_id
"""


class PoolStore:
    """
    Usage:
        store = PoolStore("liquidity_guard.db")
        user_id = store.add_user("alice", telegram_chat_id="123456")
        pool_id = store.add_pool(user_id, position_id=1234567, chain="base")
        for pool in store.list_active_pools():
            ...
    """

    def __init__(self, db_path: str = "liquidity_guard.db"):
        self.db_path = db_path
        self.conn = sqlite3.connect(db_path)
        self.conn.row_factory = sqlite3.Row  # Enable column access by name
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.create_tables()

    def create_tables(self) -> None:
        with self.conn:
            self.conn.executescript(SCHEMA)

    def close(self) -> None:
        self.conn.close()

    # ── Users ────────────────────────────────────────────────────────

    def add_user(self, name: str, telegram_chat_id: Optional[str] = None) -> int:
        with self.conn:
            cur = self.conn.execute(
                "INSERT INTO users (name, telegram_chat_id) VALUES (?, ?)",
                (name, telegram_chat_id),
            )
        return cur.lastrowid

    def find_user(self, name: str) -> Optional[int]:
        row = self.conn.execute("SELECT id FROM users WHERE name = ?", (name,)).fetchone()
        return row["id"] if row else None

    def set_telegram_chat_id(self, user_id: int, chat_id: Optional[str]) -> None:
        with self.conn:
            self.conn.execute(
                "UPDATE users SET telegram_chat_id = ? WHERE id = ?", (chat_id, user_id)
            )

    def unlink_telegram_chat(self, chat_id: str) -> int:
        """Forget a chat id everywhere (the user blocked the bot)."""
        with self.conn:
            cur = self.conn.execute(
                "UPDATE users SET telegram_chat_id = NULL WHERE telegram_chat_id = ?",
                (str(chat_id),),
            )
        return cur.rowcount

    # ── Monitored pools ──────────────────────────────────────────────

    def add_pool(
        self,
        user_id: Optional[int],
        position_id: int,
        chain: str,
        protocol: str = "uniswap_v3",
        alert_out_of_range: bool = True,
        alert_fees_threshold: float = 0.0,
        alert_il_threshold: float = 5.0,
        **identity,
    ) -> int:
        """Register a position to monitor; ``identity`` may prefill known columns."""
        unknown = set(identity) - set(_IDENTITY_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown pool columns: {sorted(unknown)}")
        columns = [
            "user_id", "position_id", "chain", "protocol",
            "alert_out_of_range", "alert_fees_threshold", "alert_il_threshold",
        ] + list(identity)
        values = [
            user_id, position_id, chain, protocol,
            int(alert_out_of_range), alert_fees_threshold, alert_il_threshold,
        ] + list(identity.values())
        placeholders = ", ".join("?" for _ in columns)
        with self.conn:
            cur = self.conn.execute(
                f"INSERT INTO monitored_pools ({', '.join(columns)}) VALUES ({placeholders})",
                values,
            )
        return cur.lastrowid

    def get_pool(self, pool_id: int) -> Optional[MonitoredPool]:
        row = self.conn.execute(_SELECT_POOLS + " WHERE p.id = ?", (pool_id,)).fetchone()
        return MonitoredPool.from_row(row) if row else None

    def list_active_pools(self, user_id: Optional[int] = None) -> List[MonitoredPool]:
        query = _SELECT_POOLS + " WHERE p.is_active = 1"
        params: tuple = ()
        if user_id is not None:
            query += " AND p.user_id = ?"
            params = (user_id,)
        rows = self.conn.execute(query + " ORDER BY p.id", params).fetchall()
        return [MonitoredPool.from_row(r) for r in rows]

    def update_snapshot(
        self,
        pool_id: int,
        last_in_range: Optional[bool],
        current_price: Optional[float],
        fees_uncollected_usd: Optional[float],
        checked_at: Optional[str] = None,
        **identity,
    ) -> None:
        """
        Write back the latest snapshot. Unknown values are stored as NULL;
        identity columns are only filled, never cleared.
        """
        unknown = set(identity) - set(_IDENTITY_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown pool columns: {sorted(unknown)}")
        sets = [
            "last_in_range = ?",
            "current_price = ?",
            "fees_uncollected_usd = ?",
            "last_checked_at = ?",
        ]
        values: list = [
            _to_db_bool(last_in_range),
            current_price,
            fees_uncollected_usd,
            checked_at or _now_iso(),
        ]
        for column, value in identity.items():
            sets.append(f"{column} = COALESCE(?, {column})")
            values.append(value)
        with self.conn:
            self.conn.execute(
                f"UPDATE monitored_pools SET {', '.join(sets)} WHERE id = ?",
                values + [pool_id],
            )

    def set_impermanent_loss(self, pool_id: int, impermanent_loss: Optional[float]) -> None:
        with self.conn:
            self.conn.execute(
                "UPDATE monitored_pools SET impermanent_loss = ? WHERE id = ?",
                (impermanent_loss, pool_id),
            )

    def deactivate_pool(self, pool_id: int) -> bool:
        with self.conn:
            cur = self.conn.execute(
                "UPDATE monitored_pools SET is_active = 0 WHERE id = ?", (pool_id,)
            )
        return cur.rowcount > 0

    def delete_pool(self, pool_id: int) -> bool:
        with self.conn:
            cur = self.conn.execute("DELETE FROM monitored_pools WHERE id = ?", (pool_id,))
        return cur.rowcount > 0

    # ── History ──────────────────────────────────────────────────────

    def record_alert(
        self,
        pool_id: int,
        alert_type: str,
        message: str,
        was_sent_telegram: bool = False,
        telegram_message_id: Optional[int] = None,
        telegram_error: Optional[str] = None,
        sent_at: Optional[str] = None,
    ) -> int:
        with self.conn:
            cur = self.conn.execute(
                """INSERT INTO alerts_history
                   (pool_id, alert_type, message, sent_at, was_sent_telegram,
                    telegram_message_id, telegram_error)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    pool_id, alert_type, message, sent_at or _now_iso(),
                    int(was_sent_telegram), telegram_message_id, telegram_error,
                ),
            )
        return cur.lastrowid

    def record_metric(
        self,
        pool_id: int,
        current_price: Optional[float],
        in_range: Optional[bool],
        fees_usd: Optional[float] = None,
        tvl: Optional[float] = None,
        impermanent_loss: Optional[float] = None,
        recorded_at: Optional[str] = None,
    ) -> int:
        with self.conn:
            cur = self.conn.execute(
                """INSERT INTO pool_metrics
                   (pool_id, current_price, in_range, tvl, fees_earned_24h,
                    impermanent_loss, recorded_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    pool_id, current_price, _to_db_bool(in_range), tvl, fees_usd,
                    impermanent_loss, recorded_at or _now_iso(),
                ),
            )
        return cur.lastrowid

    def alert_history(self, pool_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT * FROM alerts_history WHERE pool_id = ? ORDER BY id DESC LIMIT ?",
            (pool_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    def metrics(self, pool_id: int, limit: int = 100) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            "SELECT * FROM pool_metrics WHERE pool_id = ? ORDER BY id DESC LIMIT ?",
            (pool_id, limit),
        ).fetchall()
        result = []
        for r in rows:
            item = dict(r)
            item["in_range"] = _tri_state(item["in_range"])
            result.append(item)
        return result

"""
Persistence for the Story IP Monitor.

``MonitorStore`` is the one fixed interface the monitor talks to;
``SQLiteMonitorStore`` implements it on a local SQLite file. Decimal
values are stored as TEXT to keep exact precision. Every failure is
raised as ``PersistenceError``.

Usage:
    from data.store import SQLiteMonitorStore

    store = SQLiteMonitorStore()
    await store.save_asset_record(event)
    recent = await store.get_recent_assets(hours=4)
    store.close()
"""

from __future__ import annotations

import sqlite3
import time
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import DEFAULT_WHALE_THRESHOLD, SECONDS_PER_HOUR
from shared.types import AssetCreationEvent, Subscriber, WhaleTransactionRecord

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence


class PersistenceError(Exception):
    """Raised when a store read or write fails."""


class MonitorStore(Protocol):
    async def save_asset_record(self, event: AssetCreationEvent) -> None: ...

    async def get_asset_record(self, address: str) -> AssetCreationEvent | None: ...

    async def get_recent_assets(self, hours: float) -> list[AssetCreationEvent]: ...

    async def save_whale_transaction(self, record: WhaleTransactionRecord) -> None: ...

    async def get_recent_whale_transactions(self, hours: float) -> list[WhaleTransactionRecord]: ...

    async def get_token_whale_transactions(self, token_address: str) -> list[WhaleTransactionRecord]: ...

    async def get_all_alertable_subscribers(self) -> list[Subscriber]: ...

    async def get_subscriber(self, user_id: int) -> Subscriber | None: ...

    async def upsert_subscriber(self, subscriber: Subscriber) -> None: ...

    async def get_subscriber_threshold(self, user_id: int) -> Decimal | None: ...

    async def set_subscriber_threshold(self, user_id: int, threshold: Decimal) -> None: ...

    def close(self) -> None: ...


class SQLiteMonitorStore:
    """SQLite-backed MonitorStore."""

    def __init__(
        self,
        db_path: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if db_path is None:
            db_path = get_config().get_database_path()

        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db_path = db_path
        self._clock = clock
        self._db = sqlite3.connect(db_path)
        self._db.row_factory = sqlite3.Row
        self._create_tables()

        self._logger = setup_module_logger("store", "store.log", module_folder="Store_Logs")

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _create_tables(self) -> None:
        self._db.executescript(f"""
            CREATE TABLE IF NOT EXISTS subscribers (
                user_id INTEGER PRIMARY KEY,
                chat_id INTEGER NOT NULL,
                username TEXT,
                whale_threshold TEXT NOT NULL DEFAULT '{DEFAULT_WHALE_THRESHOLD}',
                alerts_enabled INTEGER NOT NULL DEFAULT 1,
                created_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS ip_assets (
                address TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                creator TEXT NOT NULL,
                initial_supply TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                tx_hash TEXT NOT NULL,
                block_number INTEGER NOT NULL,
                detected_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS whale_transactions (
                tx_hash TEXT PRIMARY KEY,
                token_address TEXT NOT NULL,
                token_name TEXT NOT NULL,
                token_symbol TEXT NOT NULL,
                from_address TEXT NOT NULL,
                to_address TEXT NOT NULL,
                amount TEXT NOT NULL,
                category TEXT NOT NULL,
                block_number INTEGER NOT NULL,
                timestamp INTEGER NOT NULL,
                is_recent_token INTEGER NOT NULL,
                token_age TEXT NOT NULL,
                pattern TEXT NOT NULL,
                volume TEXT NOT NULL,
                tx_count INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_ip_assets_created ON ip_assets(created_at);
            CREATE INDEX IF NOT EXISTS idx_whale_tx_timestamp ON whale_transactions(timestamp);
            CREATE INDEX IF NOT EXISTS idx_whale_tx_token ON whale_transactions(token_address);
        """)
        self._db.commit()

    # ------------------------------------------------------------------
    # Low-level helpers
    # ------------------------------------------------------------------

    def _write(self, sql: str, params: Sequence[Any]) -> None:
        try:
            self._db.execute(sql, params)
            self._db.commit()
        except sqlite3.Error as exc:
            self._db.rollback()
            raise PersistenceError(f"Write failed: {exc}") from exc

    def _read(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        try:
            return self._db.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Read failed: {exc}") from exc

    def _cutoff(self, hours: float) -> int:
        return int(self._clock() - hours * SECONDS_PER_HOUR)

    # ------------------------------------------------------------------
    # IP assets
    # ------------------------------------------------------------------

    async def save_asset_record(self, event: AssetCreationEvent) -> None:
        """Upsert by address; re-saving the same asset is a no-op apart from refreshed fields."""
        self._write(
            """INSERT INTO ip_assets
               (address, name, creator, initial_supply, created_at, tx_hash,
                block_number, detected_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(address) DO UPDATE SET
                   name = excluded.name,
                   creator = excluded.creator,
                   initial_supply = excluded.initial_supply""",
            (
                event.address.lower(),
                event.name,
                event.creator,
                str(event.initial_supply),
                event.created_at,
                event.tx_hash,
                event.block_number,
                int(self._clock()),
            ),
        )
        self._logger.debug("Saved asset %s (%s)", event.address, event.name)

    async def get_asset_record(self, address: str) -> AssetCreationEvent | None:
        rows = self._read("SELECT * FROM ip_assets WHERE address = ?", (address.lower(),))
        return self._row_to_asset(rows[0]) if rows else None

    async def get_recent_assets(self, hours: float) -> list[AssetCreationEvent]:
        rows = self._read(
            "SELECT * FROM ip_assets WHERE created_at >= ? ORDER BY created_at DESC",
            (self._cutoff(hours),),
        )
        return [self._row_to_asset(r) for r in rows]

    @staticmethod
    def _row_to_asset(row: sqlite3.Row) -> AssetCreationEvent:
        return AssetCreationEvent(
            address=row["address"],
            name=row["name"],
            creator=row["creator"],
            initial_supply=int(row["initial_supply"]),
            created_at=row["created_at"],
            tx_hash=row["tx_hash"],
            block_number=row["block_number"],
        )

    # ------------------------------------------------------------------
    # Whale transactions
    # ------------------------------------------------------------------

    async def save_whale_transaction(self, record: WhaleTransactionRecord) -> None:
        """Upsert by tx hash."""
        self._write(
            """INSERT OR REPLACE INTO whale_transactions
               (tx_hash, token_address, token_name, token_symbol, from_address,
                to_address, amount, category, block_number, timestamp,
                is_recent_token, token_age, pattern, volume, tx_count)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                record.tx_hash,
                record.token_address.lower(),
                record.token_name,
                record.token_symbol,
                record.from_address,
                record.to_address,
                str(record.amount),
                record.category,
                record.block_number,
                record.timestamp,
                int(record.is_recent_token),
                record.token_age,
                record.pattern,
                str(record.volume),
                record.tx_count,
            ),
        )
        self._logger.debug("Saved whale tx %s: %s %s", record.tx_hash, record.amount, record.token_symbol)

    async def get_recent_whale_transactions(self, hours: float) -> list[WhaleTransactionRecord]:
        rows = self._read(
            "SELECT * FROM whale_transactions WHERE timestamp >= ? ORDER BY timestamp DESC",
            (self._cutoff(hours),),
        )
        return [self._row_to_whale(r) for r in rows]

    async def get_token_whale_transactions(self, token_address: str) -> list[WhaleTransactionRecord]:
        """All stored whale transactions of one token, oldest first."""
        rows = self._read(
            "SELECT * FROM whale_transactions WHERE token_address = ? "
            "ORDER BY timestamp ASC, block_number ASC",
            (token_address.lower(),),
        )
        return [self._row_to_whale(r) for r in rows]

    @staticmethod
    def _row_to_whale(row: sqlite3.Row) -> WhaleTransactionRecord:
        return WhaleTransactionRecord(
            tx_hash=row["tx_hash"],
            token_address=row["token_address"],
            token_name=row["token_name"],
            token_symbol=row["token_symbol"],
            from_address=row["from_address"],
            to_address=row["to_address"],
            amount=Decimal(row["amount"]),
            category=row["category"],
            block_number=row["block_number"],
            timestamp=row["timestamp"],
            is_recent_token=bool(row["is_recent_token"]),
            token_age=row["token_age"],
            pattern=row["pattern"],
            volume=Decimal(row["volume"]),
            tx_count=row["tx_count"],
        )

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    async def upsert_subscriber(self, subscriber: Subscriber) -> None:
        self._write(
            """INSERT INTO subscribers
               (user_id, chat_id, username, whale_threshold, alerts_enabled, created_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(user_id) DO UPDATE SET
                   chat_id = excluded.chat_id,
                   username = excluded.username,
                   whale_threshold = excluded.whale_threshold,
                   alerts_enabled = excluded.alerts_enabled""",
            (
                subscriber.user_id,
                subscriber.chat_id,
                subscriber.username,
                str(subscriber.whale_threshold),
                int(subscriber.alerts_enabled),
                int(self._clock()),
            ),
        )

    async def get_subscriber(self, user_id: int) -> Subscriber | None:
        rows = self._read("SELECT * FROM subscribers WHERE user_id = ?", (user_id,))
        return self._row_to_subscriber(rows[0]) if rows else None

    async def get_all_alertable_subscribers(self) -> list[Subscriber]:
        rows = self._read(
            "SELECT * FROM subscribers WHERE alerts_enabled = 1 ORDER BY user_id ASC"
        )
        return [self._row_to_subscriber(r) for r in rows]

    async def get_subscriber_threshold(self, user_id: int) -> Decimal | None:
        rows = self._read("SELECT whale_threshold FROM subscribers WHERE user_id = ?", (user_id,))
        return Decimal(rows[0]["whale_threshold"]) if rows else None

    async def set_subscriber_threshold(self, user_id: int, threshold: Decimal) -> None:
        """Update the threshold; raises PersistenceError for an unknown subscriber."""
        try:
            cursor = self._db.execute(
                "UPDATE subscribers SET whale_threshold = ? WHERE user_id = ?",
                (str(threshold), user_id),
            )
            self._db.commit()
        except sqlite3.Error as exc:
            self._db.rollback()
            raise PersistenceError(f"Write failed: {exc}") from exc
        if cursor.rowcount == 0:
            raise PersistenceError(f"Unknown subscriber {user_id}")

    @staticmethod
    def _row_to_subscriber(row: sqlite3.Row) -> Subscriber:
        return Subscriber(
            user_id=row["user_id"],
            chat_id=row["chat_id"],
            username=row["username"],
            whale_threshold=Decimal(row["whale_threshold"]),
            alerts_enabled=bool(row["alerts_enabled"]),
        )

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        self._db.close()

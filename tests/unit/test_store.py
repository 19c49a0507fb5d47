"""
Unit tests for data/store.py.

Every test runs against an in-memory SQLite database whose clock is
fixed at 1_700_000_000.
"""

from __future__ import annotations

import sqlite3
from decimal import Decimal

import pytest

from data.store import PersistenceError
from shared.types import AssetCreationEvent, Subscriber, WhaleTransactionRecord

NOW = 1_700_000_000


def _asset(address="0xAaAa000000000000000000000000000000000001", created_at=NOW, name="Song"):
    return AssetCreationEvent(
        address=address,
        name=name,
        creator="0x" + "99" * 20,
        initial_supply=10**24,
        created_at=created_at,
        tx_hash="0x" + "01" * 32,
        block_number=5,
    )


def _whale(tx_hash="0x" + "0a" * 32, timestamp=NOW, amount="123.45", token="0x" + "11" * 20):
    return WhaleTransactionRecord(
        tx_hash=tx_hash,
        token_address=token,
        token_name="Story Coin",
        token_symbol="STC",
        from_address="0x" + "22" * 20,
        to_address="0x" + "33" * 20,
        amount=Decimal(amount),
        category="transfer",
        block_number=9,
        timestamp=timestamp,
        is_recent_token=True,
        token_age="12m",
        pattern="30s",
        volume=Decimal("250.00"),
        tx_count=3,
    )


class TestAssets:

    async def test_save_and_get(self, memory_store):
        await memory_store.save_asset_record(_asset())
        record = await memory_store.get_asset_record("0xAAAA000000000000000000000000000000000001")

        assert record.address == "0xaaaa000000000000000000000000000000000001"
        assert record.name == "Song"
        assert record.initial_supply == 10**24

    async def test_save_is_idempotent(self, memory_store):
        await memory_store.save_asset_record(_asset())
        await memory_store.save_asset_record(_asset(name="Song (remaster)"))

        recent = await memory_store.get_recent_assets(4)
        assert len(recent) == 1
        assert recent[0].name == "Song (remaster)"

    async def test_recent_assets_respects_window(self, memory_store):
        await memory_store.save_asset_record(_asset(address="0x01", created_at=NOW - 3600))
        await memory_store.save_asset_record(_asset(address="0x02", created_at=NOW - 4 * 3600))
        await memory_store.save_asset_record(_asset(address="0x03", created_at=NOW - 5 * 3600))

        recent = await memory_store.get_recent_assets(4)
        assert [a.address for a in recent] == ["0x01", "0x02"]

    async def test_missing_asset(self, memory_store):
        assert await memory_store.get_asset_record("0xdead") is None


class TestWhaleTransactions:

    async def test_decimal_precision_preserved(self, memory_store):
        await memory_store.save_whale_transaction(_whale(amount="1234567890123456789.01"))
        [record] = await memory_store.get_recent_whale_transactions(1)
        assert record.amount == Decimal("1234567890123456789.01")
        assert record.volume == Decimal("250.00")
        assert record.is_recent_token is True

    async def test_same_tx_hash_stored_once(self, memory_store):
        await memory_store.save_whale_transaction(_whale())
        await memory_store.save_whale_transaction(_whale(amount="99"))
        records = await memory_store.get_recent_whale_transactions(24)
        assert len(records) == 1
        assert records[0].amount == Decimal("99")

    async def test_recent_newest_first(self, memory_store):
        await memory_store.save_whale_transaction(_whale(tx_hash="0x01", timestamp=NOW - 100))
        await memory_store.save_whale_transaction(_whale(tx_hash="0x02", timestamp=NOW - 10))
        await memory_store.save_whale_transaction(_whale(tx_hash="0x03", timestamp=NOW - 7200))

        records = await memory_store.get_recent_whale_transactions(1)
        assert [r.tx_hash for r in records] == ["0x02", "0x01"]

    async def test_token_history_oldest_first(self, memory_store):
        token = "0x" + "44" * 20
        await memory_store.save_whale_transaction(_whale(tx_hash="0x01", timestamp=NOW, token=token))
        await memory_store.save_whale_transaction(_whale(tx_hash="0x02", timestamp=NOW - 50, token=token))
        await memory_store.save_whale_transaction(_whale(tx_hash="0x03", timestamp=NOW - 20))

        records = await memory_store.get_token_whale_transactions(token.upper().replace("0X", "0x"))
        assert [r.tx_hash for r in records] == ["0x02", "0x01"]


class TestSubscribers:

    async def test_upsert_and_get(self, memory_store):
        await memory_store.upsert_subscriber(Subscriber(7, 700, "carol", Decimal("55.5")))
        subscriber = await memory_store.get_subscriber(7)
        assert subscriber == Subscriber(7, 700, "carol", Decimal("55.5"), True)

    async def test_upsert_updates_existing(self, memory_store):
        await memory_store.upsert_subscriber(Subscriber(7, 700, "carol"))
        await memory_store.upsert_subscriber(Subscriber(7, 701, "carol", alerts_enabled=False))

        subscriber = await memory_store.get_subscriber(7)
        assert subscriber.chat_id == 701
        assert subscriber.alerts_enabled is False

    async def test_alertable_excludes_disabled(self, memory_store):
        await memory_store.upsert_subscriber(Subscriber(2, 200))
        await memory_store.upsert_subscriber(Subscriber(1, 100))
        await memory_store.upsert_subscriber(Subscriber(3, 300, alerts_enabled=False))

        subscribers = await memory_store.get_all_alertable_subscribers()
        assert [s.user_id for s in subscribers] == [1, 2]

    async def test_threshold_roundtrip(self, memory_store):
        await memory_store.upsert_subscriber(Subscriber(1, 100))
        assert await memory_store.get_subscriber_threshold(1) == Decimal("40")

        await memory_store.set_subscriber_threshold(1, Decimal("75.25"))
        assert await memory_store.get_subscriber_threshold(1) == Decimal("75.25")

    async def test_threshold_of_unknown_subscriber(self, memory_store):
        assert await memory_store.get_subscriber_threshold(1) is None
        with pytest.raises(PersistenceError, match="Unknown subscriber"):
            await memory_store.set_subscriber_threshold(1, Decimal("10"))


class TestFailures:

    async def test_closed_database_raises_persistence_error(self, memory_store):
        memory_store.close()
        with pytest.raises(PersistenceError):
            await memory_store.get_recent_assets(4)

    async def test_error_chains_sqlite_cause(self, memory_store):
        memory_store.close()
        with pytest.raises(PersistenceError) as exc_info:
            await memory_store.get_subscriber(1)
        assert isinstance(exc_info.value.__cause__, sqlite3.Error)

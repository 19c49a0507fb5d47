"""
Block scanners for the two monitor streams.

- ``AssetScanner``: finds asset-creation transactions, dedups them by
  asset address, persists them and raises ASSET_CREATED alerts.
- ``WhaleScanner``: decodes ERC-20 transfers from every receipt, runs them
  through the WhaleDetector, persists whale transactions and raises
  WHALE_TRANSACTION alerts.
  Each transfer (tx hash, log index) reaches the detector at most once,
  so a range retried after a fault never re-counts volume.

Both walk a block range in increasing order and the transactions/logs of
each block in their original order. RPC failures surface as
ConnectivityFault and abort the range; persistence and sink failures are
logged and the event is considered processed.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from hexbytes import HexBytes

from bot_logging.logger_manager import setup_module_logger
from core.whale_detector import is_whale_candidate
from data.store import PersistenceError
from shared.constants import ZERO_ADDRESS
from shared.types import Alert, AlertKind, TransferEvent, WhaleTransactionRecord

if TYPE_CHECKING:
    import logging
    from collections.abc import Awaitable, Callable

    from core.asset_registry import AssetRegistry
    from core.event_decoder import EventDecoder
    from core.whale_detector import WhaleDetector
    from data.store import MonitorStore
    from execution.rpc_pool import RpcEndpointPool
    from shared.types import AssetCreationEvent

    AlertSink = Callable[[Alert], Awaitable[Any]]

_SEEN_ASSETS_LIMIT = 10_000
_SEEN_TRANSFERS_LIMIT = 50_000


def classify_transfer(transfer: TransferEvent) -> str:
    if transfer.from_address.lower() == ZERO_ADDRESS:
        return "mint"
    if transfer.to_address.lower() == ZERO_ADDRESS:
        return "burn"
    return "transfer"


def _tx_hash(tx: Any) -> Any:
    """Blocks fetched without full transactions carry bare hashes."""
    if isinstance(tx, (bytes, str)):
        return tx
    return tx["hash"]


class BlockScanner:
    stream = "base"

    def __init__(
        self,
        pool: RpcEndpointPool,
        decoder: EventDecoder,
        store: MonitorStore,
        registry: AssetRegistry,
        logger: logging.Logger,
    ) -> None:
        self._pool = pool
        self._decoder = decoder
        self._store = store
        self._registry = registry
        self._logger = logger
        self._sink: AlertSink | None = None

    def set_sink(self, sink: AlertSink | None) -> None:
        self._sink = sink

    async def scan_range(self, blocks: range) -> int:
        """Scan every block in order. Returns the number of events emitted."""
        emitted = 0
        for number in blocks:
            block = await self._pool.get_block(number, full_transactions=True)
            found = await self.scan_block(block)
            emitted += found
            self._logger.debug(
                "[%s] block %d: %d txs, %d events",
                self.stream,
                number,
                len(block.get("transactions") or []),
                found,
            )
        return emitted

    async def scan_block(self, block: Any) -> int:
        raise NotImplementedError

    async def _emit(self, alert: Alert) -> None:
        if self._sink is None:
            return
        try:
            await self._sink(alert)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.error(
                "[%s] alert sink failed for %s: %s", self.stream, alert.event.tx_hash, exc
            )


class AssetScanner(BlockScanner):
    stream = "assets"

    def __init__(
        self,
        pool: RpcEndpointPool,
        decoder: EventDecoder,
        store: MonitorStore,
        registry: AssetRegistry,
    ) -> None:
        super().__init__(
            pool,
            decoder,
            store,
            registry,
            setup_module_logger("asset_scanner", "asset_scanner.log", module_folder="Monitor_Logs"),
        )
        # insertion-ordered so the oldest entries are evicted first
        self._seen: dict[str, None] = {}

    async def scan_block(self, block: Any) -> int:
        timestamp = int(block["timestamp"])
        emitted = 0
        for tx in block.get("transactions") or []:
            if isinstance(tx, (bytes, str)):
                tx = await self._pool.get_transaction(tx)
            if not self._decoder.is_creation_candidate(tx):
                continue
            receipt = await self._pool.get_transaction_receipt(tx["hash"])
            if receipt.get("status", 1) == 0:
                continue
            for event in self._decoder.decode_asset_creations(tx, receipt, timestamp):
                if await self._process(event):
                    emitted += 1
        return emitted

    async def _process(self, event: AssetCreationEvent) -> bool:
        key = event.address.lower()
        if key in self._seen:
            return False

        try:
            existing = await self._store.get_asset_record(key)
        except PersistenceError as exc:
            self._logger.warning("Dedup lookup failed for %s: %s", key, exc)
            existing = None
        if existing is not None:
            self._remember(key)
            return False

        try:
            await self._store.save_asset_record(event)
        except PersistenceError as exc:
            self._logger.error("Failed to persist asset %s: %s", key, exc)

        self._remember(key)
        self._registry.note(event)
        self._logger.info(
            "New IP asset %s (%s) by %s in block %d",
            key,
            event.name,
            event.creator,
            event.block_number,
        )
        await self._emit(Alert(kind=AlertKind.ASSET_CREATED, event=event, is_fresh=True))
        return True

    def _remember(self, key: str) -> None:
        self._seen[key] = None
        if len(self._seen) > _SEEN_ASSETS_LIMIT:
            del self._seen[next(iter(self._seen))]


class WhaleScanner(BlockScanner):
    stream = "whales"

    def __init__(
        self,
        pool: RpcEndpointPool,
        decoder: EventDecoder,
        store: MonitorStore,
        registry: AssetRegistry,
        detector: WhaleDetector,
    ) -> None:
        super().__init__(
            pool,
            decoder,
            store,
            registry,
            setup_module_logger("whale_scanner", "whale_scanner.log", module_folder="Monitor_Logs"),
        )
        self._detector = detector
        # (tx_hash, log_index) of transfers already fed to the detector
        self._observed: dict[tuple[str, int], None] = {}

    async def scan_block(self, block: Any) -> int:
        timestamp = int(block["timestamp"])
        emitted = 0
        for tx in block.get("transactions") or []:
            # Transactions without call data carry no token transfers
            if not isinstance(tx, (bytes, str)) and not HexBytes(tx.get("input") or b""):
                continue
            receipt = await self._pool.get_transaction_receipt(_tx_hash(tx))
            if receipt.get("status", 1) == 0:
                continue
            for log in receipt.get("logs") or []:
                transfer = self._decoder.decode_transfer(log, timestamp)
                if transfer is None or not is_whale_candidate(transfer):
                    continue
                if (transfer.tx_hash, transfer.log_index) in self._observed:
                    continue
                if await self._process(transfer):
                    emitted += 1
        return emitted

    async def _process(self, transfer: TransferEvent) -> bool:
        metadata = await self._decoder.resolve_token_metadata(transfer.token_address)
        amount = self._decoder.to_token_units(transfer.raw_amount, metadata.decimals)

        verdict = await self._detector.evaluate(transfer, amount)
        self._remember((transfer.tx_hash, transfer.log_index))
        if not verdict.is_whale:
            return False

        token = transfer.token_address
        is_fresh = self._registry.is_fresh(token, transfer.timestamp)
        record = WhaleTransactionRecord(
            tx_hash=transfer.tx_hash,
            token_address=token,
            token_name=metadata.name,
            token_symbol=metadata.symbol,
            from_address=transfer.from_address,
            to_address=transfer.to_address,
            amount=amount,
            category=classify_transfer(transfer),
            block_number=transfer.block_number,
            timestamp=transfer.timestamp,
            is_recent_token=is_fresh,
            token_age=self._registry.token_age(token, transfer.timestamp),
            pattern=verdict.triggering_window or "single",
            volume=verdict.volume,
            tx_count=verdict.count,
        )
        self._logger.info(
            "Whale: %s %s on %s in tx %s (%s)",
            amount,
            metadata.symbol,
            token,
            transfer.tx_hash,
            verdict.reason,
        )

        try:
            await self._store.save_whale_transaction(record)
        except PersistenceError as exc:
            self._logger.error("Failed to persist whale tx %s: %s", transfer.tx_hash, exc)

        await self._emit(
            Alert(
                kind=AlertKind.WHALE_TRANSACTION,
                event=record,
                amount=verdict.volume,
                is_fresh=is_fresh,
            )
        )
        return True

    def _remember(self, key: tuple[str, int]) -> None:
        self._observed[key] = None
        if len(self._observed) > _SEEN_TRANSFERS_LIMIT:
            del self._observed[next(iter(self._observed))]

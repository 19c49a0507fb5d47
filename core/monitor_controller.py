"""
Monitor controller for the Story IP Monitor.

Owns the monitor state machine and the periodic loops:

    STOPPED -> INITIALIZING -> CONNECTED -> RUNNING <-> RECONNECTING
    INITIALIZING -> STOPPED   (every endpoint failed)
    RUNNING -> STOPPED        (stop())

Each stream ("assets", "whales") has its own BlockCursor and PeriodicTask.
A tick reads the chain height, scans ``cursor+1..height`` in order and
advances the cursor only when the whole range succeeded. A connectivity
fault abandons the tick and reconnects the RPC pool once, shared between
streams through a lock.

Usage:
    controller = MonitorController(pool, store, registry, thresholds, tracker,
                                   detector, asset_scanner, whale_scanner)
    if await controller.initialize():
        await controller.start(dispatcher.dispatch)
    ...
    controller.stop()
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from core.block_cursor import BlockCursor
from core.launch_analysis import analyze_launch
from core.scheduler import PeriodicTask
from data.store import PersistenceError
from execution.rpc_pool import ConnectivityFault
from shared.constants import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_REGISTRY_REFRESH_INTERVAL,
    DEFAULT_STATS_INTERVAL,
)
from shared.types import MonitorState

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from decimal import Decimal

    from core.asset_registry import AssetRegistry
    from core.scanners import AlertSink, BlockScanner
    from core.volume_tracker import VolumeWindowTracker
    from core.whale_detector import WhaleDetector
    from data.store import MonitorStore
    from execution.rpc_pool import RpcEndpointPool
    from execution.thresholds import ThresholdManager
    from shared.types import AssetCreationEvent, WhaleTransactionRecord

ASSET_STREAM = "assets"
WHALE_STREAM = "whales"
_ALL_STREAMS = (ASSET_STREAM, WHALE_STREAM)

_STATS_LOOKBACK_HOURS = 24


class MonitorController:
    """
    Composition of pool, cursors, scanners and periodic loops.

    Created once by ``main.py``; holds all mutable monitor state.
    """

    def __init__(
        self,
        pool: RpcEndpointPool,
        store: MonitorStore,
        registry: AssetRegistry,
        thresholds: ThresholdManager,
        tracker: VolumeWindowTracker,
        detector: WhaleDetector,
        asset_scanner: BlockScanner,
        whale_scanner: BlockScanner,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        cfg = get_config()
        polling = cfg.get_timing_config().get("polling", {})
        monitoring = cfg.get_app_config().get("monitoring", {})

        self._poll_interval: float = float(polling.get("interval_seconds", DEFAULT_POLL_INTERVAL))
        self._refresh_interval: float = float(
            polling.get("registry_refresh_seconds", DEFAULT_REGISTRY_REFRESH_INTERVAL)
        )
        self._stats_interval: float = float(
            polling.get("stats_interval_seconds", DEFAULT_STATS_INTERVAL)
        )
        self._streams: list[str] = [
            s for s in monitoring.get("streams", list(_ALL_STREAMS)) if s in _ALL_STREAMS
        ]

        self._pool = pool
        self._store = store
        self._registry = registry
        self._thresholds = thresholds
        self._tracker = tracker
        self._detector = detector
        self._scanners: dict[str, BlockScanner] = {
            ASSET_STREAM: asset_scanner,
            WHALE_STREAM: whale_scanner,
        }
        self._cursors: dict[str, BlockCursor] = {s: BlockCursor(s) for s in _ALL_STREAMS}

        self._sleep = sleep
        self._clock = clock

        self._state = MonitorState.STOPPED
        self._running = False
        self._reconnect_lock = asyncio.Lock()
        self._periodic: list[PeriodicTask] = []
        self._tasks: list[asyncio.Task[None]] = []

        self._logger = setup_module_logger(
            "monitor_controller", "monitor_controller.log", module_folder="Monitor_Logs"
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tasks(self) -> list[asyncio.Task[None]]:
        return list(self._tasks)

    def cursor(self, stream: str) -> BlockCursor:
        return self._cursors[stream]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """Connect to the first healthy endpoint and anchor unstarted cursors."""
        self._state = MonitorState.INITIALIZING
        if not await self._pool.connect():
            self._state = MonitorState.STOPPED
            self._logger.error("Initialization failed: no RPC endpoint reachable")
            return False

        self._anchor_cursors()
        self._state = MonitorState.CONNECTED
        endpoint = self._pool.active_endpoint
        self._logger.info(
            "Monitor connected via %s at block %s",
            endpoint.url if endpoint else "?",
            self._pool.state.last_block_height,
        )
        return True

    async def start(self, sink: AlertSink) -> None:
        """Launch the stream loops plus registry-refresh and stats loops."""
        if self._running:
            self._logger.warning("start() called while already running")
            return

        for scanner in self._scanners.values():
            scanner.set_sink(sink)

        self._running = True
        self._state = MonitorState.RUNNING

        # Registry and thresholds must be loaded before the first scan
        await self._refresh_tick()

        self._periodic = [
            PeriodicTask(
                f"scan-{stream}",
                self._make_scan_action(stream),
                self._poll_interval,
                sleep=self._sleep,
                logger=self._logger,
            )
            for stream in self._streams
        ]
        self._periodic.append(
            PeriodicTask(
                "registry-refresh",
                self._refresh_tick,
                self._refresh_interval,
                sleep=self._sleep,
                logger=self._logger,
                run_immediately=False,
            )
        )
        self._periodic.append(
            PeriodicTask(
                "stats",
                self.log_stats,
                self._stats_interval,
                sleep=self._sleep,
                logger=self._logger,
                run_immediately=False,
            )
        )
        self._tasks = [asyncio.create_task(p.run(), name=p.name) for p in self._periodic]
        self._logger.info(
            "Monitoring started: streams=%s poll=%ss mode=%s",
            self._streams,
            self._poll_interval,
            self._detector.mode.value,
        )

    def stop(self) -> None:
        """Cooperative stop; in-flight ticks finish, no new tick is scheduled."""
        self._running = False
        for periodic in self._periodic:
            periodic.stop()
        self._state = MonitorState.STOPPED
        self._logger.info("Monitoring stopped")

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def _make_scan_action(self, stream: str) -> Callable[[], Awaitable[None]]:
        async def action() -> None:
            await self.scan_tick(stream)

        return action

    async def scan_tick(self, stream: str) -> None:
        """
        One poll of one stream.

        The cursor advances only after the whole pending range was scanned;
        a ConnectivityFault anywhere leaves it untouched.
        """
        if not self._pool.is_live and not await self._reconnect():
            return

        cursor = self._cursors[stream]
        try:
            height = await self._pool.block_number()
            if cursor.anchor(height):
                self._logger.info("[%s] cursor anchored at %d", stream, height)
                return
            blocks = cursor.pending_range(height)
            if blocks is None:
                return
            emitted = await self._scanners[stream].scan_range(blocks)
        except ConnectivityFault as exc:
            self._logger.warning("[%s] tick abandoned: %s", stream, exc)
            if self._running:
                self._state = MonitorState.RECONNECTING
            await self._reconnect()
            return

        cursor.advance(blocks[-1])
        self._logger.info(
            "[%s] scanned blocks %d-%d: %d events", stream, blocks[0], blocks[-1], emitted
        )

    async def _reconnect(self) -> bool:
        """Reconnect the pool once per fault; a stream arriving after success skips it."""
        async with self._reconnect_lock:
            if self._pool.is_live:
                if self._state is MonitorState.RECONNECTING:
                    self._state = MonitorState.RUNNING
                return True
            if self._running:
                self._state = MonitorState.RECONNECTING
            self._logger.warning("Reconnecting RPC pool")
            if not await self._pool.connect():
                self._logger.error("Reconnect failed; retrying next tick")
                return False
            self._anchor_cursors()
            self._state = MonitorState.RUNNING if self._running else MonitorState.CONNECTED
            return True

    def _anchor_cursors(self) -> None:
        height = self._pool.state.last_block_height
        if height is None:
            return
        for stream, cursor in self._cursors.items():
            if cursor.anchor(height):
                self._logger.info("[%s] cursor anchored at %d", stream, height)

    async def _refresh_tick(self) -> None:
        try:
            await self._registry.refresh()
            await self._thresholds.refresh()
        except PersistenceError as exc:
            self._logger.warning("Registry refresh failed, keeping previous data: %s", exc)
        self._tracker.evict_idle(int(self._clock()))

    async def log_stats(self) -> None:
        """Periodic one-line summary of recent activity."""
        try:
            assets = await self._store.get_recent_assets(_STATS_LOOKBACK_HOURS)
            whales = await self._store.get_recent_whale_transactions(_STATS_LOOKBACK_HOURS)
        except PersistenceError as exc:
            self._logger.warning("Stats unavailable: %s", exc)
            return
        self._logger.info(
            "Stats: IPs (24h)=%d whales (24h)=%d monitored tokens=%d tracked tokens=%d state=%s",
            len(assets),
            len(whales),
            len(self._registry),
            self._tracker.monitored_token_count,
            self._state.value,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _mode(self) -> str:
        return self._detector.mode.value if self._pool.is_live else "disabled"

    def get_monitoring_stats(self) -> dict[str, Any]:
        last_scanned = [c.last_scanned for c in self._cursors.values() if c.is_anchored]
        return {
            "running": self._running,
            "monitoredTokenCount": len(self._registry),
            "lastScannedBlock": min(last_scanned) if last_scanned else None,
            "mode": self._mode(),
            "activeThresholds": {
                str(user_id): str(threshold)
                for user_id, threshold in self._thresholds.active_thresholds().items()
            },
            "state": self._state.value,
            "cursors": {stream: c.last_scanned for stream, c in self._cursors.items()},
            "trackedTokenCount": self._tracker.monitored_token_count,
            "excludedTokenCount": len(self._tracker.excluded_tokens),
        }

    def get_connection_status(self) -> dict[str, Any]:
        endpoint = self._pool.active_endpoint
        return {
            "rpcConnected": self._pool.is_live,
            "currentRpc": endpoint.url if endpoint and self._pool.is_live else None,
            "monitoringActive": self._running,
            "mode": self._mode(),
        }

    async def get_recent_assets(self, hours: float = 24) -> list[AssetCreationEvent]:
        return await self._store.get_recent_assets(hours)

    async def get_recent_whale_transactions(
        self, hours: float = 24
    ) -> list[WhaleTransactionRecord]:
        return await self._store.get_recent_whale_transactions(hours)

    async def get_user_threshold(self, user_id: int) -> Decimal:
        return await self._thresholds.get_threshold(user_id)

    async def set_user_threshold(self, user_id: int, value: Any) -> Decimal:
        return await self._thresholds.set_threshold(user_id, value)

    async def get_detailed_token_analysis(self, token_address: str) -> dict[str, Any]:
        """Launch analysis from stored whale transactions plus live window state."""
        transactions = await self._store.get_token_whale_transactions(token_address)
        now = int(self._clock())
        return {
            "analysis": analyze_launch(token_address, transactions),
            "windows": self._tracker.window_snapshot(token_address, now),
            "isRecentToken": self._registry.is_fresh(token_address, now),
            "tokenAge": self._registry.token_age(token_address, now),
            "marketCapExcluded": self._tracker.is_excluded(token_address),
        }

"""
Unit tests for core/monitor_controller.py.

The RPC pool and scanners are mocks with controllable heights and
faults; the sleep function is an AsyncMock so periodic loops never wait
on real time. Tests verify the state machine, all-or-nothing cursor
advancement, shared reconnects and the query surface.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from data.store import PersistenceError
from execution.rpc_pool import ConnectivityFault
from shared.types import DetectionMode, MonitorState, RpcEndpoint

NOW = 1_700_000_000


def _pool(height=100, connect_ok=True):
    pool = MagicMock()
    pool.is_live = False
    pool.state.last_block_height = None
    pool.active_endpoint = RpcEndpoint("https://rpc-a.example", 0)

    async def connect():
        if connect_ok:
            pool.is_live = True
            pool.state.last_block_height = height
        return connect_ok

    pool.connect = AsyncMock(side_effect=connect)
    pool.block_number = AsyncMock(return_value=height)
    return pool


def _scanner():
    scanner = MagicMock()
    scanner.scan_range = AsyncMock(return_value=0)
    return scanner


def _make_controller(make_loader, pool=None, store=None, app=None, sleep=None):
    pool = pool or _pool()
    store = store or MagicMock()
    registry = MagicMock()
    registry.refresh = AsyncMock(return_value=0)
    registry.__len__.return_value = 3
    thresholds = MagicMock()
    thresholds.refresh = AsyncMock(return_value=0)
    thresholds.active_thresholds.return_value = {1: Decimal("40")}
    tracker = MagicMock()
    tracker.monitored_token_count = 2
    tracker.excluded_tokens = frozenset({"0xabc"})
    detector = MagicMock()
    detector.mode = DetectionMode.WINDOWED

    with (
        patch("core.monitor_controller.get_config") as mock_cfg,
        patch("core.monitor_controller.setup_module_logger") as mock_logger,
    ):
        mock_cfg.return_value = make_loader(app=app)
        mock_logger.return_value = MagicMock()

        from core.monitor_controller import MonitorController

        controller = MonitorController(
            pool,
            store,
            registry,
            thresholds,
            tracker,
            detector,
            _scanner(),
            _scanner(),
            sleep=sleep or AsyncMock(),
            clock=lambda: NOW,
        )
    return controller


class TestInitialize:

    async def test_connects_and_anchors_cursors(self, make_loader):
        controller = _make_controller(make_loader)

        assert await controller.initialize() is True
        assert controller.state is MonitorState.CONNECTED
        assert controller.cursor("assets").last_scanned == 100
        assert controller.cursor("whales").last_scanned == 100

    async def test_all_endpoints_down(self, make_loader):
        controller = _make_controller(make_loader, pool=_pool(connect_ok=False))

        assert await controller.initialize() is False
        assert controller.state is MonitorState.STOPPED
        assert controller.cursor("assets").is_anchored is False


class TestScanTick:

    async def test_scans_pending_range_and_advances(self, make_loader):
        pool = _pool(height=100)
        controller = _make_controller(make_loader, pool=pool)
        await controller.initialize()

        pool.block_number.return_value = 103
        await controller.scan_tick("whales")

        scanner = controller._scanners["whales"]
        scanner.scan_range.assert_awaited_once_with(range(101, 104))
        assert controller.cursor("whales").last_scanned == 103
        assert controller.cursor("assets").last_scanned == 100

    async def test_no_new_blocks_no_scan(self, make_loader):
        controller = _make_controller(make_loader)
        await controller.initialize()

        await controller.scan_tick("assets")
        controller._scanners["assets"].scan_range.assert_not_awaited()

    async def test_fault_mid_range_leaves_cursor(self, make_loader):
        pool = _pool(height=100)
        controller = _make_controller(make_loader, pool=pool)
        await controller.initialize()
        controller._running = True
        controller._state = MonitorState.RUNNING

        pool.block_number.return_value = 105
        scanner = controller._scanners["whales"]

        async def fault(blocks):
            pool.is_live = False
            raise ConnectivityFault("block 103 unavailable")

        scanner.scan_range.side_effect = fault
        await controller.scan_tick("whales")

        assert controller.cursor("whales").last_scanned == 100
        assert pool.connect.await_count == 2
        assert controller.state is MonitorState.RUNNING

        scanner.scan_range.side_effect = None
        await controller.scan_tick("whales")
        scanner.scan_range.assert_awaited_with(range(101, 106))
        assert controller.cursor("whales").last_scanned == 105

    async def test_failed_reconnect_enters_reconnecting(self, make_loader):
        pool = _pool(height=100)
        controller = _make_controller(make_loader, pool=pool)
        await controller.initialize()
        controller._running = True

        async def fault():
            pool.is_live = False
            raise ConnectivityFault("down")

        pool.block_number.side_effect = fault

        async def refuse():
            pool.is_live = False
            return False

        pool.connect.side_effect = refuse
        await controller.scan_tick("assets")

        assert controller.state is MonitorState.RECONNECTING
        await controller.scan_tick("assets")
        assert pool.connect.await_count == 3

    async def test_concurrent_faults_reconnect_once(self, make_loader):
        pool = _pool(height=100)
        controller = _make_controller(make_loader, pool=pool)
        await controller.initialize()
        controller._running = True

        async def fault():
            await asyncio.sleep(0)
            pool.is_live = False
            raise ConnectivityFault("reset")

        async def slow_connect():
            await asyncio.sleep(0)
            pool.is_live = True
            return True

        pool.block_number.side_effect = fault
        pool.connect.side_effect = slow_connect
        await asyncio.gather(controller.scan_tick("assets"), controller.scan_tick("whales"))

        # one connect from initialize, one shared reconnect
        assert pool.connect.await_count == 2

    async def test_unanchored_cursor_anchors_on_first_tick(self, make_loader):
        pool = _pool(height=100)
        controller = _make_controller(make_loader, pool=pool)
        pool.is_live = True
        pool.block_number.return_value = 250

        await controller.scan_tick("assets")

        assert controller.cursor("assets").last_scanned == 250
        controller._scanners["assets"].scan_range.assert_not_awaited()


class TestLifecycle:

    async def test_start_runs_refresh_and_creates_tasks(self, make_loader):
        controller = _make_controller(make_loader)
        await controller.initialize()
        sink = AsyncMock()

        await controller.start(sink)
        try:
            assert controller.state is MonitorState.RUNNING
            assert controller.is_running
            controller._registry.refresh.assert_awaited()
            controller._thresholds.refresh.assert_awaited()
            for scanner in controller._scanners.values():
                scanner.set_sink.assert_called_once_with(sink)
            assert sorted(t.get_name() for t in controller.tasks) == [
                "registry-refresh",
                "scan-assets",
                "scan-whales",
                "stats",
            ]
        finally:
            controller.stop()
            await asyncio.gather(*controller.tasks, return_exceptions=True)

        assert controller.state is MonitorState.STOPPED
        assert all(t.done() for t in controller.tasks)

    async def test_configured_streams_only(self, make_loader):
        app = {"monitoring": {"streams": ["assets"]}}
        controller = _make_controller(make_loader, app=app)
        await controller.initialize()

        await controller.start(AsyncMock())
        names = sorted(t.get_name() for t in controller.tasks)
        controller.stop()
        await asyncio.gather(*controller.tasks, return_exceptions=True)

        assert names == ["registry-refresh", "scan-assets", "stats"]

    async def test_refresh_failure_keeps_running(self, make_loader):
        controller = _make_controller(make_loader)
        controller._registry.refresh.side_effect = PersistenceError("locked")

        await controller._refresh_tick()
        controller._tracker.evict_idle.assert_called_once_with(NOW)


class TestQueries:

    async def test_monitoring_stats(self, make_loader):
        controller = _make_controller(make_loader)
        await controller.initialize()

        stats = controller.get_monitoring_stats()

        assert stats["running"] is False
        assert stats["monitoredTokenCount"] == 3
        assert stats["lastScannedBlock"] == 100
        assert stats["mode"] == "windowed"
        assert stats["activeThresholds"] == {"1": "40"}
        assert stats["excludedTokenCount"] == 1

    def test_mode_disabled_without_connection(self, make_loader):
        controller = _make_controller(make_loader)
        assert controller.get_monitoring_stats()["mode"] == "disabled"
        assert controller.get_monitoring_stats()["lastScannedBlock"] is None

    async def test_connection_status(self, make_loader):
        controller = _make_controller(make_loader)
        assert controller.get_connection_status()["rpcConnected"] is False
        assert controller.get_connection_status()["currentRpc"] is None

        await controller.initialize()
        status = controller.get_connection_status()
        assert status == {
            "rpcConnected": True,
            "currentRpc": "https://rpc-a.example",
            "monitoringActive": False,
            "mode": "windowed",
        }

    async def test_threshold_passthrough(self, make_loader):
        controller = _make_controller(make_loader)
        controller._thresholds.set_threshold = AsyncMock(return_value=Decimal("55"))
        controller._thresholds.get_threshold = AsyncMock(return_value=Decimal("55"))

        assert await controller.set_user_threshold(1, "55") == Decimal("55")
        assert await controller.get_user_threshold(1) == Decimal("55")
        controller._thresholds.set_threshold.assert_awaited_once_with(1, "55")

    async def test_detailed_token_analysis(self, make_loader):
        store = MagicMock()
        store.get_token_whale_transactions = AsyncMock(return_value=[])
        controller = _make_controller(make_loader, store=store)
        controller._registry.is_fresh.return_value = True
        controller._registry.token_age.return_value = "10m"
        controller._tracker.window_snapshot.return_value = []
        controller._tracker.is_excluded.return_value = False

        result = await controller.get_detailed_token_analysis("0xABC")

        assert result["analysis"].total_transactions == 0
        assert result["analysis"].launch_phase == "unknown"
        assert result["isRecentToken"] is True
        assert result["tokenAge"] == "10m"
        controller._tracker.window_snapshot.assert_called_once_with("0xABC", NOW)

    async def test_recent_queries_delegate_to_store(self, make_loader):
        store = MagicMock()
        store.get_recent_assets = AsyncMock(return_value=["a"])
        store.get_recent_whale_transactions = AsyncMock(return_value=["w"])
        controller = _make_controller(make_loader, store=store)

        assert await controller.get_recent_assets() == ["a"]
        assert await controller.get_recent_whale_transactions(6) == ["w"]
        store.get_recent_assets.assert_awaited_once_with(24)
        store.get_recent_whale_transactions.assert_awaited_once_with(6)


@pytest.mark.parametrize("stream", ["assets", "whales"])
async def test_scan_tick_uses_stream_scanner(make_loader, stream):
    pool = _pool(height=10)
    controller = _make_controller(make_loader, pool=pool)
    await controller.initialize()
    pool.block_number.return_value = 11

    await controller.scan_tick(stream)

    controller._scanners[stream].scan_range.assert_awaited_once_with(range(11, 12))

"""
Story IP Monitor: main entrypoint.

Single-process asyncio runner that watches Story mainnet for:
    1. IP asset creation: registry transactions decoded into assets
    2. Whale transfers: ERC-20 transfers classified by volume windows

Both streams, the registry refresh and the stats log line are periodic
tasks owned by one MonitorController; detected events are pushed to the
AlertDispatcher, which fans them out to Telegram subscribers.

Usage:
    python main.py
"""

from __future__ import annotations

import asyncio
import signal
import sys

from dotenv import load_dotenv

from bot_logging.logger_manager import create_module_log_directories, setup_module_logger
from config.loader import get_config
from config.validate import ConfigValidationError, validate_all_configs

# ---------------------------------------------------------------------------
# Module logger
# ---------------------------------------------------------------------------
_logger = setup_module_logger("main", "main.log", module_folder="Main_Logs", console=True)

_SHUTDOWN_GRACE_SECONDS = 15


# ---------------------------------------------------------------------------
# Startup banner
# ---------------------------------------------------------------------------


def _log_banner(chain_name: str, endpoints: list[str], mode: str, windows: list[str]) -> None:
    """Log a concise startup summary."""
    _logger.info("=" * 60)
    _logger.info("Story IP Monitor starting")
    _logger.info("=" * 60)
    _logger.info("  chain           : %s", chain_name)
    _logger.info("  rpc endpoints   : %s", ", ".join(endpoints) or "(none)")
    _logger.info("  detection mode  : %s", mode)
    _logger.info("  volume windows  : %s", ", ".join(windows) or "(none)")
    _logger.info("=" * 60)


# ---------------------------------------------------------------------------
# Task done callback: detect unhandled exceptions
# ---------------------------------------------------------------------------


def _task_done_callback(
    task: asyncio.Task[None],
    shutdown_event: asyncio.Event,
) -> None:
    """Called when a monitor loop finishes (normally or with error)."""
    try:
        exc = task.exception()
    except asyncio.CancelledError:
        _logger.info("Task %s cancelled", task.get_name())
        return

    if exc is not None:
        _logger.critical(
            "Task %s failed with unhandled exception: %s",
            task.get_name(),
            exc,
            exc_info=exc,
        )
        shutdown_event.set()


# ---------------------------------------------------------------------------
# Main async entry
# ---------------------------------------------------------------------------


async def _run() -> None:
    """Wire all components and launch the monitor loops."""
    # ------------------------------------------------------------------
    # 1. Load environment and validate configuration
    # ------------------------------------------------------------------
    load_dotenv()
    create_module_log_directories()

    try:
        validate_all_configs()
    except ConfigValidationError as exc:
        _logger.critical("Config validation failed:\n%s", exc)
        sys.exit(1)

    cfg = get_config()
    chain_cfg = cfg.get_chain_config()
    detection_cfg = cfg.get_detection_config()
    allow_degraded: bool = cfg.get_app_config().get("monitoring", {}).get("allow_degraded", False)

    _log_banner(
        chain_cfg.get("name", str(chain_cfg.get("chain_id", "?"))),
        [e["url"] for e in cfg.get_rpc_endpoints()],
        detection_cfg.get("mode", "windowed"),
        [w["label"] for w in detection_cfg.get("volume_windows", [])],
    )

    # ------------------------------------------------------------------
    # 2. Initialize shared instances (dependency order)
    # ------------------------------------------------------------------
    from core.asset_registry import AssetRegistry
    from core.event_decoder import EventDecoder
    from core.market_data import MarketDataService
    from core.monitor_controller import MonitorController
    from core.scanners import AssetScanner, WhaleScanner
    from core.volume_tracker import VolumeWindowTracker
    from core.whale_detector import WhaleDetector
    from data.store import SQLiteMonitorStore
    from execution.alert_dispatcher import AlertDispatcher
    from execution.rpc_pool import RpcEndpointPool
    from execution.telegram_client import TelegramClient
    from execution.thresholds import ThresholdManager

    store = SQLiteMonitorStore()
    pool = RpcEndpointPool()
    decoder = EventDecoder(pool)
    registry = AssetRegistry(store)
    thresholds = ThresholdManager(store)
    market_data = MarketDataService()
    tracker = VolumeWindowTracker(market_data)
    detector = WhaleDetector(tracker, thresholds, registry)
    telegram = TelegramClient()
    dispatcher = AlertDispatcher(store, telegram)

    controller = MonitorController(
        pool=pool,
        store=store,
        registry=registry,
        thresholds=thresholds,
        tracker=tracker,
        detector=detector,
        asset_scanner=AssetScanner(pool, decoder, store, registry),
        whale_scanner=WhaleScanner(pool, decoder, store, registry, detector),
    )

    async def _cleanup() -> None:
        await market_data.close()
        await telegram.close()
        store.close()

    # ------------------------------------------------------------------
    # 3. Connect
    # ------------------------------------------------------------------
    if not await controller.initialize():
        if not allow_degraded:
            _logger.critical("All RPC endpoints failed; exiting")
            await _cleanup()
            sys.exit(1)
        _logger.critical("All RPC endpoints failed; continuing in degraded mode")

    # ------------------------------------------------------------------
    # 4. Signal handling for graceful shutdown
    # ------------------------------------------------------------------
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        _logger.info("Received %s, initiating graceful shutdown", sig.name)
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    # ------------------------------------------------------------------
    # 5. Launch monitor loops
    # ------------------------------------------------------------------
    await controller.start(dispatcher.dispatch)
    tasks = controller.tasks
    for t in tasks:
        t.add_done_callback(lambda done_task: _task_done_callback(done_task, shutdown_event))

    _logger.info("All tasks launched: %s", ", ".join(t.get_name() for t in tasks))

    # ------------------------------------------------------------------
    # 6. Wait for shutdown signal, then stop loops
    # ------------------------------------------------------------------
    try:
        await shutdown_event.wait()
    finally:
        _logger.info("Shutting down: stopping monitor")
        controller.stop()

        # In-flight ticks get a grace period before cancellation
        _, pending = await asyncio.wait(tasks, timeout=_SHUTDOWN_GRACE_SECONDS)
        for t in pending:
            t.cancel()

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for t, result in zip(tasks, results, strict=False):
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                _logger.error("Task %s exited with error: %s", t.get_name(), result)

        await _cleanup()
        _logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    """Synchronous entry point."""
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        _logger.info("Interrupted by user")


if __name__ == "__main__":
    main()

"""
Sliding-window transfer volume tracker.

Keeps, per (token, window), a deque of ``(amount, timestamp)`` samples.
Every observation is appended to all configured windows; samples older
than the window duration are dropped from the front before the volume is
summed. The first window (in configured order) whose volume reaches its
threshold produces a positive verdict.

Tokens whose market capitalization exceeds the ceiling are excluded
permanently on first sighting and never tracked again.

Usage:
    tracker = VolumeWindowTracker(market_data)
    verdict = await tracker.observe(token, Decimal("40"), t=block_timestamp)
    if verdict.is_whale:
        print(verdict.triggering_window, verdict.volume)
"""

from __future__ import annotations

from collections import deque
from decimal import Decimal
from typing import TYPE_CHECKING

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import DEFAULT_MCAP_CEILING_USD, DEFAULT_VOLUME_WINDOWS
from shared.types import VolumeWindow, WhaleVerdict, WindowStats

if TYPE_CHECKING:
    from core.market_data import MarketDataService


def load_volume_windows() -> list[VolumeWindow]:
    """Configured windows in order; falls back to the built-in 15s/30s/1m/5m set."""
    configured = get_config().get_detection_config().get("volume_windows")
    if configured is None:
        return [
            VolumeWindow(label, duration, threshold)
            for label, duration, threshold in DEFAULT_VOLUME_WINDOWS
        ]
    return [
        VolumeWindow(
            label=w["label"],
            duration_seconds=int(w["duration_seconds"]),
            threshold=Decimal(str(w["threshold"])),
        )
        for w in configured
    ]


class VolumeWindowTracker:
    def __init__(
        self,
        market_data: MarketDataService | None = None,
        windows: list[VolumeWindow] | None = None,
    ) -> None:
        mcap_cfg = get_config().get_detection_config().get("market_cap", {})

        self._windows: list[VolumeWindow] = (
            list(windows) if windows is not None else load_volume_windows()
        )
        self._mcap_ceiling = Decimal(str(mcap_cfg.get("ceiling_usd", DEFAULT_MCAP_CEILING_USD)))
        self._market_data = market_data

        # token -> window label -> samples
        self._samples: dict[str, dict[str, deque[tuple[Decimal, int]]]] = {}
        self._excluded: set[str] = set()

        self._logger = setup_module_logger(
            "volume_tracker", "volume_tracker.log", module_folder="Tracker_Logs"
        )
        self._logger.info(
            "VolumeWindowTracker initialized: windows=%s mcap_ceiling=$%s",
            [(w.label, str(w.threshold)) for w in self._windows],
            self._mcap_ceiling,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def windows(self) -> list[VolumeWindow]:
        return list(self._windows)

    @property
    def monitored_token_count(self) -> int:
        return len(self._samples)

    @property
    def excluded_tokens(self) -> frozenset[str]:
        return frozenset(self._excluded)

    def is_excluded(self, token_address: str) -> bool:
        return token_address.lower() in self._excluded

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    async def observe(self, token_address: str, amount: Decimal, t: int) -> WhaleVerdict:
        """
        Record one transfer of ``amount`` token units at time ``t``.

        Every window receives the sample even after an earlier window has
        triggered, so later windows keep an accurate population.
        """
        key = token_address.lower()
        if key in self._excluded:
            return WhaleVerdict.negative("market cap above ceiling")

        if self._market_data is not None:
            mcap = await self._market_data.get_market_cap_usd(key)
            if mcap is not None and mcap > self._mcap_ceiling:
                self._excluded.add(key)
                self._samples.pop(key, None)
                self._logger.info(
                    "Excluding %s: market cap $%s above ceiling $%s", key, mcap, self._mcap_ceiling
                )
                return WhaleVerdict.negative("market cap above ceiling")

        if not self._windows:
            return WhaleVerdict.negative("no volume windows configured")

        token_windows = self._samples.setdefault(key, {})
        verdict: WhaleVerdict | None = None

        for window in self._windows:
            samples = token_windows.setdefault(window.label, deque())
            samples.append((amount, t))
            self._prune(samples, window.duration_seconds, t)

            volume = sum((a for a, _ in samples), Decimal("0"))
            count = len(samples)
            if verdict is None and volume >= window.threshold:
                verdict = WhaleVerdict(
                    is_whale=True,
                    triggering_window=window.label,
                    volume=volume,
                    count=count,
                    reason=(
                        f"{count} transfers totalling {volume} within {window.label} "
                        f"(threshold {window.threshold})"
                    ),
                )

        if verdict is not None:
            self._logger.info("Volume burst on %s: %s", key, verdict.reason)
            return verdict
        return WhaleVerdict.negative("below all window thresholds")

    @staticmethod
    def _prune(samples: deque[tuple[Decimal, int]], duration: int, now: int) -> None:
        while samples and now - samples[0][1] >= duration:
            samples.popleft()

    # ------------------------------------------------------------------
    # Diagnostics & housekeeping
    # ------------------------------------------------------------------

    def window_snapshot(self, token_address: str, now: int | None = None) -> list[WindowStats]:
        """Per-window volume/count for a token; read-only."""
        token_windows = self._samples.get(token_address.lower(), {})
        snapshot = []
        for window in self._windows:
            samples = token_windows.get(window.label, ())
            live = [
                a for a, ts in samples if now is None or now - ts < window.duration_seconds
            ]
            snapshot.append(
                WindowStats(label=window.label, volume=sum(live, Decimal("0")), count=len(live))
            )
        return snapshot

    def evict_idle(self, now: int) -> int:
        """Drop tokens with no sample inside any window at ``now``. Returns the number evicted."""
        durations = {w.label: w.duration_seconds for w in self._windows}
        idle = []
        for token, token_windows in self._samples.items():
            for label, samples in token_windows.items():
                self._prune(samples, durations.get(label, 0), now)
            if not any(token_windows.values()):
                idle.append(token)
        for token in idle:
            del self._samples[token]
        if idle:
            self._logger.debug("Evicted %d idle tokens", len(idle))
        return len(idle)

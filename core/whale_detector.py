"""
Whale classification for decoded transfers.

Windowed mode feeds each transfer into the VolumeWindowTracker. Single
mode (or a configuration without windows) compares one transfer against
the laxest subscriber threshold, discounted for fresh tokens. In both
modes, zero amounts and mints/burns (zero address on either side) are
rejected before any lookup.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from config.loader import get_config
from shared.constants import ZERO_ADDRESS
from shared.types import DetectionMode, TransferEvent, WhaleVerdict

if TYPE_CHECKING:
    from core.asset_registry import AssetRegistry
    from core.volume_tracker import VolumeWindowTracker
    from execution.thresholds import ThresholdManager

SINGLE_PATTERN = "single"


def is_whale_candidate(transfer: TransferEvent) -> bool:
    """Non-zero amount moving between two non-zero addresses."""
    if transfer.raw_amount <= 0:
        return False
    return ZERO_ADDRESS not in (transfer.from_address.lower(), transfer.to_address.lower())


class WhaleDetector:
    def __init__(
        self,
        tracker: VolumeWindowTracker,
        thresholds: ThresholdManager,
        registry: AssetRegistry,
    ) -> None:
        mode = get_config().get_detection_config().get("mode", DetectionMode.WINDOWED.value)
        self._mode = DetectionMode(mode)
        self._tracker = tracker
        self._thresholds = thresholds
        self._registry = registry

    @property
    def mode(self) -> DetectionMode:
        return self._mode

    @property
    def uses_windows(self) -> bool:
        return self._mode is DetectionMode.WINDOWED and bool(self._tracker.windows)

    def single_tx_threshold(self, token_address: str, at: int) -> Decimal:
        threshold = self._thresholds.min_threshold()
        if self._registry.is_fresh(token_address, at):
            threshold *= self._registry.freshness_multiplier
        return threshold

    async def evaluate(self, transfer: TransferEvent, amount: Decimal) -> WhaleVerdict:
        """Classify one transfer whose ``amount`` is already in token units."""
        if not is_whale_candidate(transfer) or amount <= 0:
            return WhaleVerdict.negative("not a whale candidate")

        if self.uses_windows:
            return await self._tracker.observe(transfer.token_address, amount, transfer.timestamp)

        threshold = self.single_tx_threshold(transfer.token_address, transfer.timestamp)
        if amount >= threshold:
            return WhaleVerdict(
                is_whale=True,
                triggering_window=SINGLE_PATTERN,
                volume=amount,
                count=1,
                reason=f"single transfer {amount} >= {threshold}",
            )
        return WhaleVerdict.negative(f"{amount} below {threshold}")

"""
In-memory registry of recently created IP assets.

Answers "is this token fresh?" for the whale path. The whole mapping is
rebuilt from the store on every refresh and swapped in as one reference,
so readers never observe a half-built registry.

Usage:
    registry = AssetRegistry(store)
    await registry.refresh()
    if registry.is_fresh(token, at=block_timestamp):
        ...
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import (
    DEFAULT_FRESHNESS_MULTIPLIER,
    DEFAULT_FRESHNESS_WINDOW_HOURS,
    SECONDS_PER_HOUR,
)

if TYPE_CHECKING:
    from data.store import MonitorStore
    from shared.types import AssetCreationEvent


def format_token_age(age_seconds: int | None) -> str:
    """Render an age as ``"42m"`` or ``"3h 5m"``; ``"unknown"`` when None."""
    if age_seconds is None:
        return "unknown"
    minutes = max(int(age_seconds), 0) // 60
    if minutes < 60:
        return f"{minutes}m"
    return f"{minutes // 60}h {minutes % 60}m"


class AssetRegistry:
    def __init__(self, store: MonitorStore) -> None:
        freshness = get_config().get_detection_config().get("freshness", {})
        self._window_hours: int = int(freshness.get("window_hours", DEFAULT_FRESHNESS_WINDOW_HOURS))
        self._multiplier = Decimal(
            str(freshness.get("threshold_multiplier", DEFAULT_FRESHNESS_MULTIPLIER))
        )
        self._store = store
        self._assets: dict[str, AssetCreationEvent] = {}
        self._logger = setup_module_logger(
            "asset_registry", "asset_registry.log", module_folder="Monitor_Logs"
        )

    @property
    def window_hours(self) -> int:
        return self._window_hours

    @property
    def freshness_multiplier(self) -> Decimal:
        return self._multiplier

    def __len__(self) -> int:
        return len(self._assets)

    def get(self, token_address: str) -> AssetCreationEvent | None:
        return self._assets.get(token_address.lower())

    async def refresh(self) -> int:
        """Reload assets created within the freshness window; returns the new size."""
        records = await self._store.get_recent_assets(self._window_hours)
        rebuilt = {record.address.lower(): record for record in records}
        self._assets = rebuilt
        self._logger.info("Registry refreshed: %d recent assets", len(rebuilt))
        return len(rebuilt)

    def note(self, event: AssetCreationEvent) -> None:
        """Add a newly detected asset without waiting for the next refresh."""
        updated = dict(self._assets)
        updated[event.address.lower()] = event
        self._assets = updated

    def is_fresh(self, token_address: str, at: int) -> bool:
        """True when the token was created no more than the freshness window before ``at``."""
        record = self.get(token_address)
        if record is None:
            return False
        return at - record.created_at <= self._window_hours * SECONDS_PER_HOUR

    def token_age(self, token_address: str, at: int) -> str:
        record = self.get(token_address)
        return format_token_age(at - record.created_at if record else None)

"""
Subscriber whale-threshold management.

Caches ``user_id -> threshold`` for alertable subscribers so the whale
path can read the laxest threshold without touching the store per
transfer. The cache is reloaded by ``refresh()`` (on the registry refresh
period) and updated in place by ``set_threshold()``.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import DEFAULT_WHALE_THRESHOLD

if TYPE_CHECKING:
    from data.store import MonitorStore


class InvalidThresholdError(ValueError):
    """Raised when a threshold is not a positive finite number."""


class ThresholdManager:
    def __init__(self, store: MonitorStore) -> None:
        detection = get_config().get_detection_config()
        self._default = Decimal(
            str(detection.get("default_whale_threshold", DEFAULT_WHALE_THRESHOLD))
        )
        self._store = store
        self._cache: dict[int, Decimal] = {}
        self._logger = setup_module_logger(
            "thresholds", "thresholds.log", module_folder="Alert_Logs"
        )

    @property
    def default_threshold(self) -> Decimal:
        return self._default

    def active_thresholds(self) -> dict[int, Decimal]:
        return dict(self._cache)

    def min_threshold(self) -> Decimal:
        """Laxest threshold across cached subscribers (the default when there are none)."""
        return min(self._cache.values(), default=self._default)

    async def refresh(self) -> int:
        """Reload thresholds of all alertable subscribers. Returns the subscriber count."""
        subscribers = await self._store.get_all_alertable_subscribers()
        self._cache = {s.user_id: s.whale_threshold for s in subscribers}
        self._logger.debug(
            "Thresholds refreshed: %d subscribers, min=%s", len(self._cache), self.min_threshold()
        )
        return len(self._cache)

    async def get_threshold(self, user_id: int) -> Decimal:
        cached = self._cache.get(user_id)
        if cached is not None:
            return cached
        stored = await self._store.get_subscriber_threshold(user_id)
        return stored if stored is not None else self._default

    async def set_threshold(self, user_id: int, value: Any) -> Decimal:
        """Persist a new threshold; only alertable subscribers enter the cache."""
        try:
            threshold = Decimal(str(value))
        except InvalidOperation as exc:
            raise InvalidThresholdError(f"Threshold {value!r} is not a number") from exc
        if not threshold.is_finite() or threshold <= 0:
            raise InvalidThresholdError(f"Threshold must be positive, got {value!r}")

        await self._store.set_subscriber_threshold(user_id, threshold)
        if user_id in self._cache:
            self._cache[user_id] = threshold
        else:
            subscriber = await self._store.get_subscriber(user_id)
            if subscriber is not None and subscriber.alerts_enabled:
                self._cache[user_id] = threshold
        self._logger.info("Threshold for user %d set to %s", user_id, threshold)
        return threshold

"""
Alert fan-out to subscribers.

For each alert: load alertable subscribers, keep those whose own
(freshness-adjusted) threshold is met for whale alerts, render one
Markdown message and send it to each recipient in turn with a fixed
pacing delay. Delivery is best-effort: a failing recipient is logged and
skipped, nothing is retried or queued.

Every dispatched alert is also written to a JSON audit log.

Usage:
    dispatcher = AlertDispatcher(store, telegram_client)
    delivered = await dispatcher.dispatch(alert)
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from data.store import PersistenceError
from shared.constants import DEFAULT_ALERT_PACING, DEFAULT_FRESHNESS_MULTIPLIER, STORY_EXPLORER_URL
from shared.types import AlertKind, AssetCreationEvent, WhaleTransactionRecord

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from data.store import MonitorStore
    from shared.types import Alert, Subscriber


class DeliveryChannel(Protocol):
    async def send_message(self, chat_id: int, text: str) -> Any: ...


_MARKDOWN_SPECIAL = ("_", "*", "`", "[")


def _md(text: str) -> str:
    """Escape legacy-Markdown control characters in user-controlled text."""
    for ch in _MARKDOWN_SPECIAL:
        text = text.replace(ch, "\\" + ch)
    return text


def _format_time(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _format_amount(amount: Decimal) -> str:
    return f"{amount:,.2f}"


def render_asset_alert(event: AssetCreationEvent, explorer_url: str) -> str:
    return "\n".join(
        [
            "🆕 *New IP asset registered*",
            "",
            f"*Name:* {_md(event.name) or 'Unnamed'}",
            f"*Address:* `{event.address}`",
            f"*Creator:* `{event.creator}`",
            f"*Block:* {event.block_number}",
            f"*Time:* {_format_time(event.created_at)}",
            "",
            f"[View asset]({explorer_url}/address/{event.address}) | "
            f"[View transaction]({explorer_url}/tx/{event.tx_hash})",
        ]
    )


def render_whale_alert(record: WhaleTransactionRecord, explorer_url: str) -> str:
    badge = " 🔥 NEW TOKEN" if record.is_recent_token else ""
    lines = [
        f"🐋 *Whale detected!*{badge}",
        "",
        f"🔄 *Action:* {record.category.upper()}",
        f"*Amount:* {_format_amount(record.amount)} {_md(record.token_symbol)}",
        f"*Token:* {_md(record.token_name)}",
        f"*Token address:* `{record.token_address}`",
    ]
    if record.is_recent_token:
        lines.append(f"*Token age:* {record.token_age}")
    if record.pattern != "single":
        lines.append(
            f"*Pattern:* {record.tx_count} transfers, "
            f"{_format_amount(record.volume)} {_md(record.token_symbol)} in {record.pattern}"
        )
    lines += [
        "",
        f"*From:* `{record.from_address}`",
        f"*To:* `{record.to_address}`",
        f"*Block:* {record.block_number}",
        f"*Time:* {_format_time(record.timestamp)}",
        "",
        f"[📊 View transaction]({explorer_url}/tx/{record.tx_hash})",
        "",
        "🚨 *ALPHA ALERT - newly created token!*"
        if record.is_recent_token
        else "📊 Large transfer on Story",
    ]
    return "\n".join(lines)


def render_alert(alert: Alert, explorer_url: str = STORY_EXPLORER_URL) -> str:
    if isinstance(alert.event, AssetCreationEvent):
        return render_asset_alert(alert.event, explorer_url)
    return render_whale_alert(alert.event, explorer_url)


class AlertDispatcher:
    def __init__(
        self,
        store: MonitorStore,
        channel: DeliveryChannel,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        cfg = get_config()
        alerts_timing = cfg.get_timing_config().get("alerts", {})
        freshness = cfg.get_detection_config().get("freshness", {})

        self._pacing: float = float(alerts_timing.get("pacing_seconds", DEFAULT_ALERT_PACING))
        self._fresh_multiplier = Decimal(
            str(freshness.get("threshold_multiplier", DEFAULT_FRESHNESS_MULTIPLIER))
        )
        self._explorer_url: str = cfg.get_chain_config().get("explorer_url", STORY_EXPLORER_URL)

        self._store = store
        self._channel = channel
        self._sleep = sleep

        self._logger = setup_module_logger(
            "alert_dispatcher", "alert_dispatcher.log", module_folder="Alert_Logs"
        )
        self._audit_logger = setup_module_logger(
            "alert_audit", "alert_audit.log", module_folder="Alert_Logs", use_json_formatter=True
        )

    def effective_threshold(self, threshold: Decimal, is_fresh: bool) -> Decimal:
        return threshold * self._fresh_multiplier if is_fresh else threshold

    def select_recipients(self, alert: Alert, subscribers: list[Subscriber]) -> list[Subscriber]:
        if alert.kind is AlertKind.ASSET_CREATED:
            return list(subscribers)
        amount = alert.amount if alert.amount is not None else Decimal("0")
        return [
            s
            for s in subscribers
            if amount >= self.effective_threshold(s.whale_threshold, alert.is_fresh)
        ]

    async def dispatch(self, alert: Alert) -> int:
        """Deliver one alert; returns the number of successful deliveries."""
        try:
            subscribers = await self._store.get_all_alertable_subscribers()
        except PersistenceError as exc:
            self._logger.error("Cannot load subscribers for %s alert: %s", alert.kind.value, exc)
            return 0

        recipients = self.select_recipients(alert, subscribers)
        if not recipients:
            self._logger.info(
                "No subscriber meets the threshold for %s alert (amount=%s)",
                alert.kind.value,
                alert.amount,
            )
            return 0

        text = render_alert(alert, self._explorer_url)
        delivered = 0
        for index, subscriber in enumerate(recipients):
            if index > 0:
                await self._sleep(self._pacing)
            try:
                await self._channel.send_message(subscriber.chat_id, text)
                delivered += 1
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.warning(
                    "Delivery to user %d (chat %d) failed: %s",
                    subscriber.user_id,
                    subscriber.chat_id,
                    exc,
                )

        self._logger.info(
            "Dispatched %s alert: %d/%d delivered", alert.kind.value, delivered, len(recipients)
        )
        if isinstance(alert.event, WhaleTransactionRecord):
            token_address = alert.event.token_address
        else:
            token_address = alert.event.address
        self._audit_logger.info(
            "alert dispatched (%d/%d)",
            delivered,
            len(recipients),
            extra={
                "event_type": alert.kind.value,
                "payload": alert.event,
                "token_address": token_address,
                "tx_hash": alert.event.tx_hash,
            },
        )
        return delivered

"""
Telegram Bot API delivery channel.

Sends one Markdown message per call through ``sendMessage``. Any HTTP
error, timeout or ``ok: false`` response is raised as AlertDeliveryError;
there is no retry.

Usage:
    client = TelegramClient()
    await client.send_message(chat_id, "hello")
    await client.close()
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

import aiohttp

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config

_API_BASE_URL = "https://api.telegram.org"


class AlertDeliveryError(Exception):
    """Raised when a message could not be delivered to a chat."""


class TelegramClient:
    def __init__(self, bot_token: str | None = None, api_base_url: str = _API_BASE_URL) -> None:
        timing = get_config().get_timing_config().get("alerts", {})
        self._timeout: float = float(timing.get("send_timeout_seconds", 10))
        self._bot_token = bot_token if bot_token is not None else os.getenv("TELEGRAM_BOT_TOKEN", "")
        self._api_base_url = api_base_url.rstrip("/")
        self._session: aiohttp.ClientSession | None = None
        self._logger = setup_module_logger(
            "telegram_client", "telegram_client.log", module_folder="Alert_Logs"
        )
        if not self._bot_token:
            self._logger.warning("TELEGRAM_BOT_TOKEN not set; every delivery will fail")

    async def send_message(self, chat_id: int, text: str) -> dict[str, Any]:
        """Send ``text`` to ``chat_id``. Returns the Bot API ``result`` object."""
        if not self._bot_token:
            raise AlertDeliveryError("Telegram bot token not configured")

        url = f"{self._api_base_url}/bot{self._bot_token}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }

        session = await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        try:
            async with session.post(url, json=payload, timeout=timeout) as resp:
                body = await resp.json(content_type=None)
                if not isinstance(body, dict):
                    raise AlertDeliveryError(
                        f"chat {chat_id}: unexpected response body (HTTP {resp.status})"
                    )
                if resp.status != 200 or not body.get("ok", False):
                    description = body.get("description", f"HTTP {resp.status}")
                    raise AlertDeliveryError(f"chat {chat_id}: {description}")
                return body.get("result", {})
        except AlertDeliveryError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise AlertDeliveryError(f"chat {chat_id}: {exc}") from exc

    async def close(self) -> None:
        """Close the underlying aiohttp session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

"""
Market-capitalization lookup for the whale path.

Queries the CoinGecko ``simple/token_price`` endpoint for a token's USD
market cap. Answers are cached for a short TTL; network or parse failures
return None so a flaky price feed never excludes a token.

Usage:
    market = MarketDataService()
    mcap = await market.get_market_cap_usd("0xabc...")
    await market.close()
"""

from __future__ import annotations

import os
import time
from decimal import Decimal, InvalidOperation
from typing import Any, cast

import aiohttp

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import DEFAULT_MARKET_DATA_TTL

_DEFAULT_API_URL = "https://api.coingecko.com/api/v3"
_DEFAULT_PLATFORM = "story"


class MarketDataService:
    def __init__(self) -> None:
        cfg = get_config()
        mcap_cfg = cfg.get_detection_config().get("market_cap", {})
        timing = cfg.get_timing_config().get("market_data", {})

        self._api_url: str = os.getenv(
            "COINGECKO_API_URL", mcap_cfg.get("api_url", _DEFAULT_API_URL)
        ).rstrip("/")
        self._platform: str = mcap_cfg.get("platform", _DEFAULT_PLATFORM)
        self._api_key: str = os.getenv("COINGECKO_API_KEY", "")
        self._timeout: float = float(timing.get("request_timeout_seconds", 10))
        self._cache_ttl: float = float(timing.get("cache_ttl_seconds", DEFAULT_MARKET_DATA_TTL))

        self._cache: dict[str, tuple[float, Decimal | None]] = {}
        self._session: aiohttp.ClientSession | None = None

        self._logger = setup_module_logger(
            "market_data", "market_data.log", module_folder="Tracker_Logs"
        )

    async def get_market_cap_usd(self, token_address: str) -> Decimal | None:
        """USD market cap, or None when unknown or the request failed."""
        key = token_address.lower()
        entry = self._cache.get(key)
        if entry is not None:
            stored_time, value = entry
            if time.monotonic() - stored_time <= self._cache_ttl:
                return value
            del self._cache[key]

        try:
            data = await self._fetch_token_price(key)
        except Exception as exc:
            self._logger.warning("Market cap lookup failed for %s: %s", key, exc)
            return None

        value = self._parse_market_cap(data, key)
        self._cache[key] = (time.monotonic(), value)
        return value

    async def close(self) -> None:
        """Close the underlying aiohttp session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _fetch_token_price(self, token_address: str) -> dict[str, Any]:
        url = f"{self._api_url}/simple/token_price/{self._platform}"
        params = {
            "contract_addresses": token_address,
            "vs_currencies": "usd",
            "include_market_cap": "true",
        }
        headers = {"x-cg-demo-api-key": self._api_key} if self._api_key else None

        session = await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        async with session.get(url, params=params, headers=headers, timeout=timeout) as resp:
            resp.raise_for_status()
            return cast(dict[str, Any], await resp.json())

    def _parse_market_cap(self, data: dict[str, Any], token_address: str) -> Decimal | None:
        entry = data.get(token_address) or data.get(token_address.lower()) or {}
        raw = entry.get("usd_market_cap")
        if raw is None:
            return None
        try:
            return Decimal(str(raw))
        except InvalidOperation:
            self._logger.warning("Unparseable market cap for %s: %r", token_address, raw)
            return None

"""
Unit tests for core/asset_registry.py.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.asset_registry import format_token_age
from shared.types import AssetCreationEvent

NOW = 1_700_000_000


def _asset(address: str, created_at: int, name: str = "Asset") -> AssetCreationEvent:
    return AssetCreationEvent(
        address=address,
        name=name,
        creator="0x" + "99" * 20,
        initial_supply=0,
        created_at=created_at,
        tx_hash="0x" + "ab" * 32,
        block_number=1,
    )


def _make_registry(make_loader, store=None, detection=None):
    with (
        patch("core.asset_registry.get_config") as mock_cfg,
        patch("core.asset_registry.setup_module_logger") as mock_logger,
    ):
        mock_cfg.return_value = make_loader(detection=detection)
        mock_logger.return_value = MagicMock()

        from core.asset_registry import AssetRegistry

        return AssetRegistry(store or MagicMock())


class TestFormatTokenAge:

    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [(0, "0m"), (59, "0m"), (42 * 60, "42m"), (3600, "1h 0m"), (3 * 3600 + 5 * 60 + 30, "3h 5m")],
    )
    def test_formats(self, seconds, expected):
        assert format_token_age(seconds) == expected

    def test_unknown(self):
        assert format_token_age(None) == "unknown"


class TestConfig:

    def test_defaults_from_detection_config(self, make_loader):
        registry = _make_registry(make_loader)
        assert registry.window_hours == 4
        assert registry.freshness_multiplier == Decimal("0.7")

    def test_custom_freshness(self, make_loader):
        detection = {"freshness": {"window_hours": 2, "threshold_multiplier": 0.5}}
        registry = _make_registry(make_loader, detection=detection)
        assert registry.window_hours == 2
        assert registry.freshness_multiplier == Decimal("0.5")


class TestRefresh:

    async def test_refresh_replaces_contents(self, make_loader):
        store = MagicMock()
        store.get_recent_assets = AsyncMock(return_value=[_asset("0xAAA", NOW)])
        registry = _make_registry(make_loader, store)

        assert await registry.refresh() == 1
        store.get_recent_assets.assert_awaited_once_with(4)
        assert registry.get("0xaaa") is not None

        store.get_recent_assets.return_value = [_asset("0xbbb", NOW), _asset("0xccc", NOW)]
        assert await registry.refresh() == 2
        assert len(registry) == 2
        assert registry.get("0xbbb") is not None
        assert registry.get("0xaaa") is None

    async def test_failed_refresh_keeps_previous_registry(self, make_loader):
        store = MagicMock()
        store.get_recent_assets = AsyncMock(return_value=[_asset("0xaaa", NOW)])
        registry = _make_registry(make_loader, store)
        await registry.refresh()

        store.get_recent_assets.side_effect = RuntimeError("db locked")
        with pytest.raises(RuntimeError):
            await registry.refresh()
        assert len(registry) == 1

    def test_note_adds_without_refresh(self, make_loader):
        registry = _make_registry(make_loader)
        registry.note(_asset("0xDDD", NOW, name="New"))
        assert registry.get("0xddd").name == "New"


class TestFreshness:

    def test_fresh_within_window(self, make_loader):
        registry = _make_registry(make_loader)
        registry.note(_asset("0xaaa", NOW))
        assert registry.is_fresh("0xaaa", NOW + 3600) is True

    def test_fresh_at_exact_boundary(self, make_loader):
        registry = _make_registry(make_loader)
        registry.note(_asset("0xaaa", NOW))
        assert registry.is_fresh("0xaaa", NOW + 4 * 3600) is True
        assert registry.is_fresh("0xaaa", NOW + 4 * 3600 + 1) is False

    def test_unknown_token_not_fresh(self, make_loader):
        registry = _make_registry(make_loader)
        assert registry.is_fresh("0xeee", NOW) is False

    def test_lookup_case_insensitive(self, make_loader):
        registry = _make_registry(make_loader)
        registry.note(_asset("0xabcdef", NOW))
        assert registry.is_fresh("0xABCDEF", NOW) is True

    def test_token_age(self, make_loader):
        registry = _make_registry(make_loader)
        registry.note(_asset("0xaaa", NOW))
        assert registry.token_age("0xaaa", NOW + 5400) == "1h 30m"
        assert registry.token_age("0xfff", NOW) == "unknown"

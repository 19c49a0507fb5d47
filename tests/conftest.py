"""
Shared pytest configuration and fixtures for Story IP Monitor tests.

Provides standard config dicts, a mock ConfigLoader and an in-memory
SQLite store.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

# ---------------------------------------------------------------------------
# Sample addresses
# ---------------------------------------------------------------------------

SAMPLE_TOKEN = "0x1111111111111111111111111111111111111111"
SAMPLE_SENDER = "0x2222222222222222222222222222222222222222"
SAMPLE_RECEIVER = "0x3333333333333333333333333333333333333333"
SAMPLE_REGISTRY = "0x77319b4031e6ef1250907aa00018b8b1c67a244b"

# ---------------------------------------------------------------------------
# Standard mock configs
# ---------------------------------------------------------------------------

STANDARD_CHAIN_CONFIG = {
    "chain_id": 1514,
    "name": "Story",
    "rpc": {
        "endpoints": [
            {"url": "https://rpc-a.example", "priority": 0},
            {"url": "https://rpc-b.example", "priority": 1},
        ]
    },
    "explorer_url": "https://www.storyscan.io",
    "asset_registries": [{"address": SAMPLE_REGISTRY, "label": "IPAssetRegistry"}],
    "creation_functions": ["register(uint256,address,uint256)"],
    "creation_events": [
        {
            "name": "IPRegistered",
            "signature": "IPRegistered(address,uint256,address,uint256,string,string,uint256)",
            "indexed": [["chain_id", "uint256"], ["token_contract", "address"], ["token_id", "uint256"]],
            "data": [["ip_id", "address"], ["name", "string"], ["uri", "string"], ["registration_date", "uint256"]],
            "roles": {"address": "ip_id", "name": "name", "created_at": "registration_date"},
        }
    ],
}

STANDARD_TIMING_CONFIG = {
    "polling": {"interval_seconds": 30, "registry_refresh_seconds": 300, "stats_interval_seconds": 300},
    "rpc": {"connect_timeout_seconds": 8, "call_timeout_seconds": 10},
    "metadata": {"call_timeout_seconds": 5},
    "market_data": {"request_timeout_seconds": 10, "cache_ttl_seconds": 120},
    "alerts": {"pacing_seconds": 0.1, "send_timeout_seconds": 10},
}

STANDARD_DETECTION_CONFIG = {
    "mode": "windowed",
    "default_whale_threshold": 40,
    "freshness": {"window_hours": 4, "threshold_multiplier": "0.7"},
    "volume_windows": [
        {"label": "15s", "duration_seconds": 15, "threshold": 50},
        {"label": "30s", "duration_seconds": 30, "threshold": 100},
        {"label": "1m", "duration_seconds": 60, "threshold": 200},
        {"label": "5m", "duration_seconds": 300, "threshold": 500},
    ],
    "market_cap": {
        "ceiling_usd": 200000,
        "api_url": "https://api.coingecko.com/api/v3",
        "platform": "story",
    },
}

STANDARD_APP_CONFIG = {
    "logging": {"log_dir": "logs"},
    "database": {"path": ":memory:"},
    "monitoring": {"allow_degraded": False, "streams": ["assets", "whales"]},
}

ERC20_ABI = [
    {"name": "name", "type": "function", "stateMutability": "view", "inputs": [],
     "outputs": [{"name": "", "type": "string"}]},
    {"name": "symbol", "type": "function", "stateMutability": "view", "inputs": [],
     "outputs": [{"name": "", "type": "string"}]},
    {"name": "decimals", "type": "function", "stateMutability": "view", "inputs": [],
     "outputs": [{"name": "", "type": "uint8"}]},
]


def build_mock_loader(
    chain: dict | None = None,
    timing: dict | None = None,
    detection: dict | None = None,
    app: dict | None = None,
) -> MagicMock:
    loader = MagicMock()
    chain = STANDARD_CHAIN_CONFIG if chain is None else chain
    loader.get_chain_config.return_value = chain
    loader.get_timing_config.return_value = STANDARD_TIMING_CONFIG if timing is None else timing
    loader.get_detection_config.return_value = (
        STANDARD_DETECTION_CONFIG if detection is None else detection
    )
    loader.get_app_config.return_value = STANDARD_APP_CONFIG if app is None else app
    loader.get_rpc_endpoints.return_value = chain.get("rpc", {}).get("endpoints", [])
    loader.get_abi.return_value = ERC20_ABI
    loader.get_database_path.return_value = ":memory:"
    return loader


# ---------------------------------------------------------------------------
# Config loader fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_config_loader():
    """
    Provide a mock ConfigLoader that returns standard configs.

    Usage in tests:
        def test_something(mock_config_loader):
            mock_config_loader.get_detection_config.return_value = {...}
    """
    return build_mock_loader()


# ---------------------------------------------------------------------------
# Store fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def memory_store():
    """SQLiteMonitorStore on an in-memory database with a fixed clock."""
    with (
        patch("data.store.get_config") as mock_cfg,
        patch("data.store.setup_module_logger") as mock_logger,
    ):
        mock_cfg.return_value = build_mock_loader()
        mock_logger.return_value = MagicMock()

        from data.store import SQLiteMonitorStore

        store = SQLiteMonitorStore(db_path=":memory:", clock=lambda: 1_700_000_000)
    yield store
    store.close()


@pytest.fixture
def make_loader():
    """Factory for mock loaders with per-test config overrides."""
    return build_mock_loader

"""
Shared constants for the Story IP Monitor.

Event signatures, numeric constants, and default values used across all modules.
"""

from decimal import Decimal

# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------

STORY_EXPLORER_URL = "https://www.storyscan.io"

ZERO_ADDRESS = "0x" + "00" * 20

# ---------------------------------------------------------------------------
# ERC-20
# ---------------------------------------------------------------------------

# keccak256("Transfer(address,address,uint256)")
TRANSFER_EVENT_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
TRANSFER_TOPIC_COUNT = 3

# Sentinels used when a metadata read call fails or times out
UNKNOWN_TOKEN_NAME = "Unknown Token"
UNKNOWN_TOKEN_SYMBOL = "UNKNOWN"
DEFAULT_TOKEN_DECIMALS = 18

# ---------------------------------------------------------------------------
# Detection defaults
# ---------------------------------------------------------------------------

DEFAULT_WHALE_THRESHOLD = Decimal("40")
DEFAULT_FRESHNESS_WINDOW_HOURS = 4
DEFAULT_FRESHNESS_MULTIPLIER = Decimal("0.7")
DEFAULT_MCAP_CEILING_USD = Decimal("200000")

# (label, duration_seconds, threshold)
DEFAULT_VOLUME_WINDOWS = (
    ("15s", 15, Decimal("50")),
    ("30s", 30, Decimal("100")),
    ("1m", 60, Decimal("200")),
    ("5m", 300, Decimal("500")),
)

AMOUNT_QUANTUM = Decimal("0.01")

# ---------------------------------------------------------------------------
# Timing defaults (seconds)
# ---------------------------------------------------------------------------

DEFAULT_POLL_INTERVAL = 30
DEFAULT_REGISTRY_REFRESH_INTERVAL = 300
DEFAULT_STATS_INTERVAL = 300
DEFAULT_CONNECT_TIMEOUT = 8
MIN_CONNECT_TIMEOUT = 5
MAX_CONNECT_TIMEOUT = 10
DEFAULT_RPC_CALL_TIMEOUT = 10
DEFAULT_METADATA_TIMEOUT = 5
DEFAULT_ALERT_PACING = 0.1
DEFAULT_MARKET_DATA_TTL = 120

SECONDS_PER_HOUR = 3600

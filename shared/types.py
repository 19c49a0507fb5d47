"""
Shared data types for the Story IP Monitor.

Centralized dataclasses and enums used across all modules.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MonitorState(Enum):
    STOPPED = "stopped"
    INITIALIZING = "initializing"
    CONNECTED = "connected"
    RUNNING = "running"
    RECONNECTING = "reconnecting"


class AlertKind(Enum):
    ASSET_CREATED = "asset_created"
    WHALE_TRANSACTION = "whale_transaction"


class DetectionMode(Enum):
    WINDOWED = "windowed"  # aggregate volume over rolling windows
    SINGLE = "single"  # one transfer vs. laxest subscriber threshold


# ---------------------------------------------------------------------------
# Connection Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RpcEndpoint:
    url: str
    priority: int = 0


@dataclass
class ConnectionState:
    """Mutable connection bookkeeping; written only by RpcEndpointPool."""

    active_index: int | None = None
    last_block_height: int | None = None
    is_live: bool = False


# ---------------------------------------------------------------------------
# Chain Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssetCreationEvent:
    address: str  # lower-cased; dedup key
    name: str
    creator: str
    initial_supply: int
    created_at: int  # unix seconds
    tx_hash: str
    block_number: int


@dataclass(frozen=True)
class TransferEvent:
    token_address: str
    from_address: str
    to_address: str
    raw_amount: int  # base units, as emitted
    tx_hash: str
    block_number: int
    timestamp: int  # block timestamp, unix seconds
    log_index: int = 0


@dataclass(frozen=True)
class TokenMetadata:
    address: str
    name: str
    symbol: str
    decimals: int
    resolved: bool = True  # False when any field is a sentinel


# ---------------------------------------------------------------------------
# Detection Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VolumeWindow:
    label: str  # e.g. "30s"
    duration_seconds: int
    threshold: Decimal


@dataclass(frozen=True)
class WindowStats:
    label: str
    volume: Decimal
    count: int


@dataclass(frozen=True)
class WhaleVerdict:
    is_whale: bool
    triggering_window: str | None = None  # window label, "single", or None
    volume: Decimal = Decimal("0")
    count: int = 0
    reason: str = ""

    @classmethod
    def negative(cls, reason: str = "") -> WhaleVerdict:
        return cls(is_whale=False, reason=reason)


@dataclass(frozen=True)
class WhaleTransactionRecord:
    tx_hash: str
    token_address: str
    token_name: str
    token_symbol: str
    from_address: str
    to_address: str
    amount: Decimal  # token units
    category: str  # transfer / mint / burn
    block_number: int
    timestamp: int
    is_recent_token: bool
    token_age: str
    pattern: str  # triggering window label or "single"
    volume: Decimal
    tx_count: int


# ---------------------------------------------------------------------------
# Subscribers & Alerts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Subscriber:
    user_id: int
    chat_id: int
    username: str | None = None
    whale_threshold: Decimal = Decimal("40")
    alerts_enabled: bool = True


@dataclass(frozen=True)
class Alert:
    """One outbound event, pushed once to the alert sink."""

    kind: AlertKind
    event: AssetCreationEvent | WhaleTransactionRecord
    amount: Decimal | None = None  # whale alerts only
    is_fresh: bool = False


# ---------------------------------------------------------------------------
# Analysis Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LaunchWindowStats:
    tx_count: int
    unique_wallets: int
    total_volume: Decimal
    avg_tx_size: Decimal


@dataclass(frozen=True)
class LaunchAnalysis:
    token_address: str
    total_transactions: int
    first_ten_minutes: LaunchWindowStats | None
    launch_phase: str  # single_buyer / coordinated / normal / organic / unknown
    whale_entry_pattern: str  # none / moderate / heavy

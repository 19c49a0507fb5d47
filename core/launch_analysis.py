"""
Launch-pattern analysis over a token's stored whale transactions.

Summarizes the first ten minutes after the first recorded transaction and
classifies how the launch unfolded:

- launch phase, from the number of distinct senders among the first 20
  transactions: ``single_buyer`` (1), ``coordinated`` (< 5),
  ``organic`` (>= 10), otherwise ``normal``
- whale entry, from transactions above 100 units: ``none`` (0),
  ``heavy`` (>= 3), otherwise ``moderate``
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from shared.constants import AMOUNT_QUANTUM
from shared.types import LaunchAnalysis, LaunchWindowStats

if TYPE_CHECKING:
    from shared.types import WhaleTransactionRecord

LAUNCH_WINDOW_SECONDS = 600
PHASE_SAMPLE_SIZE = 20
LARGE_ENTRY_AMOUNT = Decimal("100")
HEAVY_ENTRY_COUNT = 3


def determine_launch_phase(transactions: list[WhaleTransactionRecord]) -> str:
    if not transactions:
        return "unknown"
    wallets = {tx.from_address.lower() for tx in transactions[:PHASE_SAMPLE_SIZE]}
    if len(wallets) == 1:
        return "single_buyer"
    if len(wallets) < 5:
        return "coordinated"
    if len(wallets) >= 10:
        return "organic"
    return "normal"


def analyze_whale_entry(transactions: list[WhaleTransactionRecord]) -> str:
    large = sum(1 for tx in transactions if tx.amount > LARGE_ENTRY_AMOUNT)
    if large == 0:
        return "none"
    if large >= HEAVY_ENTRY_COUNT:
        return "heavy"
    return "moderate"


def first_window_stats(
    transactions: list[WhaleTransactionRecord], window_seconds: int = LAUNCH_WINDOW_SECONDS
) -> LaunchWindowStats | None:
    if not transactions:
        return None
    launch_time = transactions[0].timestamp
    early = [tx for tx in transactions if tx.timestamp - launch_time <= window_seconds]
    total = sum((tx.amount for tx in early), Decimal("0"))
    return LaunchWindowStats(
        tx_count=len(early),
        unique_wallets=len({tx.from_address.lower() for tx in early}),
        total_volume=total,
        avg_tx_size=(total / len(early)).quantize(AMOUNT_QUANTUM),
    )


def analyze_launch(
    token_address: str, transactions: list[WhaleTransactionRecord]
) -> LaunchAnalysis:
    ordered = sorted(transactions, key=lambda tx: (tx.timestamp, tx.block_number))
    return LaunchAnalysis(
        token_address=token_address.lower(),
        total_transactions=len(ordered),
        first_ten_minutes=first_window_stats(ordered),
        launch_phase=determine_launch_phase(ordered),
        whale_entry_pattern=analyze_whale_entry(ordered),
    )

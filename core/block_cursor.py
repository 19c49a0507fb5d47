"""
Per-stream block cursor.

Tracks the highest block number a stream has fully scanned. A cursor is
anchored once, at the chain height observed during initialization, and
only ever moves forward after a whole range has been processed.

Usage:
    cursor = BlockCursor("whales")
    cursor.anchor(100)
    blocks = cursor.pending_range(103)   # range(101, 104)
    ...
    cursor.advance(103)
"""

from __future__ import annotations


class BlockCursor:
    def __init__(self, stream: str) -> None:
        self.stream = stream
        self._last_scanned: int | None = None

    @property
    def last_scanned(self) -> int | None:
        return self._last_scanned

    @property
    def is_anchored(self) -> bool:
        return self._last_scanned is not None

    def anchor(self, height: int) -> bool:
        """Set the starting point if the stream has not started yet. Returns True if anchored now."""
        if self._last_scanned is not None:
            return False
        self._last_scanned = height
        return True

    def pending_range(self, height: int) -> range | None:
        """Blocks ``last_scanned+1 .. height`` inclusive, or None when nothing is new."""
        if self._last_scanned is None or height <= self._last_scanned:
            return None
        return range(self._last_scanned + 1, height + 1)

    def advance(self, height: int) -> None:
        if self._last_scanned is not None and height < self._last_scanned:
            raise ValueError(
                f"Cursor {self.stream} cannot move backwards ({self._last_scanned} -> {height})"
            )
        self._last_scanned = height

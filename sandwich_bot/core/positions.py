"""Position ledger shared by the scanner (reads) and state machine (writes)."""

import threading
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from .types import Position, SandwichBotError


class DuplicatePositionError(SandwichBotError):
    """Raised when a second position is opened for the same opportunity."""
    pass


class PositionBook:
    """Append-only position ledger with a bounded recent window.

    Writes are serialized by a lock; readers receive detached copies.
    Open positions are tracked separately so the concurrency count stays
    exact even after they scroll out of the recent window. Memory is
    bounded by the recent window plus the open positions.
    """

    def __init__(self, max_recent: int = 50):
        self._lock = threading.Lock()
        self._recent: Deque[Position] = deque(maxlen=max_recent)
        self._open: Dict[str, Position] = {}
        self.total_opened = 0

    def add(self, position: Position) -> None:
        with self._lock:
            if position.id in self._open:
                raise DuplicatePositionError(f"Position {position.id} is already open")
            if self._has_opportunity(position.opportunity_id):
                raise DuplicatePositionError(
                    f"Opportunity {position.opportunity_id} already has a position"
                )
            self._recent.appendleft(position)
            if position.is_open:
                self._open[position.id] = position
            self.total_opened += 1

    def _has_opportunity(self, opportunity_id: str) -> bool:
        return (any(p.opportunity_id == opportunity_id for p in self._open.values())
                or any(p.opportunity_id == opportunity_id for p in self._recent))

    def apply(self, position: Position, **changes: Any) -> Position:
        """Apply field changes atomically and return a copy of the result."""
        with self._lock:
            for name, value in changes.items():
                setattr(position, name, value)
            if not position.is_open:
                self._open.pop(position.id, None)
            return position.copy()

    @property
    def open_count(self) -> int:
        with self._lock:
            return len(self._open)

    def recent(self) -> List[Position]:
        """Most recent first."""
        with self._lock:
            return [p.copy() for p in self._recent]

    def open_positions(self) -> List[Position]:
        with self._lock:
            return [p.copy() for p in self._open.values()]

    def get(self, position_id: str) -> Optional[Position]:
        with self._lock:
            if position_id in self._open:
                return self._open[position_id].copy()
            for position in self._recent:
                if position.id == position_id:
                    return position.copy()
        return None

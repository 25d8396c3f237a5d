"""Running performance statistics."""

import threading
import time
from collections import deque
from dataclasses import dataclass
from loguru import logger

from .types import Position


@dataclass(frozen=True)
class StatsSnapshot:
    """Immutable view of the cumulative counters.

    Derived figures are computed from the counters on access, so
    ``net_profit == total_profit - total_gas_spent`` and the success rate
    always agree with the counts they are built from.
    """
    total_opportunities: int = 0
    executed_sandwiches: int = 0
    successful_sandwiches: int = 0
    total_profit: float = 0.0
    total_gas_spent: float = 0.0
    last_update_time: int = 0

    @property
    def net_profit(self) -> float:
        return self.total_profit - self.total_gas_spent

    @property
    def success_rate(self) -> float:
        if self.executed_sandwiches == 0:
            return 0.0
        return self.successful_sandwiches / self.executed_sandwiches * 100

    @property
    def avg_profit_per_trade(self) -> float:
        if self.executed_sandwiches == 0:
            return 0.0
        return self.total_profit / self.executed_sandwiches

    def to_dict(self) -> dict:
        return {
            'total_opportunities': self.total_opportunities,
            'executed_sandwiches': self.executed_sandwiches,
            'successful_sandwiches': self.successful_sandwiches,
            'total_profit': self.total_profit,
            'total_gas_spent': self.total_gas_spent,
            'net_profit': self.net_profit,
            'success_rate': self.success_rate,
            'avg_profit_per_trade': self.avg_profit_per_trade,
            'last_update_time': self.last_update_time
        }


class StatsAggregator:
    """Single writer for the cumulative stats. Each event is applied atomically.

    Duplicate completions are detected within a sliding window of the most
    recently counted position ids, so memory stays bounded.
    """

    def __init__(self, dedupe_window: int = 1000):
        self._lock = threading.Lock()
        self._stats = StatsSnapshot(last_update_time=int(time.time() * 1000))
        self._counted_order = deque(maxlen=dedupe_window)
        self._counted_ids = set()

    def on_opportunities_scanned(self, count: int) -> None:
        if count < 0:
            raise ValueError("opportunity count must be >= 0")
        if count == 0:
            return
        with self._lock:
            s = self._stats
            self._stats = StatsSnapshot(
                total_opportunities=s.total_opportunities + count,
                executed_sandwiches=s.executed_sandwiches,
                successful_sandwiches=s.successful_sandwiches,
                total_profit=s.total_profit,
                total_gas_spent=s.total_gas_spent,
                last_update_time=int(time.time() * 1000),
            )

    def on_position_completed(self, position: Position) -> bool:
        """Count a terminal position once. Returns False if it was already counted."""
        if position.is_open:
            raise ValueError(f"Position {position.id} is not terminal ({position.status.value})")

        with self._lock:
            if position.id in self._counted_ids:
                logger.warning(f"Position {position.id} already counted, ignoring")
                return False
            if len(self._counted_order) == self._counted_order.maxlen:
                self._counted_ids.discard(self._counted_order[0])
            self._counted_order.append(position.id)
            self._counted_ids.add(position.id)

            s = self._stats
            self._stats = StatsSnapshot(
                total_opportunities=s.total_opportunities,
                executed_sandwiches=s.executed_sandwiches + 1,
                successful_sandwiches=s.successful_sandwiches + (1 if position.success else 0),
                total_profit=s.total_profit + position.profit,
                total_gas_spent=s.total_gas_spent + position.gas_used,
                last_update_time=int(time.time() * 1000),
            )
            snapshot = self._stats

        logger.info(f"Stats updated: executed={snapshot.executed_sandwiches}, "
                    f"success_rate={snapshot.success_rate:.1f}%, net={snapshot.net_profit:.6f} SOL")
        return True

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return self._stats

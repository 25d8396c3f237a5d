"""Injectable randomness so outcome policies can be tested deterministically."""

import random
from abc import ABC, abstractmethod
from typing import Iterable, Optional, Sequence, TypeVar

T = TypeVar("T")


class RandomSource(ABC):
    """Source of floats in [0, 1). Everything else is derived from ``next``."""

    @abstractmethod
    def next(self) -> float:
        pass

    def uniform(self, low: float, high: float) -> float:
        return low + (high - low) * self.next()

    def randint(self, low: int, high: int) -> int:
        """Integer in [low, high], both inclusive."""
        return low + min(int(self.next() * (high - low + 1)), high - low)

    def choice(self, items: Sequence[T]) -> T:
        if not items:
            raise IndexError("cannot choose from an empty sequence")
        return items[min(int(self.next() * len(items)), len(items) - 1)]

    def chance(self, probability: float) -> bool:
        """True with the given probability."""
        return self.next() < probability


class PseudoRandomSource(RandomSource):
    """``random.Random`` backed source, reproducible when seeded."""

    def __init__(self, seed: Optional[int] = None):
        self._random = random.Random(seed)

    def next(self) -> float:
        return self._random.random()


class ScriptedRandomSource(RandomSource):
    """Replays a fixed sequence of values, cycling when exhausted."""

    def __init__(self, values: Iterable[float]):
        self.values = list(values)
        if not self.values:
            raise ValueError("ScriptedRandomSource needs at least one value")
        for value in self.values:
            if not 0 <= value < 1:
                raise ValueError(f"scripted value {value} outside [0, 1)")
        self._index = 0

    def next(self) -> float:
        value = self.values[self._index % len(self.values)]
        self._index += 1
        return value

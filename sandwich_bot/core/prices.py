"""Last-known price per token symbol."""

import asyncio
import threading
import time
from typing import Dict, Iterable, Mapping, Optional
from loguru import logger

from .interfaces import PriceService


class PriceCache:
    """Holds the last price fetched for each symbol."""

    def __init__(self, reference_token: str = "SOL", fallback_reference_price: float = 150.0):
        self.reference_token = reference_token
        self.fallback_reference_price = fallback_reference_price
        self._prices: Dict[str, float] = {}
        self._lock = threading.Lock()
        self.last_update = 0.0

    def get(self, symbol: str, default: Optional[float] = None) -> Optional[float]:
        with self._lock:
            return self._prices.get(symbol, default)

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._prices)

    def update(self, prices: Mapping[str, float]) -> None:
        """Merge positive prices into the cache."""
        with self._lock:
            for symbol, price in prices.items():
                if price and price > 0:
                    self._prices[symbol] = float(price)
            self.last_update = time.time()

    @property
    def reference_price(self) -> float:
        """USD price of the reference token, used to convert profits to SOL."""
        return self.get(self.reference_token) or self.fallback_reference_price

    async def refresh(self, service: PriceService, symbols: Iterable[str]) -> bool:
        """Fetch all symbols concurrently. On any failure the cache is left unchanged."""
        symbols = list(symbols)
        try:
            prices = await asyncio.gather(*(service.get_price(s) for s in symbols))
        except Exception as e:
            logger.error(f"Error updating prices: {e}")
            return False

        self.update(dict(zip(symbols, prices)))
        logger.debug(f"Updated prices for {len(symbols)} tokens")
        return True


def reference_price_for(prices: Mapping[str, float], symbol: str, fallback: float) -> float:
    """Price of ``symbol`` from a snapshot, or ``fallback`` when unknown."""
    price = prices.get(symbol)
    if price is None or price <= 0:
        return fallback
    return price

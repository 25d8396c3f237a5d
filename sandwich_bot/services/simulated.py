"""Simulated collaborators for demo runs."""

from typing import Dict, Optional, Tuple
from loguru import logger

from ..core.interfaces import PriceService, PriceServiceError, WalletError, WalletProvider
from ..core.randomness import PseudoRandomSource, RandomSource
from ..core.types import CongestionLevel


class SimulatedPriceService(PriceService):
    """Random walk around configured base prices."""

    def __init__(self, base_prices: Dict[str, float], volatility_pct: float = 0.3,
                 rng: Optional[RandomSource] = None):
        self.prices = dict(base_prices)
        self.volatility_pct = volatility_pct
        self.rng = rng or PseudoRandomSource()

    async def get_price(self, symbol: str) -> float:
        if symbol not in self.prices:
            raise PriceServiceError(f"No price for {symbol}")
        drift = self.rng.uniform(-self.volatility_pct, self.volatility_pct) / 100
        self.prices[symbol] = self.prices[symbol] * (1 + drift)
        return self.prices[symbol]

    async def get_congestion_level(self) -> CongestionLevel:
        draw = self.rng.next()
        if draw < 0.6:
            return CongestionLevel.LOW
        if draw < 0.9:
            return CongestionLevel.MEDIUM
        return CongestionLevel.HIGH


class StaticWalletProvider(WalletProvider):
    """Watch-only wallet with a known address and balance."""

    def __init__(self, address: str, balance: float = 0.0):
        if not address:
            raise WalletError("Wallet address is required")
        self.address = address
        self.balance = balance
        self.connected = False

    async def connect(self) -> Tuple[str, float]:
        self.connected = True
        logger.info(f"Wallet connected: {self.address[:8]}...{self.address[-8:]}")
        return self.address, self.balance

    async def disconnect(self) -> None:
        if self.connected:
            logger.info("Wallet disconnected")
        self.connected = False

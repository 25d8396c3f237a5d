"""Collaborator interfaces the bot core consumes: price feed and wallet."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

from .types import CongestionLevel, SandwichBotError


class PriceServiceError(SandwichBotError):
    """Raised when prices or congestion cannot be retrieved."""
    pass


class WalletError(SandwichBotError):
    """Raised when a wallet cannot be connected."""
    pass


@dataclass
class WalletState:
    """Connection state of the trading wallet."""
    address: Optional[str] = None
    balance: float = 0.0  # SOL
    connected: bool = False


class PriceService(ABC):
    """Price feed and network congestion estimate."""

    @abstractmethod
    async def get_price(self, symbol: str) -> float:
        """Return the latest USD price for ``symbol``."""
        pass

    @abstractmethod
    async def get_congestion_level(self) -> CongestionLevel:
        """Return the current network congestion level."""
        pass


class WalletProvider(ABC):
    """Wallet connection. Credentials never leave the provider."""

    @abstractmethod
    async def connect(self) -> Tuple[str, float]:
        """Connect and return ``(address, balance)``."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect the wallet."""
        pass

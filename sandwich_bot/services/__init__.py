"""Simulated collaborators: price feed and wallet for demo runs."""

from ..core.interfaces import PriceService, PriceServiceError, WalletError, WalletProvider, WalletState
from .simulated import SimulatedPriceService, StaticWalletProvider

__all__ = [
    'PriceService',
    'PriceServiceError',
    'WalletError',
    'WalletProvider',
    'WalletState',
    'SimulatedPriceService',
    'StaticWalletProvider'
]

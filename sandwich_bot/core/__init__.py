"""Core scanning, execution and statistics logic for the sandwich bot."""

from .types import (
    CongestionLevel,
    Opportunity,
    OpportunityStatus,
    Position,
    PositionStatus,
    Priority,
    SandwichBotError,
    ScanMetrics,
    TargetTx,
    TokenPair,
    TradeResult,
)
from .randomness import RandomSource, PseudoRandomSource, ScriptedRandomSource
from .interfaces import PriceService, PriceServiceError, WalletError, WalletProvider, WalletState
from .prices import PriceCache
from .scanner import OpportunityScanner
from .trade_executor import (
    DemoTradeExecutor,
    LiveTradeExecutor,
    PreTradeRejection,
    TradeExecutor,
    select_trade_executor,
)
from .positions import DuplicatePositionError, PositionBook
from .stats import StatsAggregator, StatsSnapshot
from .executor import ExecutionStateMachine, InvalidTransition
from .engine import SandwichBot

__all__ = [
    'CongestionLevel',
    'Opportunity',
    'OpportunityStatus',
    'Position',
    'PositionStatus',
    'Priority',
    'SandwichBotError',
    'ScanMetrics',
    'TargetTx',
    'TokenPair',
    'TradeResult',
    'RandomSource',
    'PseudoRandomSource',
    'ScriptedRandomSource',
    'PriceService',
    'PriceServiceError',
    'WalletError',
    'WalletProvider',
    'WalletState',
    'PriceCache',
    'OpportunityScanner',
    'DemoTradeExecutor',
    'LiveTradeExecutor',
    'PreTradeRejection',
    'TradeExecutor',
    'select_trade_executor',
    'DuplicatePositionError',
    'PositionBook',
    'StatsAggregator',
    'StatsSnapshot',
    'ExecutionStateMachine',
    'InvalidTransition',
    'SandwichBot'
]

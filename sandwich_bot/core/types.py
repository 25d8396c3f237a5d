"""
Shared types and data structures for the sandwich bot.
This file breaks circular imports between modules.
"""

import time
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import List, Optional

from ..errors import SandwichBotError


class OpportunityStatus(Enum):
    """Lifecycle of a detected opportunity."""
    DETECTED = "detected"
    EXECUTING = "executing"
    EXECUTED = "executed"
    EXPIRED = "expired"


class PositionStatus(Enum):
    """Stages of a position, in order."""
    PENDING = "pending"
    FRONT_RUN_SENT = "front_run_sent"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PositionStatus.COMPLETED, PositionStatus.FAILED)


class CongestionLevel(Enum):
    """Network congestion reported by the price service."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Priority(Enum):
    """Priority tier of a target transaction."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @classmethod
    def from_confidence(cls, confidence: float) -> "Priority":
        if confidence > 70:
            return cls.HIGH
        if confidence > 50:
            return cls.MEDIUM
        return cls.LOW


@dataclass(frozen=True)
class TokenPair:
    """A tradable pair, e.g. SOL/USDC."""
    token_a: str
    token_b: str

    @property
    def symbol(self) -> str:
        return f"{self.token_a}/{self.token_b}"


@dataclass(frozen=True)
class TargetTx:
    """The transaction an opportunity is built around."""
    signature: str
    slot: int
    timestamp: int
    amount: float
    token_mint: str
    estimated_price_impact: float
    priority: Priority
    program_id: str = ""
    accounts: List[str] = field(default_factory=list)


@dataclass
class Opportunity:
    """Detected sandwich opportunity. Only ``status`` may change after creation."""
    id: str
    token_pair: TokenPair
    target_tx: TargetTx
    estimated_profit: float  # SOL
    profit_percent: float
    confidence: float
    front_run_price: float
    back_run_price: float
    gas_estimate: float  # SOL
    time_window_ms: int = 1000
    status: OpportunityStatus = OpportunityStatus.DETECTED
    timestamp: int = 0

    def __post_init__(self):
        if self.timestamp == 0:
            object.__setattr__(self, "timestamp", int(time.time() * 1000))
        object.__setattr__(self, "_sealed", True)

    def __setattr__(self, name, value):
        if name != "status" and getattr(self, "_sealed", False):
            raise AttributeError(f"Opportunity.{name} is read-only")
        object.__setattr__(self, name, value)

    @property
    def price_impact(self) -> float:
        return self.target_tx.estimated_price_impact

    @property
    def profit_after_gas(self) -> float:
        return self.estimated_profit - self.gas_estimate


@dataclass
class Position:
    """A single execution attempt against one opportunity."""
    id: str
    opportunity_id: str
    token: str
    entry_price: float
    amount: float  # USD
    status: PositionStatus = PositionStatus.PENDING
    exit_price: Optional[float] = None
    profit: float = 0.0  # SOL
    gas_used: float = 0.0  # SOL
    net_profit: float = 0.0  # SOL
    front_run_tx: Optional[str] = None
    back_run_tx: Optional[str] = None
    is_demo: bool = True
    wallet: Optional[str] = None
    success: Optional[bool] = None
    error: Optional[str] = None
    timestamp: int = 0
    completed_at: Optional[int] = None

    def __post_init__(self):
        if self.timestamp == 0:
            self.timestamp = int(time.time() * 1000)

    @property
    def is_live(self) -> bool:
        return not self.is_demo

    @property
    def fee(self) -> float:
        return self.gas_used

    @property
    def is_open(self) -> bool:
        return not self.status.is_terminal

    def copy(self) -> "Position":
        """Detached copy for readers outside the state machine."""
        return Position(**{f.name: getattr(self, f.name) for f in fields(self)})


@dataclass(frozen=True)
class TradeResult:
    """Verdict returned by a trade executor."""
    success: bool
    profit: float  # SOL
    fee: float  # SOL
    tx_reference: Optional[str] = None


@dataclass
class ScanMetrics:
    """Market metrics updated by each completed scan."""
    block_height: int = 0
    mempool_size: int = 0
    avg_gas_price: float = 5000.0
    network_congestion: CongestionLevel = CongestionLevel.LOW
    profitable_opportunities: int = 0
    last_scan_time: int = 0

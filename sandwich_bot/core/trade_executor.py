"""Trade executors: demo simulation and live execution behind safety checks."""

import time
from abc import ABC, abstractmethod
from typing import Optional
from loguru import logger

from .randomness import RandomSource
from .types import CongestionLevel, Opportunity, Position, SandwichBotError, TradeResult
from ..config import Config, ExecutionConfig, TradingConfig


class PreTradeRejection(SandwichBotError):
    """Raised by a live executor when a safety check fails before submission."""

    def __init__(self, reason: str, fee: float):
        super().__init__(reason)
        self.reason = reason
        self.fee = fee


class TradeExecutor(ABC):
    """Resolves a position's outcome. Bound to one configuration snapshot."""

    is_demo = True

    def __init__(self, config: Config, trading: TradingConfig, rng: RandomSource,
                 sol_price: float, congestion: CongestionLevel = CongestionLevel.LOW):
        self.execution: ExecutionConfig = config.execution
        self.trading = trading
        self.gas_estimate = config.scanner.gas_estimate_sol
        self.rng = rng
        self.sol_price = sol_price
        self.congestion = congestion

    @property
    @abstractmethod
    def base_success_rate(self) -> float:
        pass

    @abstractmethod
    async def execute(self, opportunity: Opportunity, position: Position,
                      wallet: Optional[str] = None) -> TradeResult:
        pass

    def success_probability(self, opportunity: Opportunity) -> float:
        """Base rate plus confidence bonus, less a congestion penalty, clamped."""
        bonus = (opportunity.confidence - 50) / 100 * self.execution.confidence_bonus
        penalty = self.execution.high_congestion_penalty if self.congestion == CongestionLevel.HIGH else 0.0
        rate = self.base_success_rate + bonus - penalty
        return min(self.execution.max_success_rate, max(self.execution.min_success_rate, rate))

    def _resolve(self, opportunity: Opportunity, position: Position, tag: str) -> TradeResult:
        success = self.rng.chance(self.success_probability(opportunity))

        if success:
            profit = opportunity.estimated_profit * self.rng.uniform(*self.execution.profit_scale)
        else:
            # Adverse move on the whole position, never a gain
            slippage = self.rng.uniform(0.0, self.execution.failure_slippage_max)
            profit = -(position.amount * slippage) / self.sol_price

        fee = self.rng.uniform(*self.execution.fee_sol)
        tx_reference = f"{tag}_back_{int(time.time() * 1000)}" if success else None
        return TradeResult(success=success, profit=profit, fee=fee, tx_reference=tx_reference)


class DemoTradeExecutor(TradeExecutor):
    """Simulated execution used without live mode or a connected wallet."""

    is_demo = True

    @property
    def base_success_rate(self) -> float:
        return self.execution.demo_base_success_rate

    async def execute(self, opportunity: Opportunity, position: Position,
                      wallet: Optional[str] = None) -> TradeResult:
        result = self._resolve(opportunity, position, "demo")
        logger.debug(f"Demo execution {position.id}: success={result.success} profit={result.profit:.6f}")
        return result


class LiveTradeExecutor(TradeExecutor):
    """Execution gated by pre-trade safety checks and a connected wallet."""

    is_demo = False

    @property
    def base_success_rate(self) -> float:
        return self.execution.live_base_success_rate

    def check_safety(self, opportunity: Opportunity, position: Position) -> None:
        """Raise :class:`PreTradeRejection` if the trade must not be submitted."""
        profit_after_gas = opportunity.profit_after_gas
        if profit_after_gas < self.trading.min_profit_threshold:
            raise PreTradeRejection(
                f"Profit after gas {profit_after_gas:.6f} SOL below minimum "
                f"{self.trading.min_profit_threshold:.6f} SOL",
                fee=opportunity.gas_estimate,
            )
        if position.amount > self.trading.max_trade_size:
            raise PreTradeRejection(
                f"Trade size ${position.amount:.2f} exceeds max ${self.trading.max_trade_size:.2f}",
                fee=opportunity.gas_estimate,
            )

    async def execute(self, opportunity: Opportunity, position: Position,
                      wallet: Optional[str] = None) -> TradeResult:
        if not wallet:
            raise PreTradeRejection("Live execution requires a connected wallet", fee=self.gas_estimate)
        self.check_safety(opportunity, position)

        result = self._resolve(opportunity, position, f"live_{wallet[:8]}")
        logger.info(f"Live execution {position.id} via {wallet[:8]}...: "
                    f"success={result.success} profit={result.profit:.6f} SOL")
        return result


def select_trade_executor(config: Config, trading: TradingConfig, rng: RandomSource,
                          sol_price: float, congestion: CongestionLevel) -> TradeExecutor:
    """Live only when live mode is on and a wallet is connected."""
    if trading.live_mode and trading.wallet_address:
        return LiveTradeExecutor(config, trading, rng, sol_price, congestion)
    return DemoTradeExecutor(config, trading, rng, sol_price, congestion)

"""Staged execution of admitted opportunities."""

import asyncio
import itertools
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set
from loguru import logger

from .positions import DuplicatePositionError, PositionBook
from .randomness import RandomSource
from .stats import StatsAggregator
from .trade_executor import PreTradeRejection, TradeExecutor, select_trade_executor
from .types import (
    CongestionLevel,
    Opportunity,
    OpportunityStatus,
    Position,
    PositionStatus,
    SandwichBotError,
)
from ..config import Config, TradingConfig


class InvalidTransition(SandwichBotError):
    """Raised when a position is moved along an edge the lifecycle does not allow."""
    pass


TRANSITIONS = {
    PositionStatus.PENDING: {PositionStatus.FRONT_RUN_SENT, PositionStatus.FAILED},
    PositionStatus.FRONT_RUN_SENT: {PositionStatus.COMPLETED, PositionStatus.FAILED},
    PositionStatus.COMPLETED: set(),
    PositionStatus.FAILED: set(),
}

SleepFn = Callable[[float], Awaitable[Any]]
ExecutorFactory = Callable[[Config, TradingConfig, RandomSource, float, CongestionLevel], TradeExecutor]


_position_ids = itertools.count(1)


def _now_ms() -> int:
    return int(time.time() * 1000)


def exit_price_for(entry_price: float, amount: float, profit: float, sol_price: float) -> float:
    """Exit price at which a position of ``amount`` USD realizes ``profit`` SOL."""
    if entry_price <= 0 or amount <= 0:
        return entry_price
    return entry_price * (1 + profit * sol_price / amount)


class ExecutionStateMachine:
    """Drives each position PENDING -> FRONT_RUN_SENT -> COMPLETED.

    ``execute`` returns at once with a PENDING position; the two timed
    stages run in a background task per position, so positions never
    block each other or the scan loop. Each position keeps the trading
    snapshot it was created with for all of its stages.

    Stopping the bot does not cancel these tasks: positions already
    scheduled run to completion. Use :meth:`drain` to wait for them.
    """

    def __init__(self, config: Config, book: PositionBook, stats: StatsAggregator,
                 rng: RandomSource, sleep: SleepFn = asyncio.sleep,
                 executor_factory: ExecutorFactory = select_trade_executor,
                 on_completed: Optional[Callable[[Position], None]] = None):
        self.config = config
        self.execution = config.execution
        self.gas_estimate = config.scanner.gas_estimate_sol
        self.book = book
        self.stats = stats
        self.rng = rng
        self._sleep = sleep
        self._executor_factory = executor_factory
        self._on_completed = on_completed
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def execute(self, opportunity: Opportunity, trading: TradingConfig, sol_price: float,
                congestion: CongestionLevel = CongestionLevel.LOW) -> Position:
        """Open a PENDING position and schedule its resolution. Needs a running loop."""
        if opportunity.status != OpportunityStatus.DETECTED:
            raise DuplicatePositionError(
                f"Opportunity {opportunity.id} is {opportunity.status.value}, not detected"
            )
        executor = self._executor_factory(self.config, trading, self.rng, sol_price, congestion)

        position = Position(
            id=f"pos_{_now_ms()}_{next(_position_ids)}",
            opportunity_id=opportunity.id,
            token=opportunity.token_pair.symbol,
            entry_price=opportunity.front_run_price,
            amount=trading.position_size,
            is_demo=executor.is_demo,
            wallet=None if executor.is_demo else trading.wallet_address,
        )
        self.book.add(position)
        opportunity.status = OpportunityStatus.EXECUTING

        mode = "DEMO" if executor.is_demo else "LIVE"
        logger.info(f"🥪 Opened {mode} position {position.id} on {position.token}: "
                    f"${position.amount:.2f} @ {position.entry_price:.4f}")

        task = asyncio.create_task(self._run(position, opportunity, executor, trading))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return position.copy()

    async def drain(self) -> None:
        """Wait until every scheduled position has reached a terminal state."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _transition(self, position: Position, status: PositionStatus, **changes: Any) -> Position:
        if status not in TRANSITIONS[position.status]:
            raise InvalidTransition(
                f"Position {position.id}: {position.status.value} -> {status.value} not allowed"
            )
        logger.debug(f"Position {position.id}: {position.status.value} -> {status.value}")
        return self.book.apply(position, status=status, **changes)

    async def _run(self, position: Position, opportunity: Opportunity,
                   executor: TradeExecutor, trading: TradingConfig) -> None:
        try:
            final = await self._advance(position, opportunity, executor, trading)
        except asyncio.CancelledError:
            self._finish(self._fail(position, "Execution cancelled"))
            raise
        except Exception as e:
            logger.error(f"Position {position.id} failed: {e}")
            final = self._fail(position, str(e))
        self._finish(final)

    async def _advance(self, position: Position, opportunity: Opportunity,
                       executor: TradeExecutor, trading: TradingConfig) -> Position:
        await self._sleep(self.rng.uniform(*self.execution.front_run_delay_s))
        self._transition(position, PositionStatus.FRONT_RUN_SENT, front_run_tx=f"front_{_now_ms()}")

        await self._sleep(self.rng.uniform(*self.execution.back_run_delay_s))
        outcome = await self._resolve(position, opportunity, executor)
        final = self._transition(position, PositionStatus.COMPLETED, **outcome)
        opportunity.status = OpportunityStatus.EXECUTED
        return final

    async def _resolve(self, position: Position, opportunity: Opportunity,
                       executor: TradeExecutor) -> Dict[str, Any]:
        """Ask the trade executor for a verdict and turn it into position fields."""
        try:
            result = await executor.execute(opportunity, position.copy(), position.wallet)
        except PreTradeRejection as e:
            logger.warning(f"⚠️ Pre-trade rejection for {position.id}: {e.reason}")
            return self._fee_only(position, e.fee, e.reason)
        except Exception as e:
            logger.error(f"Trade executor error for {position.id}: {e}")
            return self._fee_only(position, self.gas_estimate, f"Execution failed: {e}")

        profit = result.profit if result.success else min(result.profit, 0.0)
        return {
            'exit_price': exit_price_for(position.entry_price, position.amount, profit, executor.sol_price),
            'profit': profit,
            'gas_used': result.fee,
            'net_profit': profit - result.fee,
            'back_run_tx': result.tx_reference if result.success else None,
            'success': result.success,
            'completed_at': _now_ms(),
        }

    def _fee_only(self, position: Position, fee: float, reason: str) -> Dict[str, Any]:
        return {
            'exit_price': position.entry_price,
            'profit': 0.0,
            'gas_used': fee,
            'net_profit': 0.0 - fee,
            'success': False,
            'error': reason,
            'completed_at': _now_ms(),
        }

    def _fail(self, position: Position, reason: str) -> Position:
        if not position.is_open:
            return position.copy()
        return self._transition(
            position,
            PositionStatus.FAILED,
            profit=0.0,
            gas_used=0.0,
            net_profit=0.0,
            success=False,
            error=reason,
            completed_at=_now_ms(),
        )

    def _finish(self, final: Position) -> None:
        self.stats.on_position_completed(final)

        outcome = "✅ success" if final.success else "❌ failed"
        logger.info(f"Position {final.id} {final.status.value} ({outcome}): "
                    f"profit={final.profit:.6f} fee={final.gas_used:.6f} net={final.net_profit:.6f} SOL")

        if self._on_completed:
            try:
                self._on_completed(final)
            except Exception as e:
                logger.error(f"Position completion callback failed: {e}")

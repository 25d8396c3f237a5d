"""Test the staged execution state machine."""

import asyncio

import pytest

from sandwich_bot.config import Config, TradingConfig
from sandwich_bot.core.executor import ExecutionStateMachine, InvalidTransition, exit_price_for
from sandwich_bot.core.positions import DuplicatePositionError, PositionBook
from sandwich_bot.core.randomness import ScriptedRandomSource
from sandwich_bot.core.stats import StatsAggregator
from sandwich_bot.core.trade_executor import PreTradeRejection, select_trade_executor
from sandwich_bot.core.types import OpportunityStatus, Position, PositionStatus, TradeResult

from tests.sample_data import WALLET, StubTradeExecutor, make_opportunity, no_sleep


class TestExecutionStateMachine:
    """Test position lifecycle and outcome bookkeeping."""

    def setup_method(self):
        self.config = Config()
        self.trading = TradingConfig()
        self.book = PositionBook()
        self.stats = StatsAggregator()
        self.rng = ScriptedRandomSource([0.5])

    def machine(self, stub=None, sleep=no_sleep, **kwargs):
        factory = stub.factory if stub else select_trade_executor
        return ExecutionStateMachine(self.config, self.book, self.stats, self.rng,
                                     sleep=sleep, executor_factory=factory, **kwargs)

    def run(self, machine, opportunity, trading=None):
        async def scenario():
            pending = machine.execute(opportunity, trading or self.trading, 150.0)
            await machine.drain()
            return pending, self.book.get(pending.id)
        return asyncio.run(scenario())

    def test_returns_pending_position_immediately(self):
        """Test execute returns a pending position right away."""
        stub = StubTradeExecutor()
        opp = make_opportunity()

        pending, final = self.run(self.machine(stub), opp)

        assert pending.status == PositionStatus.PENDING
        assert pending.amount == 20.0
        assert pending.entry_price == opp.front_run_price
        assert pending.exit_price is None
        assert final.status == PositionStatus.COMPLETED

    def test_stages_in_order(self):
        """Test each delay is preceded by the expected stage."""
        observed = []

        async def recording_sleep(delay):
            observed.append([p.status for p in self.book.recent()][0])
            await asyncio.sleep(0)

        self.run(self.machine(StubTradeExecutor(), sleep=recording_sleep), make_opportunity())

        assert observed == [PositionStatus.PENDING, PositionStatus.FRONT_RUN_SENT]

    def test_success_bookkeeping(self):
        """Test a successful verdict is booked on the position and stats."""
        stub = StubTradeExecutor(TradeResult(success=True, profit=0.002, fee=0.0001, tx_reference="back_1"))
        opp = make_opportunity(price=150.0)

        _, final = self.run(self.machine(stub), opp)

        assert final.success is True
        assert final.profit == 0.002
        assert final.gas_used == 0.0001
        assert final.net_profit == final.profit - final.gas_used
        assert final.exit_price == pytest.approx(150.0 * (1 + 0.002 * 150.0 / 20.0))
        assert final.front_run_tx is not None
        assert final.back_run_tx == "back_1"
        assert final.is_demo is True
        assert final.is_live is False
        assert opp.status == OpportunityStatus.EXECUTED

        snapshot = self.stats.snapshot()
        assert snapshot.executed_sandwiches == 1
        assert snapshot.successful_sandwiches == 1

    def test_failed_verdict_never_reports_gain(self):
        """A failed verdict with positive profit is booked as fee-only loss."""
        stub = StubTradeExecutor(TradeResult(success=False, profit=0.005, fee=0.0001))

        _, final = self.run(self.machine(stub), make_opportunity())

        assert final.success is False
        assert final.profit == 0.0
        assert final.net_profit == -0.0001
        assert final.back_run_tx is None
        assert self.stats.snapshot().successful_sandwiches == 0

    def test_failed_verdict_loss(self):
        """Test a failed verdict books a loss below entry price."""
        stub = StubTradeExecutor(TradeResult(success=False, profit=-0.001, fee=0.0001))

        _, final = self.run(self.machine(stub), make_opportunity())

        assert final.status == PositionStatus.COMPLETED
        assert final.net_profit == final.profit - final.gas_used
        assert final.exit_price < final.entry_price

    def test_pre_trade_rejection_costs_fee_only(self):
        """Test a pre-trade rejection costs only the fee."""
        stub = StubTradeExecutor(error=PreTradeRejection("too small", fee=0.0003))

        _, final = self.run(self.machine(stub), make_opportunity())

        assert final.status == PositionStatus.COMPLETED
        assert final.profit == 0.0
        assert final.gas_used == 0.0003
        assert final.net_profit == -0.0003
        assert final.error == "too small"
        assert final.success is False

    def test_executor_error_costs_gas_estimate(self):
        """Test an executor error costs the gas estimate."""
        stub = StubTradeExecutor(error=RuntimeError("rpc down"))

        _, final = self.run(self.machine(stub), make_opportunity())

        assert final.status == PositionStatus.COMPLETED
        assert final.net_profit == -self.config.scanner.gas_estimate_sol
        assert "rpc down" in final.error

    def test_live_rejection_end_to_end(self):
        """Live profit-after-gas below minimum is rejected with loss == fee exactly."""
        trading = TradingConfig(live_mode=True, wallet_address=WALLET)
        opp = make_opportunity(estimated_profit=0.0003)

        _, final = self.run(self.machine(), opp, trading)

        assert final.is_live is True
        assert final.wallet == WALLET
        assert final.net_profit == -opp.gas_estimate
        assert final.profit == 0.0
        assert self.stats.snapshot().total_gas_spent == opp.gas_estimate

    def test_hard_error_fails_position(self):
        """Test an internal error marks the position failed."""
        calls = []

        async def broken_sleep(delay):
            calls.append(delay)
            if len(calls) == 2:
                raise RuntimeError("timer service died")

        _, final = self.run(self.machine(StubTradeExecutor(), sleep=broken_sleep), make_opportunity())

        assert final.status == PositionStatus.FAILED
        assert final.net_profit == 0.0
        assert "timer service died" in final.error
        snapshot = self.stats.snapshot()
        assert snapshot.executed_sandwiches == 1
        assert snapshot.successful_sandwiches == 0

    def test_one_position_per_opportunity(self):
        """Test an opportunity cannot be executed twice concurrently."""
        machine = self.machine(StubTradeExecutor())
        opp = make_opportunity()

        async def scenario():
            machine.execute(opp, self.trading, 150.0)
            with pytest.raises(DuplicatePositionError):
                machine.execute(opp, self.trading, 150.0)
            await machine.drain()

        asyncio.run(scenario())
        assert self.stats.snapshot().executed_sandwiches == 1

    def test_ids_unique_with_repeated_draws_and_frozen_clock(self, monkeypatch):
        """Positions opened in the same millisecond with identical draws get distinct ids."""
        monkeypatch.setattr("sandwich_bot.core.executor._now_ms", lambda: 1_700_000_000_000)
        machine = self.machine(StubTradeExecutor())

        async def scenario():
            first = machine.execute(make_opportunity(), self.trading, 150.0)
            second = machine.execute(make_opportunity(), self.trading, 150.0)
            assert self.book.open_count == 2
            await machine.drain()
            return first, second

        first, second = asyncio.run(scenario())

        assert first.id != second.id
        assert self.book.open_count == 0
        assert self.stats.snapshot().executed_sandwiches == 2

    def test_executed_opportunity_not_reopened(self):
        """An opportunity that already produced a position cannot be executed again."""
        machine = self.machine(StubTradeExecutor())
        opp = make_opportunity()

        async def scenario():
            machine.execute(opp, self.trading, 150.0)
            await machine.drain()
            with pytest.raises(DuplicatePositionError):
                machine.execute(opp, self.trading, 150.0)

        asyncio.run(scenario())
        assert opp.status == OpportunityStatus.EXECUTED
        assert self.stats.snapshot().executed_sandwiches == 1

    def test_terminal_positions_are_frozen(self):
        """Test terminal positions accept no further transitions."""
        machine = self.machine()
        position = Position(id="p1", opportunity_id="o1", token="SOL/USDC", entry_price=150.0,
                            amount=20.0, status=PositionStatus.COMPLETED)

        with pytest.raises(InvalidTransition):
            machine._transition(position, PositionStatus.FRONT_RUN_SENT)
        with pytest.raises(InvalidTransition):
            machine._transition(position, PositionStatus.FAILED)

    def test_cannot_skip_front_run(self):
        """Test a pending position cannot complete without a front run."""
        machine = self.machine()
        position = Position(id="p2", opportunity_id="o2", token="SOL/USDC", entry_price=150.0, amount=20.0)

        with pytest.raises(InvalidTransition):
            machine._transition(position, PositionStatus.COMPLETED)

    def test_completion_callback(self):
        """Test the completion callback receives the final position."""
        completed = []
        self.run(self.machine(StubTradeExecutor(), on_completed=completed.append), make_opportunity())

        assert len(completed) == 1
        assert completed[0].status == PositionStatus.COMPLETED

    def test_positions_resolve_concurrently(self):
        """Two positions interleave instead of running one after the other."""
        order = []

        async def tracing_sleep(delay):
            order.append(len(order))
            await asyncio.sleep(0)

        machine = self.machine(StubTradeExecutor(), sleep=tracing_sleep)

        async def scenario():
            machine.execute(make_opportunity(), self.trading, 150.0)
            machine.execute(make_opportunity(), self.trading, 150.0)
            assert self.book.open_count == 2
            await machine.drain()

        asyncio.run(scenario())
        assert self.book.open_count == 0
        assert self.stats.snapshot().executed_sandwiches == 2


class TestExitPrice:
    """Test exit price derivation."""

    def test_profit_maps_to_exit_price(self):
        """Test exit price reflects the realized profit."""
        assert exit_price_for(150.0, 20.0, 0.0, 150.0) == 150.0
        assert exit_price_for(150.0, 20.0, 0.01, 150.0) == pytest.approx(150.0 * 1.075)

    def test_degenerate_inputs(self):
        """Test zero entry price or amount leave the entry price."""
        assert exit_price_for(150.0, 0.0, 0.01, 150.0) == 150.0
        assert exit_price_for(0.0, 20.0, 0.01, 150.0) == 0.0


class TestPositionBook:
    """Test the position ledger."""

    def make(self, i, status=PositionStatus.PENDING):
        return Position(id=f"p{i}", opportunity_id=f"o{i}", token="SOL/USDC",
                        entry_price=150.0, amount=20.0, status=status)

    def test_recent_window_bounded_open_count_exact(self):
        """Test the open count stays exact beyond the recent window."""
        book = PositionBook(max_recent=3)
        for i in range(5):
            book.add(self.make(i))

        assert len(book.recent()) == 3
        assert book.recent()[0].id == "p4"
        assert book.open_count == 5
        assert len(book.open_positions()) == 5
        assert book.total_opened == 5

    def test_apply_closes_terminal_positions(self):
        """Test terminal changes remove the position from the open set."""
        book = PositionBook()
        position = self.make(1)
        book.add(position)

        copy = book.apply(position, status=PositionStatus.COMPLETED)

        assert copy.status == PositionStatus.COMPLETED
        assert book.open_count == 0
        assert book.open_positions() == []
        assert book.get("p1").status == PositionStatus.COMPLETED

    def test_readers_get_copies(self):
        """Test readers cannot mutate the ledger."""
        book = PositionBook()
        book.add(self.make(1))

        book.recent()[0].status = PositionStatus.FAILED

        assert book.get("p1").status == PositionStatus.PENDING

    def test_memory_bounded_by_recent_window(self):
        """Closing many positions leaves only the recent window behind."""
        book = PositionBook(max_recent=5)
        for i in range(500):
            position = self.make(i)
            book.add(position)
            book.apply(position, status=PositionStatus.COMPLETED)

        assert book.open_count == 0
        assert len(book._open) == 0
        assert len(book._recent) == 5
        assert book.total_opened == 500
        assert [p.id for p in book.recent()] == ["p499", "p498", "p497", "p496", "p495"]

    def test_duplicate_opportunity(self):
        """Test a second position for the same opportunity is refused."""
        book = PositionBook()
        book.add(self.make(1))
        with pytest.raises(DuplicatePositionError):
            book.add(Position(id="other", opportunity_id="o1", token="SOL/USDC",
                              entry_price=150.0, amount=20.0))

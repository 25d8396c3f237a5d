"""Test demo and live trade executors."""

import asyncio

import pytest

from sandwich_bot.config import Config, ExecutionConfig, TradingConfig
from sandwich_bot.core.randomness import PseudoRandomSource, ScriptedRandomSource
from sandwich_bot.core.trade_executor import (
    DemoTradeExecutor,
    LiveTradeExecutor,
    PreTradeRejection,
    select_trade_executor,
)
from sandwich_bot.core.types import CongestionLevel, Position

from tests.sample_data import WALLET, make_opportunity


def make_position(amount: float = 20.0) -> Position:
    return Position(id="pos_test", opportunity_id="opp_test", token="SOL/USDC",
                    entry_price=150.0, amount=amount)


class TestSuccessProbability:
    """Test the success rate policy."""

    def setup_method(self):
        self.config = Config()
        self.trading = TradingConfig()

    def demo(self, congestion=CongestionLevel.LOW):
        return DemoTradeExecutor(self.config, self.trading, ScriptedRandomSource([0.5]), 150.0, congestion)

    def test_confidence_bonus(self):
        """Test confidence raises the success probability."""
        assert self.demo().success_probability(make_opportunity(confidence=100)) == pytest.approx(0.85)
        assert self.demo().success_probability(make_opportunity(confidence=75)) == pytest.approx(0.80)

    def test_high_congestion_penalty(self):
        """Test high congestion lowers the success probability."""
        executor = self.demo(CongestionLevel.HIGH)
        assert executor.success_probability(make_opportunity(confidence=75)) == pytest.approx(0.75)

    def test_clamped_to_bounds(self):
        """Test the success probability is clamped."""
        assert self.demo().success_probability(make_opportunity(confidence=0)) == pytest.approx(0.65)

        live = LiveTradeExecutor(self.config, self.trading, ScriptedRandomSource([0.5]), 150.0)
        assert live.success_probability(make_opportunity(confidence=100)) == pytest.approx(0.95)

    def test_live_rate_higher_than_demo(self):
        """Test live execution uses the higher base rate."""
        live = LiveTradeExecutor(self.config, self.trading, ScriptedRandomSource([0.5]), 150.0)
        opp = make_opportunity(confidence=60)
        assert live.success_probability(opp) > self.demo().success_probability(opp)


class TestDemoTradeExecutor:
    """Test simulated execution outcomes."""

    def setup_method(self):
        self.config = Config()
        self.trading = TradingConfig()

    def test_success_branch(self):
        """Test a successful demo trade."""
        rng = ScriptedRandomSource([0.0, 0.5, 0.5])
        executor = DemoTradeExecutor(self.config, self.trading, rng, 150.0)
        opp = make_opportunity(estimated_profit=0.01)

        result = asyncio.run(executor.execute(opp, make_position()))

        assert result.success is True
        assert result.profit == pytest.approx(0.01)  # scale 1.0 at the midpoint
        assert result.fee == pytest.approx(0.000105)
        assert result.tx_reference is not None

    def test_failure_branch_is_a_loss(self):
        """Test a failed demo trade never gains."""
        rng = ScriptedRandomSource([0.99, 0.5, 0.5])
        executor = DemoTradeExecutor(self.config, self.trading, rng, 150.0)

        result = asyncio.run(executor.execute(make_opportunity(), make_position(20.0)))

        assert result.success is False
        assert result.profit == pytest.approx(-(20.0 * 0.01) / 150.0)
        assert result.profit <= 0
        assert result.tx_reference is None

    def test_success_rate_converges(self):
        """1000 demo runs at confidence 75 land near the configured 80%."""
        executor = DemoTradeExecutor(self.config, self.trading, PseudoRandomSource(42), 150.0)
        opp = make_opportunity(confidence=75)
        expected = executor.success_probability(opp)

        async def run_many():
            return [await executor.execute(opp, make_position()) for _ in range(1000)]

        results = asyncio.run(run_many())
        rate = sum(1 for r in results if r.success) / len(results)

        assert expected == pytest.approx(0.80)
        assert abs(rate - expected) < 0.05
        assert all(r.profit <= 0 for r in results if not r.success)


class TestLiveTradeExecutor:
    """Test live pre-trade guards."""

    def setup_method(self):
        self.config = Config()
        self.trading = TradingConfig(live_mode=True, wallet_address=WALLET)

    def live(self, trading=None):
        return LiveTradeExecutor(self.config, trading or self.trading, ScriptedRandomSource([0.0, 0.5, 0.5]), 150.0)

    def test_rejects_low_profit_after_gas(self):
        """Test thin profit after gas is rejected before submission."""
        with pytest.raises(PreTradeRejection) as exc_info:
            asyncio.run(self.live().execute(make_opportunity(estimated_profit=0.0003), make_position(), WALLET))

        assert exc_info.value.fee == pytest.approx(0.0003)
        assert "Profit after gas" in exc_info.value.reason

    def test_rejects_oversized_trade(self):
        """Test trades above the max size are rejected."""
        with pytest.raises(PreTradeRejection) as exc_info:
            asyncio.run(self.live().execute(make_opportunity(), make_position(amount=25.0), WALLET))

        assert "exceeds max" in exc_info.value.reason

    def test_requires_wallet(self):
        """Test live execution needs a wallet."""
        with pytest.raises(PreTradeRejection):
            asyncio.run(self.live().execute(make_opportunity(), make_position(), None))

    def test_executes_when_guards_pass(self):
        """Test live execution once all guards pass."""
        result = asyncio.run(self.live().execute(make_opportunity(), make_position(), WALLET))

        assert result.success is True
        assert result.tx_reference.startswith(f"live_{WALLET[:8]}")


class TestSelectTradeExecutor:
    """Test demo/live selection."""

    def setup_method(self):
        self.config = Config()
        self.rng = ScriptedRandomSource([0.5])

    def select(self, **changes):
        trading = TradingConfig(**changes)
        return select_trade_executor(self.config, trading, self.rng, 150.0, CongestionLevel.LOW)

    def test_demo_by_default(self):
        """Test demo execution is the default."""
        assert isinstance(self.select(), DemoTradeExecutor)

    def test_live_needs_mode_and_wallet(self):
        """Test live execution needs both live mode and a wallet."""
        assert isinstance(self.select(live_mode=True, wallet_address=WALLET), LiveTradeExecutor)
        assert isinstance(self.select(live_mode=True), DemoTradeExecutor)
        assert isinstance(self.select(wallet_address=WALLET), DemoTradeExecutor)

    def test_demo_flag(self):
        """Test the demo flag of each executor."""
        assert self.select().is_demo is True
        assert self.select(live_mode=True, wallet_address=WALLET).is_demo is False


class TestExecutionConfig:
    """Test default execution policy numbers."""

    def test_defaults(self):
        """Test default execution policy numbers."""
        execution = ExecutionConfig()
        assert execution.demo_base_success_rate == 0.75
        assert execution.live_base_success_rate > execution.demo_base_success_rate
        assert execution.min_success_rate <= execution.max_success_rate

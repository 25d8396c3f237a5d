"""Sandwich opportunity detection and admission."""

import itertools
import time
from typing import List, Mapping, Optional, Tuple
from loguru import logger

from .prices import reference_price_for
from .randomness import RandomSource
from .types import CongestionLevel, Opportunity, Priority, TargetTx, TokenPair
from ..config import Config, TradingConfig

_opportunity_ids = itertools.count(1)


class OpportunityScanner:
    """Generates candidate opportunities and decides which may be executed.

    Every candidate becomes an :class:`Opportunity`, profitable or not, so
    the recent list reflects everything the scanner saw. Only the admission
    filter decides what turns into a position.
    """

    def __init__(self, config: Config, rng: RandomSource):
        self.config = config
        self.scanner = config.scanner
        self.rng = rng
        self.reference_token = config.price.reference_token
        self.fallback_price = config.price.fallback_reference_price
        self.failure_slippage_max = config.execution.failure_slippage_max

    def scan(self, prices: Mapping[str, float], trading: TradingConfig) -> List[Opportunity]:
        """Produce this tick's opportunities, in generation order."""
        pairs = trading.tradable_pairs()
        if not pairs:
            logger.warning("No tradable pairs: check target_tokens and trading_pairs")
            return []

        now = int(time.time() * 1000)
        sol_price = reference_price_for(prices, self.reference_token, self.fallback_price)
        count = self.rng.randint(1, self.scanner.max_candidates)

        opportunities = []
        for i in range(count):
            token_a, token_b = self.rng.choice(pairs)
            opportunities.append(self._build_opportunity(
                TokenPair(token_a, token_b), prices, sol_price, trading, now, i
            ))

        logger.debug(f"Scan generated {len(opportunities)} candidates")
        return opportunities

    def _build_opportunity(self, pair: TokenPair, prices: Mapping[str, float], sol_price: float,
                           trading: TradingConfig, now: int, index: int) -> Opportunity:
        price_impact = self.rng.uniform(*self.scanner.price_impact_pct)
        confidence = self.rng.uniform(*self.scanner.confidence)
        notional = self.rng.uniform(*self.scanner.notional_usd)
        capture_rate = self.rng.uniform(*self.scanner.capture_rate)

        estimated_profit_usd = notional * (price_impact / 100) * capture_rate
        estimated_profit = estimated_profit_usd / sol_price
        sized_capital = trading.capital * trading.max_position_size_pct / 100
        profit_percent = min(self.scanner.max_profit_pct, estimated_profit / sized_capital * 100)

        front_run_price = reference_price_for(prices, pair.token_a, sol_price)

        target_tx = TargetTx(
            signature=f"tx_{now}_{index}",
            slot=now // 1000 + index,
            timestamp=now,
            amount=notional,
            token_mint=pair.token_a,
            estimated_price_impact=price_impact,
            priority=Priority.from_confidence(confidence),
            program_id=self.scanner.program_id,
            accounts=[pair.token_a, pair.token_b],
        )

        return Opportunity(
            id=f"opp_{now}_{next(_opportunity_ids)}",
            token_pair=pair,
            target_tx=target_tx,
            estimated_profit=estimated_profit,
            profit_percent=profit_percent,
            confidence=confidence,
            front_run_price=front_run_price,
            back_run_price=front_run_price * (1 + min(price_impact, trading.slippage_tolerance) / 100),
            gas_estimate=self.scanner.gas_estimate_sol,
            time_window_ms=self.scanner.time_window_ms,
            timestamp=now,
        )

    def gas_price(self, congestion: CongestionLevel, trading: TradingConfig) -> float:
        """Priority fee bid for this congestion level, capped at the configured maximum."""
        return min(self.scanner.gas_price_by_congestion[congestion.value], trading.max_gas_price)

    def worst_case_loss(self, trading: TradingConfig, sol_price: float) -> float:
        """Largest loss in SOL a failed trade of the configured size can book."""
        slippage_loss = trading.position_size * self.failure_slippage_max / sol_price
        return slippage_loss + self.scanner.gas_estimate_sol

    def check_admission(self, opportunity: Opportunity, trading: TradingConfig,
                        open_positions: int, sol_price: Optional[float] = None) -> Tuple[bool, Optional[str]]:
        """Check whether an opportunity may become a position."""
        if opportunity.confidence < self.scanner.confidence_floor:
            return False, (f"Confidence {opportunity.confidence:.1f} < floor "
                           f"{self.scanner.confidence_floor:.1f}")

        profit_after_gas = opportunity.profit_after_gas
        if profit_after_gas < trading.min_profit_threshold:
            return False, (f"Profit after gas {profit_after_gas:.6f} SOL < min "
                           f"{trading.min_profit_threshold:.6f} SOL")

        worst_case = self.worst_case_loss(trading, sol_price or self.fallback_price)
        if worst_case > trading.max_loss:
            return False, f"Worst-case loss {worst_case:.6f} SOL > max {trading.max_loss:.6f} SOL"

        if open_positions >= self.scanner.max_concurrent_positions:
            return False, (f"Open positions {open_positions} at cap "
                           f"{self.scanner.max_concurrent_positions}")

        return True, None

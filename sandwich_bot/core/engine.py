"""Sandwich bot engine: scheduling, admission and shared state."""

import asyncio
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional
from loguru import logger

from .executor import ExecutionStateMachine, SleepFn
from .interfaces import PriceService, WalletProvider, WalletState
from .positions import DuplicatePositionError, PositionBook
from .prices import PriceCache
from .randomness import PseudoRandomSource, RandomSource
from .scanner import OpportunityScanner
from .stats import StatsAggregator, StatsSnapshot
from .types import Opportunity, OpportunityStatus, Position, ScanMetrics
from ..config import Config, TradingConfig


class SandwichBot:
    """Runs the scan loop and hands admitted opportunities to the state machine.

    Only the event loop thread writes; snapshots of configuration, stats,
    opportunities and positions may be read from anywhere.
    """

    def __init__(self, config: Config, price_service: PriceService,
                 rng: Optional[RandomSource] = None, sleep: SleepFn = asyncio.sleep):
        self.config = config
        self._trading: TradingConfig = config.trading
        self.price_service = price_service
        self.rng = rng or PseudoRandomSource()
        self._sleep = sleep

        self.prices = PriceCache(config.price.reference_token, config.price.fallback_reference_price)
        self.stats_aggregator = StatsAggregator()
        self.book = PositionBook(config.execution.max_recent_positions)
        self.scanner = OpportunityScanner(config, self.rng)
        self.state_machine = ExecutionStateMachine(
            config, self.book, self.stats_aggregator, self.rng, sleep=sleep
        )

        self._opportunities: Deque[Opportunity] = deque(maxlen=config.scanner.max_recent_opportunities)
        self.metrics = ScanMetrics()
        self.wallet = WalletState()
        self._wallet_provider: Optional[WalletProvider] = None

        self.enabled = False
        self._scanning = False
        self._scheduler_task: Optional[asyncio.Task] = None
        self._price_task: Optional[asyncio.Task] = None
        self._tick_tasks: set = set()
        self.skipped_ticks = 0

    # Read access

    @property
    def trading(self) -> TradingConfig:
        """Current trading configuration snapshot."""
        return self._trading

    @property
    def stats(self) -> StatsSnapshot:
        return self.stats_aggregator.snapshot()

    @property
    def opportunities(self) -> List[Opportunity]:
        """Recent opportunities, most recent first."""
        return list(self._opportunities)

    @property
    def positions(self) -> List[Position]:
        """Recent positions, most recent first."""
        return self.book.recent()

    @property
    def is_scanning(self) -> bool:
        return self._scanning and self.enabled

    # Mutators

    async def start(self) -> None:
        """Enable scanning and start the price refresh and scan loops."""
        if self.enabled:
            logger.debug("Bot already running")
            return

        self.enabled = True
        mode = "LIVE" if self._trading.live_mode and self._trading.wallet_address else "DEMO"
        logger.info(f"🚀 Starting sandwich bot in {mode} mode")
        logger.info(f"Capital: ${self._trading.capital:.2f}, position size: ${self._trading.position_size:.2f}")
        logger.info(f"Tradable pairs: {['/'.join(p) for p in self._trading.tradable_pairs()]}")

        await self.refresh_prices()
        self._price_task = asyncio.create_task(self._price_loop())
        self._scheduler_task = asyncio.create_task(self._scan_loop())

    async def stop(self) -> None:
        """Stop new ticks and new positions. In-flight positions run to completion."""
        if not self.enabled:
            logger.debug("Bot already stopped")
            return

        logger.info("Stopping sandwich bot")
        self.enabled = False

        for task in (self._scheduler_task, self._price_task):
            if task and not task.done():
                task.cancel()
        for task in (self._scheduler_task, self._price_task):
            if task:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._scheduler_task = None
        self._price_task = None

        if self.state_machine.in_flight:
            logger.info(f"{self.state_machine.in_flight} position(s) still resolving")

    async def drain(self) -> None:
        """Wait for in-flight ticks and positions."""
        if self._tick_tasks:
            await asyncio.gather(*list(self._tick_tasks), return_exceptions=True)
        await self.state_machine.drain()

    def update_config(self, **changes: Any) -> TradingConfig:
        """Validate and swap in a new trading snapshot. Raises ConfigError."""
        self._trading = self._trading.updated(**changes)
        logger.info(f"Configuration updated: {sorted(changes)}")
        return self._trading

    def enable_live_trading(self, wallet_address: str) -> TradingConfig:
        if not wallet_address:
            raise ValueError("wallet_address is required for live trading")
        self.wallet = WalletState(address=wallet_address, balance=self.wallet.balance, connected=True)
        logger.warning(f"🔴 Live trading enabled for wallet {wallet_address[:8]}...")
        return self.update_config(live_mode=True, wallet_address=wallet_address)

    def disable_live_trading(self) -> TradingConfig:
        logger.info("Live trading disabled, back to demo mode")
        return self.update_config(live_mode=False, wallet_address=None)

    async def connect_wallet(self, provider: WalletProvider) -> WalletState:
        address, balance = await provider.connect()
        self._wallet_provider = provider
        self.wallet = WalletState(address=address, balance=balance, connected=True)
        self.enable_live_trading(address)
        return self.wallet

    async def disconnect_wallet(self) -> None:
        self.disable_live_trading()
        if self._wallet_provider:
            await self._wallet_provider.disconnect()
            self._wallet_provider = None
        self.wallet = WalletState()

    # Scheduling

    async def refresh_prices(self) -> bool:
        symbols = set(self._trading.target_tokens) | {self.config.price.reference_token}
        return await self.prices.refresh(self.price_service, sorted(symbols))

    async def _price_loop(self) -> None:
        while self.enabled:
            await self._sleep(self.config.price.refresh_interval_s)
            if self.enabled:
                await self.refresh_prices()

    async def _scan_loop(self) -> None:
        """Fire a tick every jittered interval. Ticks that find one in flight are skipped."""
        logger.info("Entering scan loop")
        while self.enabled:
            task = asyncio.create_task(self.tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            await self._sleep(self.rng.uniform(self.config.scanner.interval_min_s,
                                               self.config.scanner.interval_max_s))

    async def tick(self) -> Optional[List[Opportunity]]:
        """Run one scan. Returns None when skipped, disabled or aborted."""
        if not self.enabled:
            return None
        if self._scanning:
            self.skipped_ticks += 1
            logger.debug("Previous scan still in flight, skipping tick")
            return None

        self._scanning = True
        now = int(time.time() * 1000)
        try:
            return await self._scan(now)
        except Exception as e:
            logger.error(f"Error scanning for opportunities: {e}")
            return None
        finally:
            self._scanning = False

    async def _scan(self, now: int) -> List[Opportunity]:
        trading = self._trading
        prices = self.prices.snapshot()
        sol_price = self.prices.reference_price

        # Collaborator failures abort here, before anything is mutated
        congestion = await self.price_service.get_congestion_level()

        opportunities = self.scanner.scan(prices, trading)
        self._opportunities.extendleft(reversed(opportunities))

        admitted = 0
        for opportunity in opportunities:
            if not self.enabled:
                logger.info("Bot stopped mid-tick, no new positions")
                break
            ok, reason = self.scanner.check_admission(
                opportunity, trading, self.book.open_count, sol_price
            )
            if not ok:
                logger.debug(f"Skipping {opportunity.id} ({opportunity.token_pair.symbol}): {reason}")
                continue
            logger.info(f"🎯 Admitted {opportunity.token_pair.symbol}: est {opportunity.estimated_profit:.6f} SOL, "
                        f"confidence {opportunity.confidence:.1f}%")
            try:
                self.state_machine.execute(opportunity, trading, sol_price, congestion)
            except DuplicatePositionError as e:
                logger.warning(f"Not executing {opportunity.id}: {e}")
                continue
            admitted += 1

        self._expire_stale(now)
        self.stats_aggregator.on_opportunities_scanned(len(opportunities))

        self.metrics.block_height += 1
        self.metrics.mempool_size = len(opportunities)
        self.metrics.network_congestion = congestion
        self.metrics.avg_gas_price = self.scanner.gas_price(congestion, trading)
        self.metrics.profitable_opportunities = admitted
        self.metrics.last_scan_time = now
        return opportunities

    def _expire_stale(self, now: int) -> None:
        """Mark detected opportunities whose time window has passed as expired."""
        for opportunity in self._opportunities:
            if (opportunity.status == OpportunityStatus.DETECTED
                    and now - opportunity.timestamp > opportunity.time_window_ms):
                opportunity.status = OpportunityStatus.EXPIRED

    def get_status(self) -> Dict[str, Any]:
        """Status summary for presentation layers."""
        stats = self.stats
        return {
            'enabled': self.enabled,
            'scanning': self.is_scanning,
            'mode': 'live' if self._trading.live_mode and self._trading.wallet_address else 'demo',
            'open_positions': self.book.open_count,
            'in_flight': self.state_machine.in_flight,
            'network_congestion': self.metrics.network_congestion.value,
            'block_height': self.metrics.block_height,
            'stats': stats.to_dict(),
        }

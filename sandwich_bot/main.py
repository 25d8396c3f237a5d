"""Main entry point for the sandwich opportunity bot."""

import asyncio
import signal
import sys
import time
from typing import Optional
import click
import yaml
from loguru import logger

from .config import Config, ConfigError, get_config
from .core.engine import SandwichBot
from .core.randomness import PseudoRandomSource
from .core.utils import format_percent, format_sol, format_status_line, format_usd
from .services.simulated import SimulatedPriceService, StaticWalletProvider


def setup_logging(config: Config) -> None:
    """Configure loguru sinks from the logging section."""
    logger.remove()
    logger.add(sys.stderr, level=config.logging.level,
               format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>")
    if config.logging.file:
        logger.add(config.logging.file, level="DEBUG", rotation="10 MB",
                   format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}")


class BotRunner:
    """Runs a :class:`SandwichBot` until a duration elapses or a signal arrives."""

    def __init__(self, config: Config, seed: Optional[int] = None, wallet: Optional[str] = None):
        self.config = config
        rng = PseudoRandomSource(seed)
        self.price_service = SimulatedPriceService(
            config.price.base_prices, config.price.volatility_pct, PseudoRandomSource(seed)
        )
        self.bot = SandwichBot(config, self.price_service, rng=rng)
        self.wallet = StaticWalletProvider(wallet) if wallet else None
        self._stop_event: Optional[asyncio.Event] = None

    def _signal_handler(self):
        """Handle shutdown signals."""
        logger.info("Received shutdown signal, stopping...")
        if self._stop_event:
            self._stop_event.set()

    async def run(self, duration: float = 0.0) -> None:
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._signal_handler)
            except NotImplementedError:
                pass  # Windows

        if self.wallet:
            await self.bot.connect_wallet(self.wallet)

        start = time.time()
        await self.bot.start()
        try:
            while not self._stop_event.is_set():
                timeout = self.config.logging.status_interval_s
                if duration:
                    remaining = duration - (time.time() - start)
                    if remaining <= 0:
                        logger.info("Run duration reached")
                        break
                    timeout = min(timeout, remaining)
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
                except asyncio.TimeoutError:
                    self._log_status()
        finally:
            await self.bot.stop()
            await self.bot.drain()
            if self.wallet:
                await self.bot.disconnect_wallet()
            self._print_summary(time.time() - start)

    def _log_status(self) -> None:
        logger.info(format_status_line(
            self.bot.stats, self.bot.prices.reference_price,
            self.bot.trading.capital, self.bot.book.open_count
        ))

    def _print_summary(self, elapsed: float) -> None:
        stats = self.bot.stats
        sol_price = self.bot.prices.reference_price
        print(f"""
=== SESSION SUMMARY ===
Duration: {elapsed:.1f}s
Opportunities: {stats.total_opportunities}
Executed: {stats.executed_sandwiches} ({stats.successful_sandwiches} successful, {format_percent(stats.success_rate)})
Total profit: {format_sol(stats.total_profit)}
Gas spent: {format_sol(stats.total_gas_spent)}
Net profit: {format_sol(stats.net_profit)} ({format_usd(stats.net_profit * sol_price)})
Avg profit/trade: {format_sol(stats.avg_profit_per_trade)}
""")


@click.group()
def cli():
    """Sandwich Opportunity Bot CLI."""
    pass


@cli.command()
@click.option('--config', 'config_path', type=click.Path(exists=True), default=None,
              help='Path to config file (defaults built in)')
@click.option('--duration', default=0.0, type=float, help='Seconds to run, 0 = until Ctrl-C')
@click.option('--live/--demo', default=False, help='Trading mode (default: demo)')
@click.option('--wallet', help='Wallet address for live mode')
@click.option('--seed', type=int, help='Seed for reproducible runs')
def run(config_path, duration, live, wallet, seed):
    """Run the sandwich bot."""
    try:
        config = get_config(config_path)
    except (ConfigError, FileNotFoundError) as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)

    setup_logging(config)

    if live and not wallet:
        logger.error("Live mode requires --wallet")
        sys.exit(1)
    if not live:
        wallet = None

    runner = BotRunner(config, seed=seed, wallet=wallet)
    try:
        asyncio.run(runner.run(duration))
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error(f"Bot failed: {e}")
        sys.exit(1)


@cli.command('show-config')
@click.option('--config', 'config_path', type=click.Path(exists=True), default=None,
              help='Path to config file (defaults built in)')
def show_config(config_path):
    """Print the effective configuration."""
    try:
        config = get_config(config_path)
    except (ConfigError, FileNotFoundError) as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    click.echo(yaml.safe_dump(config.model_dump(mode="json"), sort_keys=False))


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()

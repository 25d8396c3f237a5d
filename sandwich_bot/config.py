"""Configuration management for the sandwich opportunity bot."""

import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import SandwichBotError


class ConfigError(SandwichBotError, ValueError):
    """Raised when configuration is missing or violates its invariants."""
    pass


def _check_range(name: str, bounds: Tuple[float, float]) -> None:
    low, high = bounds
    if low < 0 or low > high:
        raise ValueError(f"{name} must satisfy 0 <= low <= high")


class TradingConfig(BaseModel):
    """User-facing trading settings, read as an immutable snapshot."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    capital: float = 100.0  # USD
    min_profit_threshold: float = 0.00005  # SOL, after gas
    max_position_size_pct: float = 20.0
    max_gas_price: float = 20000.0  # lamports per compute unit
    slippage_tolerance: float = 1.5
    target_tokens: Tuple[str, ...] = ("SOL", "USDC", "USDT", "RAY", "ORCA", "SRM")
    trading_pairs: Tuple[str, ...] = (
        "SOL/USDC",
        "SOL/USDT",
        "RAY/USDC",
        "ORCA/USDC",
        "SRM/USDC",
        "RAY/SOL",
        "ORCA/SOL",
    )
    live_mode: bool = False
    wallet_address: Optional[str] = None
    max_trade_size: float = 20.0  # USD per trade
    max_loss: float = 0.01  # SOL, worst case per trade

    @field_validator("capital")
    @classmethod
    def _capital_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("capital must be > 0")
        return value

    @field_validator("max_position_size_pct")
    @classmethod
    def _position_pct_in_range(cls, value: float) -> float:
        if not 0 < value <= 100:
            raise ValueError("max_position_size_pct must be in (0, 100]")
        return value

    @field_validator("min_profit_threshold", "max_gas_price", "slippage_tolerance",
                     "max_trade_size", "max_loss")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("thresholds must be >= 0")
        return value

    @field_validator("trading_pairs")
    @classmethod
    def _pairs_well_formed(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        for pair in value:
            if pair.count("/") != 1:
                raise ValueError(f"trading pair {pair!r} must look like BASE/QUOTE")
        return value

    @property
    def position_size(self) -> float:
        """Position size in USD for a single trade."""
        return min(self.capital * self.max_position_size_pct / 100, self.max_trade_size)

    def tradable_pairs(self) -> List[Tuple[str, str]]:
        """Configured pairs whose tokens are both in the target token set."""
        targets = set(self.target_tokens)
        pairs = []
        for pair in self.trading_pairs:
            base, quote = pair.split("/")
            if base in targets and quote in targets:
                pairs.append((base, quote))
        return pairs

    def updated(self, **changes: Any) -> "TradingConfig":
        """Return a validated copy with ``changes`` applied."""
        try:
            return TradingConfig(**{**self.model_dump(), **changes})
        except ValidationError as e:
            raise ConfigError(str(e)) from e


class ScannerConfig(BaseModel):
    """Opportunity scanner configuration."""
    interval_min_s: float = 0.8
    interval_max_s: float = 1.5
    max_candidates: int = 3
    price_impact_pct: Tuple[float, float] = (0.1, 0.9)
    confidence: Tuple[float, float] = (50.0, 75.0)
    notional_usd: Tuple[float, float] = (200.0, 1200.0)
    capture_rate: Tuple[float, float] = (0.15, 0.40)
    max_profit_pct: float = 15.0
    confidence_floor: float = 70.0
    gas_estimate_sol: float = 0.0003
    max_concurrent_positions: int = 2
    max_recent_opportunities: int = 15
    time_window_ms: int = 1000
    program_id: str = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"
    gas_price_by_congestion: Dict[str, float] = Field(default_factory=lambda: {
        "LOW": 5000.0,
        "MEDIUM": 12000.0,
        "HIGH": 25000.0,
    })  # lamports per compute unit

    @model_validator(mode="after")
    def _check_ranges(self) -> "ScannerConfig":
        if self.interval_min_s <= 0 or self.interval_max_s < self.interval_min_s:
            raise ValueError("scanner interval must satisfy 0 < min <= max")
        if self.max_candidates < 1:
            raise ValueError("max_candidates must be >= 1")
        if self.max_concurrent_positions < 1 or self.max_recent_opportunities < 1:
            raise ValueError("max_concurrent_positions and max_recent_opportunities must be >= 1")
        for name in ("price_impact_pct", "confidence", "notional_usd", "capture_rate"):
            _check_range(name, getattr(self, name))
        if self.capture_rate[1] > 1:
            raise ValueError("capture_rate must be within [0, 1]")
        if self.confidence_floor < 0 or self.gas_estimate_sol < 0 or self.time_window_ms < 0:
            raise ValueError("confidence_floor, gas_estimate_sol and time_window_ms must be >= 0")
        if self.max_profit_pct <= 0:
            raise ValueError("max_profit_pct must be > 0")
        missing = {"LOW", "MEDIUM", "HIGH"} - set(self.gas_price_by_congestion)
        if missing:
            raise ValueError(f"gas_price_by_congestion is missing {sorted(missing)}")
        if any(price < 0 for price in self.gas_price_by_congestion.values()):
            raise ValueError("gas prices must be >= 0")
        return self


class ExecutionConfig(BaseModel):
    """Execution state machine configuration."""
    front_run_delay_s: Tuple[float, float] = (0.2, 0.4)
    back_run_delay_s: Tuple[float, float] = (0.8, 1.2)
    demo_base_success_rate: float = 0.75
    live_base_success_rate: float = 0.85
    confidence_bonus: float = 0.2  # Max bonus at confidence 100
    high_congestion_penalty: float = 0.05
    min_success_rate: float = 0.65
    max_success_rate: float = 0.95
    profit_scale: Tuple[float, float] = (0.8, 1.2)
    failure_slippage_max: float = 0.02  # 2% adverse move on failure
    fee_sol: Tuple[float, float] = (0.00008, 0.00013)
    max_recent_positions: int = 50

    @model_validator(mode="after")
    def _check_policy(self) -> "ExecutionConfig":
        for name in ("front_run_delay_s", "back_run_delay_s", "profit_scale", "fee_sol"):
            _check_range(name, getattr(self, name))
        for name in ("demo_base_success_rate", "live_base_success_rate", "min_success_rate", "max_success_rate"):
            if not 0 <= getattr(self, name) <= 1:
                raise ValueError(f"{name} must be within [0, 1]")
        if self.min_success_rate > self.max_success_rate:
            raise ValueError("min_success_rate must be <= max_success_rate")
        if self.confidence_bonus < 0 or self.high_congestion_penalty < 0:
            raise ValueError("confidence_bonus and high_congestion_penalty must be >= 0")
        if not 0 <= self.failure_slippage_max < 1:
            raise ValueError("failure_slippage_max must be within [0, 1)")
        if self.max_recent_positions < 1:
            raise ValueError("max_recent_positions must be >= 1")
        return self


class PriceConfig(BaseModel):
    """Price cache configuration."""
    refresh_interval_s: float = 15.0
    reference_token: str = "SOL"
    fallback_reference_price: float = 150.0
    base_prices: Dict[str, float] = Field(default_factory=lambda: {
        "SOL": 150.0,
        "USDC": 1.0,
        "USDT": 1.0,
        "RAY": 1.8,
        "ORCA": 3.2,
        "SRM": 0.05,
    })
    volatility_pct: float = 0.3

    @field_validator("refresh_interval_s", "fallback_reference_price")
    @classmethod
    def _positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be > 0")
        return value

    @field_validator("volatility_pct")
    @classmethod
    def _volatility_in_range(cls, value: float) -> float:
        if not 0 <= value < 100:
            raise ValueError("volatility_pct must be within [0, 100)")
        return value

    @field_validator("base_prices")
    @classmethod
    def _prices_positive(cls, value: Dict[str, float]) -> Dict[str, float]:
        for symbol, price in value.items():
            if price <= 0:
                raise ValueError(f"base price for {symbol} must be > 0")
        return value


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = "sandwich_bot.log"
    status_interval_s: float = 10.0

    @field_validator("status_interval_s")
    @classmethod
    def _interval_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("status_interval_s must be > 0")
        return value


class Config(BaseModel):
    """Main configuration model."""
    trading: TradingConfig = Field(default_factory=TradingConfig)
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    price: PriceConfig = Field(default_factory=PriceConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def load_from_file(cls, config_path: str = "config.yaml") -> "Config":
        """Load configuration from YAML file with environment variable substitution."""
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        load_dotenv()

        with open(config_path, "r") as f:
            config_str = f.read()

        for key, value in os.environ.items():
            config_str = config_str.replace(f"${{{key}}}", value)

        config_data = yaml.safe_load(config_str) or {}
        try:
            return cls(**config_data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration in {config_path}: {e}") from e


def get_config(config_path: Optional[str] = None) -> Config:
    """Get configuration instance, falling back to defaults without a file."""
    if config_path is None:
        return Config()
    return Config.load_from_file(config_path)

"""
Position, pool and strategy models.

Strategy configuration is a tagged union keyed by strategy type and is
decoded once at the repository boundary so that downstream code never reads
untyped maps.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from ..errors import MalformedDataError


class PositionStatus(str, Enum):
    """Position lifecycle. Positions are never deleted, only closed."""
    ACTIVE = "active"
    CLOSED = "closed"


class StrategyType(str, Enum):
    """Supported strategy kinds."""
    PRECISION_CURVE = "precision_curve"
    VOLATILITY_ADAPTIVE = "volatility_adaptive"


@dataclass(frozen=True)
class PrecisionCurveConfig:
    """Fixed-width precision curve around the market price."""
    range_multiplier: float = 2.0


@dataclass(frozen=True)
class VolatilityAdaptiveConfig:
    """Precision curve widened by observed volatility."""
    range_multiplier: float = 2.0
    volatility_pct: float = 0.0


StrategyConfig = Union[PrecisionCurveConfig, VolatilityAdaptiveConfig]

_STRATEGY_CONFIG_TYPES: dict[StrategyType, type] = {
    StrategyType.PRECISION_CURVE: PrecisionCurveConfig,
    StrategyType.VOLATILITY_ADAPTIVE: VolatilityAdaptiveConfig,
}


def decode_strategy_config(strategy_type: str, raw: Optional[dict[str, Any]]) -> StrategyConfig:
    """
    Decode a stored strategy config for the given strategy type.

    Raises:
        MalformedDataError: unknown strategy type or unexpected config keys
    """
    try:
        kind = StrategyType(strategy_type)
    except ValueError as exc:
        raise MalformedDataError(
            f"Unknown strategy type: {strategy_type}",
            raw_data=str(strategy_type),
            expected_format=", ".join(t.value for t in StrategyType),
        ) from exc

    config_type = _STRATEGY_CONFIG_TYPES[kind]
    try:
        return config_type(**(raw or {}))
    except TypeError as exc:
        raise MalformedDataError(
            f"Invalid config for strategy type {kind.value}: {exc}",
            raw_data=str(raw)[:100],
        ) from exc


def encode_strategy_config(config: StrategyConfig) -> dict[str, Any]:
    """Encode a strategy config for storage."""
    return asdict(config)


@dataclass(frozen=True)
class Strategy:
    """Rebalancing policy attached to a position. Read-only to the engine."""

    id: str
    rebalance_threshold_pct: float = 5.0
    auto_rebalance: bool = True
    mcu_enabled: bool = False
    mcu_bias_factor: float = 1.3
    stop_loss_pct: Optional[float] = None
    take_profit_pct: Optional[float] = None
    strategy_type: StrategyType = StrategyType.PRECISION_CURVE
    config: StrategyConfig = field(default_factory=PrecisionCurveConfig)
    pool_id: Optional[str] = None
    name: Optional[str] = None
    ml_enabled: bool = True
    ml_confidence_threshold: float = 90.0


@dataclass(frozen=True)
class Position:
    """A deployed liquidity range owned by a user."""

    id: str
    pool_id: str
    lower_price: float
    upper_price: float
    liquidity: float
    strategy_id: Optional[str] = None
    status: PositionStatus = PositionStatus.ACTIVE
    entry_price: Optional[float] = None
    user_id: Optional[str] = None
    position_address: Optional[str] = None

    @property
    def reference_entry_price(self) -> float:
        """Price that stop-loss and take-profit are measured against."""
        if self.entry_price is not None:
            return self.entry_price
        return self.lower_price

    def with_range(self, lower_price: float, upper_price: float) -> 'Position':
        """Copy of this position with a new managed range."""
        return Position(
            id=self.id,
            pool_id=self.pool_id,
            lower_price=lower_price,
            upper_price=upper_price,
            liquidity=self.liquidity,
            strategy_id=self.strategy_id,
            status=self.status,
            entry_price=self.entry_price,
            user_id=self.user_id,
            position_address=self.position_address,
        )


@dataclass(frozen=True)
class Pool:
    """AMM pool tracked by the keeper."""

    id: str
    token_a: str
    token_b: str
    active: bool = True
    tvl: Optional[float] = None
    volume_24h: Optional[float] = None
    pool_address: Optional[str] = None

    @property
    def pair_symbol(self) -> str:
        """Exchange ticker for the pair, e.g. SOLUSDC."""
        return f"{self.token_a.upper()}{self.token_b.upper()}"

"""
Domain models module.

Immutable data structures for positions, strategies, precision bins, keeper
jobs and advisory signals. Follows functional programming principles with
frozen dataclasses; updates produce new instances.
"""
from .curve import PriceBin
from .jobs import (
    Job,
    JobRequest,
    JobResult,
    JobStatus,
    JobTrigger,
    JobType,
    RebalanceRecord,
    RebalanceResult,
    decode_job_result,
    encode_job_result,
)
from .positions import (
    Pool,
    Position,
    PositionStatus,
    PrecisionCurveConfig,
    Strategy,
    StrategyConfig,
    StrategyType,
    VolatilityAdaptiveConfig,
    decode_strategy_config,
    encode_strategy_config,
)
from .signals import AdvisorySignal, PoolSnapshot, PricePoint, SignalAction, SignalUrgency

__all__ = [
    "PriceBin",
    "Job",
    "JobRequest",
    "JobResult",
    "JobStatus",
    "JobTrigger",
    "JobType",
    "RebalanceRecord",
    "RebalanceResult",
    "decode_job_result",
    "encode_job_result",
    "Pool",
    "Position",
    "PositionStatus",
    "PrecisionCurveConfig",
    "Strategy",
    "StrategyConfig",
    "StrategyType",
    "VolatilityAdaptiveConfig",
    "decode_strategy_config",
    "encode_strategy_config",
    "AdvisorySignal",
    "PoolSnapshot",
    "PricePoint",
    "SignalAction",
    "SignalUrgency",
]

"""Default configuration parameters for the keeper."""

from dataclasses import dataclass


@dataclass(frozen=True)
class CurveParams:
    """Precision curve tunables."""
    total_bins: int = 69                              # Bins per generated curve
    concentration_factor: float = 2.5                 # Higher = tighter around price


@dataclass(frozen=True)
class MonitorParams:
    """Position monitoring parameters."""
    rebalance_priority: int = 7
    take_profit_priority: int = 8
    stop_loss_priority: int = 10
    max_workers: int = 4                              # Concurrent position evaluations
    price_timeout_seconds: float = 5.0                # Per latest-price read


@dataclass(frozen=True)
class SchedulerParams:
    """Job queue and execution parameters."""
    batch_size: int = 10                              # Max jobs per scheduling pass
    max_retries: int = 3
    max_workers: int = 2                              # Concurrent job executions
    job_timeout_seconds: float = 120.0
    stuck_after_seconds: float = 600.0                # Processing longer than this is failed
    candidate_window: int = 50                        # Pending jobs scanned per pass


@dataclass(frozen=True)
class SignalParams:
    """Advisory signal parameters."""
    enabled: bool = False
    confidence_floor: float = 90.0                    # Discard predictions below this
    min_history: int = 20
    history_limit: int = 100
    max_workers: int = 2
    timeout_seconds: float = 45.0
    base_url: str = "https://openrouter.ai/api/v1"
    primary_model: str = "minimax/minimax-m2.5"
    fallback_model: str = "deepseek/deepseek-chat-v3.1"
    temperature: float = 0.3
    max_tokens: int = 1000


@dataclass(frozen=True)
class PriceFeedParams:
    """External price feed parameters."""
    enabled: bool = False
    base_url: str = "https://api.binance.com/api/v3"
    cache_ttl_seconds: float = 30.0
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class KeeperParams:
    """Cycle driver parameters."""
    interval_seconds: float = 60.0


@dataclass(frozen=True)
class KeeperConfig:
    """Complete keeper configuration."""
    curve: CurveParams
    monitor: MonitorParams
    scheduler: SchedulerParams
    signals: SignalParams
    price_feed: PriceFeedParams
    keeper: KeeperParams


def get_default_config() -> KeeperConfig:
    """Get the default configuration instance."""
    return KeeperConfig(
        curve=CurveParams(),
        monitor=MonitorParams(),
        scheduler=SchedulerParams(),
        signals=SignalParams(),
        price_feed=PriceFeedParams(),
        keeper=KeeperParams(),
    )

"""Advisory signal models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class SignalAction(str, Enum):
    """Actions an advisory source may suggest."""
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"
    REBALANCE = "rebalance"


class SignalUrgency(str, Enum):
    """How soon the advisory source thinks the action matters."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class PricePoint:
    """One recorded pool price."""
    price: float
    timestamp: datetime


@dataclass(frozen=True)
class PoolSnapshot:
    """Input handed to an advisory signal source."""
    pool_id: str
    current_price: float
    volume_24h: float
    liquidity: float
    price_history: tuple[PricePoint, ...]   # newest first

    @property
    def price_change_pct(self) -> float:
        """Change from the oldest to the newest point in the history."""
        oldest = self.price_history[-1].price
        if oldest <= 0:
            return 0.0
        return (self.current_price - oldest) / oldest * 100.0


@dataclass(frozen=True)
class AdvisorySignal:
    """Untrusted hint from an advisory source."""
    action: SignalAction
    confidence: float                # 0-100
    predicted_price: float
    urgency: SignalUrgency
    reasoning: str
    predicted_volatility: Optional[float] = None
    model: Optional[str] = None

"""
Precision curve: Gaussian liquidity distribution over equal-width price bins.

A curve spans [price / m, price * m] for a range multiplier m and places the
bulk of the liquidity in the bins around the price it was generated at.
"""

import math
from typing import Optional, Sequence

from ..config.defaults import CurveParams
from ..errors import InvalidInputError
from ..models.curve import PriceBin
from ..models.positions import Strategy, VolatilityAdaptiveConfig
from .impermanent_loss import calculate_impermanent_loss
from .inputs import require_finite, require_positive_price

ALLOCATION_TOTAL = 100.0
SUM_TOLERANCE = 1e-6


def check_bin_set(bins: Sequence[PriceBin], tolerance: float = SUM_TOLERANCE) -> None:
    """
    Verify that a bin set is index-ordered, contiguous and sums to 100.

    Raises:
        InvalidInputError: the set breaks one of the invariants
    """
    if not bins:
        raise InvalidInputError("Bin set is empty", parameter="bins", value=[])

    for prev, curr in zip(bins, bins[1:]):
        if curr.index <= prev.index:
            raise InvalidInputError(
                "Bins are not index-ordered",
                parameter="bins",
                value=curr.index,
                context={"previous_index": prev.index},
            )
        if not math.isclose(prev.upper_price, curr.lower_price, rel_tol=1e-12, abs_tol=0.0):
            raise InvalidInputError(
                "Bins are not contiguous",
                parameter="bins",
                value=curr.index,
                context={"previous_upper": prev.upper_price, "lower": curr.lower_price},
            )

    total = math.fsum(b.allocation_pct for b in bins)
    if abs(total - ALLOCATION_TOTAL) > tolerance:
        raise InvalidInputError(
            "Bin allocations do not sum to 100",
            parameter="bins",
            value=total,
        )


def _normalize(bins: Sequence[PriceBin]) -> list[PriceBin]:
    """Rescale allocations against their actual sum so they total 100."""
    total = math.fsum(b.allocation_pct for b in bins)
    if total <= 0 or not math.isfinite(total):
        raise InvalidInputError("Bins carry no allocation", parameter="bins", value=total)
    return [b.with_allocation(b.allocation_pct / total * ALLOCATION_TOTAL) for b in bins]


class PrecisionCurve:
    """
    Liquidity allocation model for concentrated positions.

    Only two tunables are held: the number of bins and the concentration
    factor. Every method is a pure function of its arguments.
    """

    def __init__(self, total_bins: int = 69, concentration_factor: float = 2.5) -> None:
        if isinstance(total_bins, bool) or not isinstance(total_bins, int) or total_bins < 2:
            raise InvalidInputError("total_bins must be an integer of at least 2",
                                    parameter="total_bins", value=total_bins)
        concentration_factor = require_finite("concentration_factor", concentration_factor)
        if concentration_factor <= 0:
            raise InvalidInputError("concentration_factor must be positive",
                                    parameter="concentration_factor",
                                    value=concentration_factor)

        self.total_bins = total_bins
        self.concentration_factor = concentration_factor

    @classmethod
    def from_params(cls, params: CurveParams) -> "PrecisionCurve":
        """Build a curve engine from configuration."""
        return cls(total_bins=params.total_bins,
                   concentration_factor=params.concentration_factor)

    @property
    def center_bin(self) -> int:
        return self.total_bins // 2

    def generate_bins(self, current_price: float, range_multiplier: float = 2.0) -> list[PriceBin]:
        """
        Generate a precision curve centred on current_price.

        weight(i) = exp(-(|i - center| / (total_bins / 4))^2 * concentration)

        Args:
            current_price: Price the curve is centred on
            range_multiplier: Curve spans [price / m, price * m]; must exceed 1

        Returns:
            total_bins contiguous, index-ordered bins summing to 100
        """
        current_price = require_positive_price("current_price", current_price)
        range_multiplier = require_finite("range_multiplier", range_multiplier)
        if range_multiplier <= 1:
            raise InvalidInputError("range_multiplier must be greater than 1",
                                    parameter="range_multiplier", value=range_multiplier)

        min_price = current_price / range_multiplier
        max_price = current_price * range_multiplier
        price_step = (max_price - min_price) / self.total_bins
        spread = self.total_bins / 4

        weights = [
            math.exp(-((abs(i - self.center_bin) / spread) ** 2) * self.concentration_factor)
            for i in range(self.total_bins)
        ]
        total_weight = math.fsum(weights)

        # Last edge pinned to max_price; each lower edge reuses the previous upper.
        edges = [min_price + i * price_step for i in range(self.total_bins)] + [max_price]

        return [
            PriceBin(
                index=i,
                lower_price=edges[i],
                upper_price=edges[i + 1],
                allocation_pct=weights[i] / total_weight * ALLOCATION_TOTAL,
            )
            for i in range(self.total_bins)
        ]

    def active_allocation_pct(self, current_price: float, bins: Sequence[PriceBin]) -> float:
        """Share of the total allocation held by bins containing current_price."""
        current_price = require_positive_price("current_price", current_price)
        if not bins:
            raise InvalidInputError("Bin set is empty", parameter="bins", value=[])

        total = math.fsum(b.allocation_pct for b in bins)
        if total <= 0:
            raise InvalidInputError("Bins carry no allocation", parameter="bins", value=total)
        active = math.fsum(b.allocation_pct for b in bins if b.contains(current_price))
        return active / total * ALLOCATION_TOTAL

    def should_rebalance(
        self,
        current_price: float,
        active_bins: Sequence[PriceBin],
        threshold_pct: float = 5.0
    ) -> bool:
        """
        Decide whether a position's curve no longer covers the market.

        True when there are no bins, when the price is outside every bin, or
        when the bins containing the price hold less than threshold_pct of the
        allocation.
        """
        current_price = require_positive_price("current_price", current_price)

        if not active_bins:
            return True

        if not any(b.contains(current_price) for b in active_bins):
            # Price has left the managed range
            return True

        threshold_pct = require_finite("threshold_pct", threshold_pct)
        return self.active_allocation_pct(current_price, active_bins) < threshold_pct

    def calculate_impermanent_loss(
        self,
        entry_price: float,
        current_price: float,
        lower_price: float,
        upper_price: float
    ) -> float:
        """See curve.impermanent_loss.calculate_impermanent_loss."""
        return calculate_impermanent_loss(entry_price, current_price, lower_price, upper_price)

    def apply_mcu_bias(self, bins: Sequence[PriceBin], bias_factor: float = 1.3) -> list[PriceBin]:
        """
        Skew allocation toward higher prices (market-cap up-only bias).

        Bins above the centre are boosted by
        1 + (distance / bin_count) * (bias_factor - 1); the whole set is then
        renormalised to 100.

        Raises:
            InvalidInputError: empty set or bias_factor below 1
        """
        if not bins:
            raise InvalidInputError("Bin set is empty", parameter="bins", value=[])
        bias_factor = require_finite("bias_factor", bias_factor)
        if bias_factor < 1:
            raise InvalidInputError("bias_factor must be at least 1",
                                    parameter="bias_factor", value=bias_factor)

        ordered = sorted(bins, key=lambda b: b.index)
        count = len(ordered)
        center = count // 2

        boosted = []
        for position, price_bin in enumerate(ordered):
            if position > center:
                distance = position - center
                boost = 1 + (distance / count) * (bias_factor - 1)
                boosted.append(price_bin.with_allocation(price_bin.allocation_pct * boost))
            else:
                boosted.append(price_bin)

        return _normalize(boosted)

    def adjust_for_volatility(
        self,
        bins: Sequence[PriceBin],
        volatility_pct: float,
        current_price: Optional[float] = None
    ) -> list[PriceBin]:
        """
        Regenerate a curve whose width grows with volatility.

        range_multiplier = (1 + volatility_pct / 100) * 2.0

        The new curve is anchored on current_price. Without one, the anchor is
        the geometric midpoint of the existing set, which is exactly the price
        a generated set was centred on.
        """
        if not bins:
            raise InvalidInputError("Bin set is empty", parameter="bins", value=[])
        volatility_pct = require_finite("volatility_pct", volatility_pct, minimum=0.0)

        if current_price is None:
            ordered = sorted(bins, key=lambda b: b.index)
            anchor = math.sqrt(ordered[0].lower_price * ordered[-1].upper_price)
        else:
            anchor = current_price

        range_multiplier = (1 + volatility_pct / 100) * 2.0
        return self.generate_bins(anchor, range_multiplier)

    def curve_for_strategy(self, strategy: Strategy, current_price: float) -> list[PriceBin]:
        """
        Build the curve a strategy wants at current_price.

        Volatility-adaptive strategies widen the base curve, and MCU-enabled
        strategies get the up-only bias on top.
        """
        config = strategy.config
        bins = self.generate_bins(current_price, config.range_multiplier)

        if isinstance(config, VolatilityAdaptiveConfig) and config.volatility_pct > 0:
            bins = self.adjust_for_volatility(bins, config.volatility_pct, current_price)

        if strategy.mcu_enabled:
            bins = self.apply_mcu_bias(bins, strategy.mcu_bias_factor)

        return bins

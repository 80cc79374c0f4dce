"""Precision curve bin model."""

from dataclasses import dataclass


@dataclass(frozen=True)
class PriceBin:
    """
    One contiguous price sub-range of a precision curve.

    A generated set is index-ordered, contiguous and its allocations sum to
    100. Sets are never edited in place; regeneration yields a new set.
    """

    index: int
    lower_price: float
    upper_price: float
    allocation_pct: float

    def contains(self, price: float) -> bool:
        """Closed-interval membership test."""
        return self.lower_price <= price <= self.upper_price

    def with_allocation(self, allocation_pct: float) -> 'PriceBin':
        """Copy of this bin with a different allocation."""
        return PriceBin(
            index=self.index,
            lower_price=self.lower_price,
            upper_price=self.upper_price,
            allocation_pct=allocation_pct,
        )

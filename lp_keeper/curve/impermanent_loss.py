"""Impermanent loss estimation for a ranged liquidity position."""

import math

from ..errors import InvalidInputError
from .inputs import require_positive_price

OUT_OF_RANGE_LOSS_PCT = 100.0


def calculate_impermanent_loss(
    entry_price: float,
    current_price: float,
    lower_price: float,
    upper_price: float
) -> float:
    """
    Estimate impermanent loss as a percentage.

    IL = |2 * sqrt(r) / (1 + r) - 1| * 100,  r = current / entry

    This is the constant-product formula applied to a concentrated position,
    which understates the real loss inside a narrow range. A price outside
    [lower_price, upper_price] leaves the position holding a single asset and
    is reported as the worst case, 100.

    Args:
        entry_price: Price the position was opened at
        current_price: Current market price
        lower_price: Lower bound of the position range
        upper_price: Upper bound of the position range

    Returns:
        Impermanent loss percentage

    Raises:
        InvalidInputError: non-positive prices or an inverted range
    """
    entry_price = require_positive_price("entry_price", entry_price)
    current_price = require_positive_price("current_price", current_price)
    lower_price = require_positive_price("lower_price", lower_price)
    upper_price = require_positive_price("upper_price", upper_price)

    if lower_price > upper_price:
        raise InvalidInputError(
            "lower_price must not exceed upper_price",
            parameter="lower_price",
            value=lower_price,
            context={"upper_price": upper_price},
        )

    if current_price < lower_price or current_price > upper_price:
        return OUT_OF_RANGE_LOSS_PCT

    ratio = current_price / entry_price
    il = (2 * math.sqrt(ratio)) / (1 + ratio) - 1
    return abs(il) * 100.0

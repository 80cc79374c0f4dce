"""Argument checks shared by the curve functions."""

import math
from typing import Any

from ..errors import InvalidInputError


def require_positive_price(name: str, value: Any) -> float:
    """Reject non-numeric, non-finite and non-positive prices."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInputError(f"{name} must be a number", parameter=name, value=value)
    if not math.isfinite(value) or value <= 0:
        raise InvalidInputError(f"{name} must be a positive finite number",
                                parameter=name, value=value)
    return float(value)


def require_finite(name: str, value: Any, minimum: float = -math.inf,
                   maximum: float = math.inf) -> float:
    """Reject non-finite numbers and numbers outside [minimum, maximum]."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidInputError(f"{name} must be a number", parameter=name, value=value)
    if not math.isfinite(value) or value < minimum or value > maximum:
        raise InvalidInputError(
            f"{name} must be a finite number in [{minimum}, {maximum}]",
            parameter=name, value=value,
        )
    return float(value)

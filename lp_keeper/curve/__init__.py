"""
Precision curve engine.

Pure, stateless liquidity-distribution math: bin generation, rebalance
decisions, impermanent loss, MCU bias and volatility adjustment. No I/O.
"""
from .impermanent_loss import calculate_impermanent_loss
from .precision import PrecisionCurve, check_bin_set

__all__ = ["PrecisionCurve", "calculate_impermanent_loss", "check_bin_set"]

"""
Error classification system for the rebalancing engine.

This module provides the structured exception hierarchy used to decide how
far a failure propagates: a single position, a single job, or the whole
keeper cycle.
"""

from .data_quality import (
    DataQualityError,
    InvalidInputError,
    DataUnavailableError,
    MalformedDataError,
)
from .system_failures import (
    SystemFailureError,
    FatalInfrastructureError,
    PersistenceError,
    StateTransitionError,
    CycleInProgressError,
)
from .recovery import (
    RecoverableError,
    UnrecoverableError,
    GracefulDegradationError,
    ExecutionFailureError,
    AdvisoryUnavailableError,
)

__all__ = [
    # Data Quality Errors
    "DataQualityError",
    "InvalidInputError",
    "DataUnavailableError",
    "MalformedDataError",
    # System Failures
    "SystemFailureError",
    "FatalInfrastructureError",
    "PersistenceError",
    "StateTransitionError",
    "CycleInProgressError",
    # Recovery Categories
    "RecoverableError",
    "UnrecoverableError",
    "GracefulDegradationError",
    "ExecutionFailureError",
    "AdvisoryUnavailableError",
]

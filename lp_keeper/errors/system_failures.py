"""
System failure error classifications.

These exceptions represent failures of the infrastructure the keeper runs
on. A fatal infrastructure failure aborts the current cycle and is reported
at the process boundary.
"""

from typing import Optional, Dict, Any


class SystemFailureError(Exception):
    """Base class for unrecoverable system failures."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
        self.recoverable = False


class FatalInfrastructureError(SystemFailureError):
    """Repository or other core infrastructure is unreachable."""


class PersistenceError(FatalInfrastructureError):
    """Database read or write failure."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 target: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.target = target


class StateTransitionError(SystemFailureError):
    """Job state change not permitted by the job state machine."""

    def __init__(self, message: str, current_state: Optional[str] = None,
                 attempted_transition: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.current_state = current_state
        self.attempted_transition = attempted_transition


class CycleInProgressError(SystemFailureError):
    """A keeper cycle was started while another one is still running."""

    def __init__(self, message: str, started_at: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.started_at = started_at

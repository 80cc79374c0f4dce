"""
Recovery strategy classifications for error handling.

These classes group errors by how the keeper recovers from them: retried
on a later cycle, left for manual review, or tolerated with reduced
functionality.
"""

from typing import Optional


class RecoverableError(Exception):
    """Errors that can be recovered from automatically."""

    def __init__(self, message: str, retry_count: int = 0,
                 max_retries: int = 3, **kwargs):
        super().__init__(message)
        self.retry_count = retry_count
        self.max_retries = max_retries
        self.recoverable = True


class UnrecoverableError(Exception):
    """Errors that require human intervention."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message)
        self.recoverable = False


class GracefulDegradationError(Exception):
    """Errors that allow continued operation with reduced functionality."""

    def __init__(self, message: str, degraded_functionality: Optional[str] = None,
                 fallback_strategy: Optional[str] = None, **kwargs):
        super().__init__(message)
        self.degraded_functionality = degraded_functionality
        self.fallback_strategy = fallback_strategy
        self.allows_degradation = True


class ExecutionFailureError(RecoverableError):
    """A job executor raised or timed out. Recorded on the job and retried."""

    def __init__(self, message: str, job_id: Optional[str] = None,
                 timed_out: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.job_id = job_id
        self.timed_out = timed_out


class AdvisoryUnavailableError(GracefulDegradationError):
    """Advisory signal source failed or returned an unusable answer."""

    def __init__(self, message: str, pool_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("degraded_functionality", "advisory_signals")
        kwargs.setdefault("fallback_strategy", "skip_pool")
        super().__init__(message, **kwargs)
        self.pool_id = pool_id

"""
Timeout wrapper for calls into external collaborators.

Price reads, advisory model calls and job executors all run through
call_with_timeout so that no cycle blocks indefinitely on a single item.
"""

from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import Any, Callable, Optional, TypeVar

T = TypeVar("T")


class CallTimeout(Exception):
    """
    Raised when an external call does not return within its timeout.

    `future` is the call still running in the background, if the caller
    needs to know when it finally finishes.
    """

    def __init__(self, message: str, timeout_seconds: float,
                 future: Optional[Future] = None):
        super().__init__(message)
        self.timeout_seconds = timeout_seconds
        self.future = future


def call_with_timeout(func: Callable[..., T], timeout_seconds: float,
                      *args: Any, **kwargs: Any) -> T:
    """
    Execute a function with a timeout.

    The function runs on a dedicated worker thread. If it overruns, CallTimeout
    is raised to the caller while the worker is left to finish in the
    background; its result is discarded.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="lp-keeper-call")
    future = executor.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout_seconds)
    except FuturesTimeoutError as exc:
        raise CallTimeout(
            f"Call timed out after {timeout_seconds}s",
            timeout_seconds=timeout_seconds,
            future=future,
        ) from exc
    finally:
        executor.shutdown(wait=False)

"""
Keeper job models.

A job is the only mutable coordination object in the engine. Instances are
frozen; the scheduler produces updated copies through with_patch and the
repository persists them with an atomic compare-and-set on status.
"""

import uuid
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from ..errors import MalformedDataError
from ..utils.time import utc_now


class JobType(str, Enum):
    """Kinds of scheduled work. Each has its own executor."""
    REBALANCE = "rebalance"


class JobTrigger(str, Enum):
    """Why the job was requested."""
    RANGE_DRIFT = "range_drift"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"
    MANUAL = "manual"


class JobStatus(str, Enum):
    """Job lifecycle states."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class RebalanceResult:
    """Outcome payload of a rebalance job."""
    new_lower_price: float
    new_upper_price: float
    bins_count: int
    tx_signature: Optional[str] = None
    dry_run: bool = True
    kind: str = "rebalance"


JobResult = Union[RebalanceResult]

_RESULT_TYPES: dict[str, type] = {
    "rebalance": RebalanceResult,
}


def encode_job_result(result: Optional[JobResult]) -> Optional[dict[str, Any]]:
    """Encode a job result for storage; the 'kind' key tags the variant."""
    if result is None:
        return None
    return asdict(result)


def decode_job_result(raw: Optional[dict[str, Any]]) -> Optional[JobResult]:
    """
    Decode a stored job result payload.

    Raises:
        MalformedDataError: missing or unknown 'kind' tag, or bad fields
    """
    if raw is None:
        return None
    kind = raw.get("kind")
    result_type = _RESULT_TYPES.get(kind) if isinstance(kind, str) else None
    if result_type is None:
        raise MalformedDataError(
            f"Unknown job result kind: {kind!r}",
            raw_data=str(raw)[:100],
            expected_format=", ".join(_RESULT_TYPES),
        )
    try:
        return result_type(**raw)
    except TypeError as exc:
        raise MalformedDataError(
            f"Invalid {kind} job result: {exc}",
            raw_data=str(raw)[:100],
        ) from exc


@dataclass(frozen=True)
class JobRequest:
    """What the position monitor asks the queue for."""
    job_type: JobType
    trigger: JobTrigger
    position_id: str
    strategy_id: Optional[str]
    priority: int

    def dedupe_key(self) -> tuple[str, str, str]:
        """Requests with the same key collapse onto one open job."""
        return (self.position_id, self.job_type.value, self.trigger.value)


@dataclass(frozen=True)
class Job:
    """Unit of scheduled work."""

    id: str
    job_type: JobType
    position_id: str
    strategy_id: Optional[str]
    priority: int
    trigger: JobTrigger = JobTrigger.MANUAL
    status: JobStatus = JobStatus.PENDING
    retry_count: int = 0
    max_retries: int = 3
    created_at: datetime = None  # type: ignore[assignment]
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    result: Optional[JobResult] = None

    def __post_init__(self) -> None:
        if self.created_at is None:
            object.__setattr__(self, "created_at", utc_now())

    @classmethod
    def from_request(cls, request: JobRequest, max_retries: int,
                     created_at: Optional[datetime] = None) -> 'Job':
        """Build a new pending job for a monitor request."""
        return cls(
            id=uuid.uuid4().hex,
            job_type=request.job_type,
            trigger=request.trigger,
            position_id=request.position_id,
            strategy_id=request.strategy_id,
            priority=request.priority,
            max_retries=max_retries,
            created_at=created_at or utc_now(),
        )

    @property
    def is_open(self) -> bool:
        """Pending or processing."""
        return self.status in (JobStatus.PENDING, JobStatus.PROCESSING)

    @property
    def is_retriable(self) -> bool:
        """Failed with retries left."""
        return self.status == JobStatus.FAILED and self.retry_count < self.max_retries

    def dedupe_key(self) -> tuple[str, str, str]:
        return (self.position_id, self.job_type.value, self.trigger.value)

    def with_patch(self, patch: dict[str, Any]) -> 'Job':
        """
        Copy of this job with the given fields replaced.

        Raises:
            MalformedDataError: patch names a field the job does not have
        """
        known = {f.name for f in fields(self)}
        invalid = (set(patch) - known) | ({"id"} & set(patch))
        if invalid:
            raise MalformedDataError(
                f"Invalid job patch fields: {sorted(invalid)}",
                context={"job_id": self.id},
            )
        return replace(self, **patch)


@dataclass(frozen=True)
class RebalanceRecord:
    """Audit row describing one executed rebalance."""
    position_id: str
    strategy_id: Optional[str]
    job_id: Optional[str]
    trigger: JobTrigger
    old_lower_price: float
    old_upper_price: float
    new_lower_price: float
    new_upper_price: float
    success: bool
    tx_signature: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = None  # type: ignore[assignment]

    def __post_init__(self) -> None:
        if self.created_at is None:
            object.__setattr__(self, "created_at", utc_now())

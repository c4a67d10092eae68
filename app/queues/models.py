"""Job queue data types."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.utils.helpers import utcnow


class JobStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"


class BackoffPolicy(BaseModel):
    """Retry delay policy: ``exponential`` doubles ``delay_ms`` per attempt."""

    type: str = "exponential"  # exponential or fixed
    delay_ms: int = 2000

    def delay_for(self, attempts_made: int) -> timedelta:
        if self.type == "fixed":
            return timedelta(milliseconds=self.delay_ms)
        exponent = max(attempts_made - 1, 0)
        return timedelta(milliseconds=self.delay_ms * (2 ** exponent))


class JobOptions(BaseModel):
    attempts: int = Field(default=3, ge=1)
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    delay_ms: int = Field(default=0, ge=0)
    remove_on_complete: int = Field(default=100, ge=0)
    remove_on_fail: int = Field(default=500, ge=0)
    job_id: Optional[str] = None  # caller-supplied id deduplicates


class Job(BaseModel):
    """A unit of work stored by a queue backend."""

    id: str
    queue_name: str
    name: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.WAITING
    attempts_made: int = 0
    max_attempts: int = 3
    backoff: BackoffPolicy = Field(default_factory=BackoffPolicy)
    remove_on_complete: int = 100
    remove_on_fail: int = 500
    progress: int = 0
    result: Optional[Any] = None
    failure_reason: Optional[str] = None
    stacktrace: List[str] = Field(default_factory=list)
    stalled_count: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    run_at: Optional[datetime] = None
    lock_token: Optional[str] = None
    lock_expires_at: Optional[datetime] = None

    @property
    def attempts_remaining(self) -> int:
        return max(self.max_attempts - self.attempts_made, 0)

    def summary(self) -> Dict[str, Any]:
        """Operator-facing view without lock internals."""
        return self.model_dump(mode="json", exclude={"lock_token", "backoff"})


class QueueCounts(BaseModel):
    waiting: int = 0
    active: int = 0
    delayed: int = 0
    completed: int = 0
    failed: int = 0

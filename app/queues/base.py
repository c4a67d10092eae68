"""Job queue contract shared by the in-memory and Redis backends."""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from app.core.exceptions import JobLockError
from app.queues.models import Job, JobOptions, JobStatus, QueueCounts

STALLED_REASON = "job stalled more than allowable limit"


class JobQueue(ABC):
    """
    A named queue of jobs with at-least-once delivery.

    Lifecycle: waiting -> active -> completed | failed, with
    active -> delayed -> waiting on a retryable failure and
    active -> waiting when a lock expires (stalled job reclaim).
    """

    def __init__(self, name: str, default_options: Optional[JobOptions] = None):
        self.name = name
        self.default_options = default_options or JobOptions()

    # --- producer ---------------------------------------------------------

    @abstractmethod
    async def enqueue(
        self, name: str, payload: Dict[str, Any], options: Optional[JobOptions] = None
    ) -> Job:
        """Add a job; a duplicate ``options.job_id`` returns the existing job."""

    # --- consumer ---------------------------------------------------------

    @abstractmethod
    async def claim(self, lock_duration_ms: int) -> Optional[Job]:
        """Take the oldest waiting job and lock it, or return None."""

    @abstractmethod
    async def extend_lock(self, job: Job, lock_duration_ms: int) -> bool:
        """Renew the lock; False when the job is no longer held by this token."""

    @abstractmethod
    async def update_progress(self, job: Job, progress: int) -> bool:
        """Record progress (0-100); False when the lock was lost."""

    @abstractmethod
    async def complete(self, job: Job, result: Any = None) -> Job:
        """Mark an active job completed."""

    @abstractmethod
    async def fail(
        self,
        job: Job,
        error: str,
        retryable: bool = True,
        stacktrace: Optional[str] = None,
    ) -> Job:
        """Record a failed attempt: delayed for retry, or failed when exhausted."""

    # --- inspection -------------------------------------------------------

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    async def get_counts(self) -> QueueCounts:
        ...

    @abstractmethod
    async def list_jobs(
        self, states: Iterable[JobStatus], offset: int = 0, limit: int = 20
    ) -> List[Job]:
        """Jobs in the given states, newest first."""

    # --- operator actions -------------------------------------------------

    @abstractmethod
    async def promote(self, job_id: str) -> Job:
        """Move a delayed job to waiting immediately."""

    @abstractmethod
    async def remove(self, job_id: str) -> None:
        """Delete a job that is not active."""

    @abstractmethod
    async def retry(self, job_id: str) -> Job:
        """Requeue a failed job with its attempts reset."""

    # --- maintenance ------------------------------------------------------

    @abstractmethod
    async def promote_due_jobs(self, now: Optional[datetime] = None) -> int:
        """Move delayed jobs whose run_at has passed to waiting."""

    @abstractmethod
    async def requeue_stalled(
        self, now: Optional[datetime] = None, max_stalled_count: int = 1
    ) -> int:
        """Reclaim active jobs whose lock expired."""

    async def close(self) -> None:
        return None

    # --- shared state transitions ----------------------------------------

    def resolve_options(self, options: Optional[JobOptions]) -> JobOptions:
        return options or self.default_options

    def build_job(
        self, job_id: str, name: str, payload: Dict[str, Any], options: JobOptions, now: datetime
    ) -> Job:
        delayed = options.delay_ms > 0
        return Job(
            id=job_id,
            queue_name=self.name,
            name=name,
            payload=payload,
            status=JobStatus.DELAYED if delayed else JobStatus.WAITING,
            max_attempts=options.attempts,
            backoff=options.backoff,
            remove_on_complete=options.remove_on_complete,
            remove_on_fail=options.remove_on_fail,
            created_at=now,
            run_at=now + timedelta(milliseconds=options.delay_ms) if delayed else None,
        )


def apply_claim(job: Job, lock_duration_ms: int, now: datetime) -> Job:
    job.status = JobStatus.ACTIVE
    job.attempts_made += 1
    job.processed_at = now
    job.run_at = None
    job.lock_token = uuid.uuid4().hex
    job.lock_expires_at = now + timedelta(milliseconds=lock_duration_ms)
    return job


def check_lock(stored: Optional[Job], job: Job) -> Job:
    if stored is None or stored.status != JobStatus.ACTIVE or stored.lock_token != job.lock_token:
        raise JobLockError(
            f"Lock for job {job.id} is no longer held",
            {"job_id": job.id, "queue": job.queue_name},
        )
    return stored


def apply_completion(job: Job, result: Any, now: datetime) -> Job:
    job.status = JobStatus.COMPLETED
    job.result = result
    job.progress = 100
    job.finished_at = now
    job.lock_token = None
    job.lock_expires_at = None
    return job


def apply_failure(
    job: Job, error: str, retryable: bool, now: datetime, stacktrace: Optional[str] = None
) -> Job:
    job.failure_reason = error
    if stacktrace:
        job.stacktrace = (job.stacktrace + [stacktrace])[-job.max_attempts:]
    job.lock_token = None
    job.lock_expires_at = None

    if retryable and job.attempts_made < job.max_attempts:
        job.status = JobStatus.DELAYED
        job.run_at = now + job.backoff.delay_for(job.attempts_made)
    else:
        job.status = JobStatus.FAILED
        job.finished_at = now
    return job


def apply_stall(job: Job, max_stalled_count: int, now: datetime) -> Job:
    job.stalled_count += 1
    job.lock_token = None
    job.lock_expires_at = None
    if job.stalled_count > max_stalled_count:
        job.status = JobStatus.FAILED
        job.failure_reason = STALLED_REASON
        job.finished_at = now
    else:
        # The interrupted attempt never finished
        job.attempts_made = max(job.attempts_made - 1, 0)
        job.status = JobStatus.WAITING
    return job


def apply_manual_retry(job: Job) -> Job:
    job.status = JobStatus.WAITING
    job.attempts_made = 0
    job.stalled_count = 0
    job.progress = 0
    job.failure_reason = None
    job.finished_at = None
    job.run_at = None
    return job


def newest_first(jobs: Iterable[Job]) -> List[Job]:
    def order_key(job: Job):
        stamp = job.finished_at or job.processed_at or job.created_at
        seq = int(job.id) if job.id.isdigit() else 0
        return (stamp, seq)

    return sorted(jobs, key=order_key, reverse=True)


def apply_lock_extension(job: Job, lock_duration_ms: int, now: datetime) -> Job:
    job.lock_expires_at = now + timedelta(milliseconds=lock_duration_ms)
    return job

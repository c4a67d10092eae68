"""In-process queue backend for local development and tests."""

import itertools
import threading
from collections import deque
from typing import Any, Deque, Dict, Iterable, List, Optional

from app.core.exceptions import JobNotFoundError, JobStateError
from app.queues.base import (
    JobQueue,
    apply_claim,
    apply_completion,
    apply_failure,
    apply_lock_extension,
    apply_manual_retry,
    apply_stall,
    check_lock,
    newest_first,
)
from app.queues.models import Job, JobOptions, JobStatus, QueueCounts
from app.utils.helpers import utcnow


class InMemoryJobQueue(JobQueue):
    """
    Queue state kept in process memory.

    All mutations happen under one lock with no awaits inside, so the
    backend is safe to share between event loops and threads.
    """

    def __init__(self, name: str, default_options: Optional[JobOptions] = None):
        super().__init__(name, default_options)
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._jobs: Dict[str, Job] = {}
        self._waiting: Deque[str] = deque()
        self._finished: Dict[JobStatus, Deque[str]] = {
            JobStatus.COMPLETED: deque(),
            JobStatus.FAILED: deque(),
        }

    def _copy(self, job: Job) -> Job:
        return job.model_copy(deep=True)

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found", {"queue": self.name})
        return job

    def _detach(self, job: Job) -> None:
        if job.status == JobStatus.WAITING and job.id in self._waiting:
            self._waiting.remove(job.id)
        elif job.status in self._finished and job.id in self._finished[job.status]:
            self._finished[job.status].remove(job.id)

    def _trim(self, status: JobStatus, keep: int) -> None:
        ids = self._finished[status]
        while len(ids) > keep:
            self._jobs.pop(ids.popleft(), None)

    async def enqueue(
        self, name: str, payload: Dict[str, Any], options: Optional[JobOptions] = None
    ) -> Job:
        options = self.resolve_options(options)
        with self._lock:
            if options.job_id and options.job_id in self._jobs:
                return self._copy(self._jobs[options.job_id])

            job_id = options.job_id or str(next(self._ids))
            job = self.build_job(job_id, name, payload, options, utcnow())
            self._jobs[job_id] = job
            if job.status == JobStatus.WAITING:
                self._waiting.append(job_id)
            return self._copy(job)

    async def claim(self, lock_duration_ms: int) -> Optional[Job]:
        with self._lock:
            if not self._waiting:
                return None
            job = self._jobs[self._waiting.popleft()]
            apply_claim(job, lock_duration_ms, utcnow())
            return self._copy(job)

    async def extend_lock(self, job: Job, lock_duration_ms: int) -> bool:
        with self._lock:
            stored = self._jobs.get(job.id)
            if stored is None or stored.lock_token != job.lock_token or stored.status != JobStatus.ACTIVE:
                return False
            apply_lock_extension(stored, lock_duration_ms, utcnow())
            job.lock_expires_at = stored.lock_expires_at
            return True

    async def update_progress(self, job: Job, progress: int) -> bool:
        with self._lock:
            stored = self._jobs.get(job.id)
            if stored is None or stored.lock_token != job.lock_token:
                return False
            stored.progress = job.progress = max(0, min(100, int(progress)))
            return True

    async def complete(self, job: Job, result: Any = None) -> Job:
        with self._lock:
            stored = check_lock(self._jobs.get(job.id), job)
            apply_completion(stored, result, utcnow())
            self._finished[JobStatus.COMPLETED].append(stored.id)
            self._trim(JobStatus.COMPLETED, stored.remove_on_complete)
            return self._copy(stored)

    async def fail(
        self,
        job: Job,
        error: str,
        retryable: bool = True,
        stacktrace: Optional[str] = None,
    ) -> Job:
        with self._lock:
            stored = check_lock(self._jobs.get(job.id), job)
            apply_failure(stored, error, retryable, utcnow(), stacktrace)
            if stored.status == JobStatus.FAILED:
                self._finished[JobStatus.FAILED].append(stored.id)
                self._trim(JobStatus.FAILED, stored.remove_on_fail)
            return self._copy(stored)

    async def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return self._copy(job) if job else None

    async def get_counts(self) -> QueueCounts:
        with self._lock:
            counts = QueueCounts()
            for job in self._jobs.values():
                setattr(counts, job.status.value, getattr(counts, job.status.value) + 1)
            return counts

    async def list_jobs(
        self, states: Iterable[JobStatus], offset: int = 0, limit: int = 20
    ) -> List[Job]:
        wanted = set(states)
        with self._lock:
            jobs = [self._copy(job) for job in self._jobs.values() if job.status in wanted]
        return newest_first(jobs)[offset : offset + limit]

    async def promote(self, job_id: str) -> Job:
        with self._lock:
            job = self._require(job_id)
            if job.status != JobStatus.DELAYED:
                raise JobStateError(
                    f"Job {job_id} is {job.status.value}, only delayed jobs can be promoted"
                )
            job.status = JobStatus.WAITING
            job.run_at = None
            self._waiting.append(job_id)
            return self._copy(job)

    async def remove(self, job_id: str) -> None:
        with self._lock:
            job = self._require(job_id)
            if job.status == JobStatus.ACTIVE:
                raise JobStateError(f"Job {job_id} is active and cannot be removed")
            self._detach(job)
            del self._jobs[job_id]

    async def retry(self, job_id: str) -> Job:
        with self._lock:
            job = self._require(job_id)
            if job.status != JobStatus.FAILED:
                raise JobStateError(
                    f"Job {job_id} is {job.status.value}, only failed jobs can be retried"
                )
            self._detach(job)
            apply_manual_retry(job)
            self._waiting.append(job_id)
            return self._copy(job)

    async def promote_due_jobs(self, now=None) -> int:
        now = now or utcnow()
        with self._lock:
            due = [
                job
                for job in self._jobs.values()
                if job.status == JobStatus.DELAYED and job.run_at is not None and job.run_at <= now
            ]
            for job in sorted(due, key=lambda j: j.run_at):
                job.status = JobStatus.WAITING
                job.run_at = None
                self._waiting.append(job.id)
            return len(due)

    async def requeue_stalled(self, now=None, max_stalled_count: int = 1) -> int:
        now = now or utcnow()
        with self._lock:
            stalled = [
                job
                for job in self._jobs.values()
                if job.status == JobStatus.ACTIVE
                and job.lock_expires_at is not None
                and job.lock_expires_at <= now
            ]
            for job in stalled:
                apply_stall(job, max_stalled_count, now)
                if job.status == JobStatus.WAITING:
                    self._waiting.appendleft(job.id)
                else:
                    self._finished[JobStatus.FAILED].append(job.id)
                    self._trim(JobStatus.FAILED, job.remove_on_fail)
            return len(stalled)

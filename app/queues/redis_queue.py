"""Redis-backed queue built on redis.asyncio with WATCH/MULTI transactions.

Key layout for queue ``q`` under ``prefix``::

    {prefix}:{q}:id           INCR counter for generated job ids
    {prefix}:{q}:job:{id}     job JSON
    {prefix}:{q}:waiting      LIST, LPUSH on enqueue, claim takes from the right
    {prefix}:{q}:active       ZSET scored by lock expiry
    {prefix}:{q}:delayed      ZSET scored by run_at
    {prefix}:{q}:completed    ZSET scored by finish time
    {prefix}:{q}:failed       ZSET scored by finish time
"""

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import redis.asyncio as aioredis
import structlog
from redis.exceptions import WatchError

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

logger = structlog.get_logger(__name__)

MAX_TRANSACTION_RETRIES = 50


def _score(moment: datetime) -> float:
    return moment.replace(tzinfo=timezone.utc).timestamp()


def _text(value: Any) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


class RedisJobQueue(JobQueue):
    """Queue state shared by every process connected to the same Redis."""

    def __init__(
        self,
        client: aioredis.Redis,
        name: str,
        default_options: Optional[JobOptions] = None,
        prefix: str = "ihub:queue",
    ):
        super().__init__(name, default_options)
        self._client = client
        self._base = f"{prefix}:{name}"

    # --- keys -------------------------------------------------------------

    def _key(self, suffix: str) -> str:
        return f"{self._base}:{suffix}"

    def _job_key(self, job_id: str) -> str:
        return f"{self._base}:job:{job_id}"

    def _state_key(self, status: JobStatus) -> str:
        return self._key(status.value)

    # --- helpers ----------------------------------------------------------

    async def _load(self, reader, job_id: str) -> Optional[Job]:
        raw = await reader.get(self._job_key(job_id))
        return Job.model_validate_json(raw) if raw else None

    async def _transaction(
        self,
        watch_keys: List[str],
        body: Callable[[Any], Awaitable[Tuple[Any, bool]]],
    ) -> Any:
        """Run ``body`` under WATCH and retry on conflicts.

        ``body`` reads through the pipeline in immediate mode and returns
        ``(result, write)``. When ``write`` is true it has called
        ``pipe.multi()`` and queued its commands.
        """
        async with self._client.pipeline(transaction=True) as pipe:
            for _ in range(MAX_TRANSACTION_RETRIES):
                try:
                    await pipe.watch(*watch_keys)
                    result, write = await body(pipe)
                    if write:
                        await pipe.execute()
                    else:
                        await pipe.unwatch()
                    return result
                except WatchError:
                    await pipe.reset()
                    continue
        raise JobStateError(f"Too much contention on queue {self.name}")

    def _queue_removal(self, pipe, job: Job) -> None:
        if job.status == JobStatus.WAITING:
            pipe.lrem(self._state_key(JobStatus.WAITING), 0, job.id)
        else:
            pipe.zrem(self._state_key(job.status), job.id)

    async def _trim(self, status: JobStatus, keep: int) -> None:
        key = self._state_key(status)
        count = await self._client.zcard(key)
        if count <= keep:
            return
        stale = [_text(v) for v in await self._client.zrange(key, 0, count - keep - 1)]
        if not stale:
            return
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.zrem(key, *stale)
            pipe.delete(*[self._job_key(job_id) for job_id in stale])
            await pipe.execute()

    # --- producer ---------------------------------------------------------

    async def enqueue(
        self, name: str, payload: Dict[str, Any], options: Optional[JobOptions] = None
    ) -> Job:
        options = self.resolve_options(options)
        job_id = options.job_id or str(await self._client.incr(self._key("id")))

        async def body(pipe):
            existing = await self._load(pipe, job_id)
            if existing is not None:
                return existing, False

            job = self.build_job(job_id, name, payload, options, utcnow())
            pipe.multi()
            pipe.set(self._job_key(job_id), job.model_dump_json())
            if job.status == JobStatus.DELAYED:
                pipe.zadd(self._state_key(JobStatus.DELAYED), {job_id: _score(job.run_at)})
            else:
                pipe.lpush(self._state_key(JobStatus.WAITING), job_id)
            return job, True

        return await self._transaction([self._job_key(job_id)], body)

    # --- consumer ---------------------------------------------------------

    async def claim(self, lock_duration_ms: int) -> Optional[Job]:
        waiting_key = self._state_key(JobStatus.WAITING)

        async def body(pipe):
            raw_id = await pipe.lindex(waiting_key, -1)
            if raw_id is None:
                return None, False
            job_id = _text(raw_id)
            await pipe.watch(self._job_key(job_id))
            job = await self._load(pipe, job_id)

            pipe.multi()
            pipe.rpop(waiting_key)
            if job is None:
                # Orphaned id, drop it
                return None, True
            apply_claim(job, lock_duration_ms, utcnow())
            pipe.set(self._job_key(job_id), job.model_dump_json())
            pipe.zadd(self._state_key(JobStatus.ACTIVE), {job_id: _score(job.lock_expires_at)})
            return job, True

        return await self._transaction([waiting_key], body)

    async def extend_lock(self, job: Job, lock_duration_ms: int) -> bool:
        async def body(pipe):
            stored = await self._load(pipe, job.id)
            if stored is None or stored.status != JobStatus.ACTIVE or stored.lock_token != job.lock_token:
                return False, False
            apply_lock_extension(stored, lock_duration_ms, utcnow())
            pipe.multi()
            pipe.set(self._job_key(job.id), stored.model_dump_json())
            pipe.zadd(self._state_key(JobStatus.ACTIVE), {job.id: _score(stored.lock_expires_at)})
            job.lock_expires_at = stored.lock_expires_at
            return True, True

        return await self._transaction([self._job_key(job.id)], body)

    async def update_progress(self, job: Job, progress: int) -> bool:
        async def body(pipe):
            stored = await self._load(pipe, job.id)
            if stored is None or stored.lock_token != job.lock_token:
                return False, False
            stored.progress = job.progress = max(0, min(100, int(progress)))
            pipe.multi()
            pipe.set(self._job_key(job.id), stored.model_dump_json())
            return True, True

        return await self._transaction([self._job_key(job.id)], body)

    async def complete(self, job: Job, result: Any = None) -> Job:
        async def body(pipe):
            stored = check_lock(await self._load(pipe, job.id), job)
            apply_completion(stored, result, utcnow())
            pipe.multi()
            pipe.zrem(self._state_key(JobStatus.ACTIVE), job.id)
            pipe.set(self._job_key(job.id), stored.model_dump_json())
            pipe.zadd(self._state_key(JobStatus.COMPLETED), {job.id: _score(stored.finished_at)})
            return stored, True

        stored = await self._transaction([self._job_key(job.id)], body)
        await self._trim(JobStatus.COMPLETED, stored.remove_on_complete)
        return stored

    async def fail(
        self,
        job: Job,
        error: str,
        retryable: bool = True,
        stacktrace: Optional[str] = None,
    ) -> Job:
        async def body(pipe):
            stored = check_lock(await self._load(pipe, job.id), job)
            apply_failure(stored, error, retryable, utcnow(), stacktrace)
            pipe.multi()
            pipe.zrem(self._state_key(JobStatus.ACTIVE), job.id)
            pipe.set(self._job_key(job.id), stored.model_dump_json())
            if stored.status == JobStatus.DELAYED:
                pipe.zadd(self._state_key(JobStatus.DELAYED), {job.id: _score(stored.run_at)})
            else:
                pipe.zadd(self._state_key(JobStatus.FAILED), {job.id: _score(stored.finished_at)})
            return stored, True

        stored = await self._transaction([self._job_key(job.id)], body)
        if stored.status == JobStatus.FAILED:
            await self._trim(JobStatus.FAILED, stored.remove_on_fail)
        return stored

    # --- inspection -------------------------------------------------------

    async def get_job(self, job_id: str) -> Optional[Job]:
        return await self._load(self._client, job_id)

    async def get_counts(self) -> QueueCounts:
        async with self._client.pipeline(transaction=False) as pipe:
            pipe.llen(self._state_key(JobStatus.WAITING))
            for status in (JobStatus.ACTIVE, JobStatus.DELAYED, JobStatus.COMPLETED, JobStatus.FAILED):
                pipe.zcard(self._state_key(status))
            waiting, active, delayed, completed, failed = await pipe.execute()
        return QueueCounts(
            waiting=waiting, active=active, delayed=delayed, completed=completed, failed=failed
        )

    async def list_jobs(
        self, states: Iterable[JobStatus], offset: int = 0, limit: int = 20
    ) -> List[Job]:
        ids: List[str] = []
        for status in states:
            key = self._state_key(status)
            if status == JobStatus.WAITING:
                raw = await self._client.lrange(key, 0, -1)
            else:
                raw = await self._client.zrevrange(key, 0, -1)
            ids.extend(_text(v) for v in raw)

        if not ids:
            return []
        raws = await self._client.mget([self._job_key(job_id) for job_id in ids])
        jobs = [Job.model_validate_json(raw) for raw in raws if raw]
        return newest_first(jobs)[offset : offset + limit]

    # --- operator actions -------------------------------------------------

    async def promote(self, job_id: str) -> Job:
        async def body(pipe):
            job = await self._load(pipe, job_id)
            if job is None:
                raise JobNotFoundError(f"Job {job_id} not found", {"queue": self.name})
            if job.status != JobStatus.DELAYED:
                raise JobStateError(
                    f"Job {job_id} is {job.status.value}, only delayed jobs can be promoted"
                )
            job.status = JobStatus.WAITING
            job.run_at = None
            pipe.multi()
            pipe.zrem(self._state_key(JobStatus.DELAYED), job_id)
            pipe.set(self._job_key(job_id), job.model_dump_json())
            pipe.lpush(self._state_key(JobStatus.WAITING), job_id)
            return job, True

        return await self._transaction([self._job_key(job_id)], body)

    async def remove(self, job_id: str) -> None:
        async def body(pipe):
            job = await self._load(pipe, job_id)
            if job is None:
                raise JobNotFoundError(f"Job {job_id} not found", {"queue": self.name})
            if job.status == JobStatus.ACTIVE:
                raise JobStateError(f"Job {job_id} is active and cannot be removed")
            pipe.multi()
            self._queue_removal(pipe, job)
            pipe.delete(self._job_key(job_id))
            return None, True

        await self._transaction([self._job_key(job_id)], body)

    async def retry(self, job_id: str) -> Job:
        async def body(pipe):
            job = await self._load(pipe, job_id)
            if job is None:
                raise JobNotFoundError(f"Job {job_id} not found", {"queue": self.name})
            if job.status != JobStatus.FAILED:
                raise JobStateError(
                    f"Job {job_id} is {job.status.value}, only failed jobs can be retried"
                )
            pipe.multi()
            pipe.zrem(self._state_key(JobStatus.FAILED), job_id)
            apply_manual_retry(job)
            pipe.set(self._job_key(job_id), job.model_dump_json())
            pipe.lpush(self._state_key(JobStatus.WAITING), job_id)
            return job, True

        return await self._transaction([self._job_key(job_id)], body)

    # --- maintenance ------------------------------------------------------

    async def promote_due_jobs(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        delayed_key = self._state_key(JobStatus.DELAYED)
        due = [_text(v) for v in await self._client.zrangebyscore(delayed_key, "-inf", _score(now))]
        promoted = 0
        for job_id in due:

            async def body(pipe, job_id=job_id):
                job = await self._load(pipe, job_id)
                if job is None or job.status != JobStatus.DELAYED:
                    return False, False
                job.status = JobStatus.WAITING
                job.run_at = None
                pipe.multi()
                pipe.zrem(delayed_key, job_id)
                pipe.set(self._job_key(job_id), job.model_dump_json())
                pipe.lpush(self._state_key(JobStatus.WAITING), job_id)
                return True, True

            if await self._transaction([self._job_key(job_id)], body):
                promoted += 1
        return promoted

    async def requeue_stalled(
        self, now: Optional[datetime] = None, max_stalled_count: int = 1
    ) -> int:
        now = now or utcnow()
        active_key = self._state_key(JobStatus.ACTIVE)
        expired = [_text(v) for v in await self._client.zrangebyscore(active_key, "-inf", _score(now))]
        reclaimed = 0
        for job_id in expired:

            async def body(pipe, job_id=job_id):
                job = await self._load(pipe, job_id)
                if (
                    job is None
                    or job.status != JobStatus.ACTIVE
                    or job.lock_expires_at is None
                    or job.lock_expires_at > now
                ):
                    return None, False
                apply_stall(job, max_stalled_count, now)
                pipe.multi()
                pipe.zrem(active_key, job_id)
                pipe.set(self._job_key(job_id), job.model_dump_json())
                if job.status == JobStatus.WAITING:
                    pipe.rpush(self._state_key(JobStatus.WAITING), job_id)
                else:
                    pipe.zadd(self._state_key(JobStatus.FAILED), {job_id: _score(now)})
                return job, True

            job = await self._transaction([self._job_key(job_id)], body)
            if job is not None:
                reclaimed += 1
                logger.warning(
                    "job_stalled",
                    queue=self.name,
                    job_id=job_id,
                    stalled_count=job.stalled_count,
                    status=job.status.value,
                )
                if job.status == JobStatus.FAILED:
                    await self._trim(JobStatus.FAILED, job.remove_on_fail)
        return reclaimed

    async def close(self) -> None:
        # The client is owned by the registry
        return None

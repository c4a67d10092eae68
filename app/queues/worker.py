"""Queue worker: claims jobs, runs handlers with bounded concurrency, records outcomes."""

import asyncio
import traceback
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import structlog

from app.core.exceptions import InvalidPayloadError, JobLockError, is_retryable
from app.queues.base import JobQueue
from app.queues.models import Job, JobStatus

logger = structlog.get_logger(__name__)


class JobContext:
    """What a handler sees of the job it is running."""

    def __init__(self, job: Job, queue: JobQueue):
        self.job = job
        self.queue = queue

    @property
    def payload(self) -> Dict[str, Any]:
        return self.job.payload

    @property
    def name(self) -> str:
        return self.job.name

    @property
    def attempt(self) -> int:
        return self.job.attempts_made

    @property
    def is_final_attempt(self) -> bool:
        return self.job.attempts_made >= self.job.max_attempts

    async def update_progress(self, progress: int) -> None:
        await self.queue.update_progress(self.job, progress)


Processor = Callable[[JobContext], Awaitable[Any]]


class HandlerRouter:
    """Dispatches jobs to handlers by job name."""

    def __init__(self, handlers: Optional[Dict[str, Processor]] = None):
        self.handlers: Dict[str, Processor] = dict(handlers or {})

    def register(self, name: str, handler: Processor) -> None:
        self.handlers[name] = handler

    async def __call__(self, ctx: JobContext) -> Any:
        handler = self.handlers.get(ctx.name)
        if handler is None:
            raise InvalidPayloadError(f"Unknown job type: {ctx.name}")
        return await handler(ctx)


class Worker:
    """
    Consumes one queue with up to ``concurrency`` jobs in flight.

    The lock of every running job is renewed at half its duration; a job
    whose worker dies is reclaimed by queue maintenance once the lock expires.
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: Processor,
        concurrency: int = 1,
        lock_duration_ms: int = 60_000,
        poll_interval: float = 1.0,
    ):
        self.queue = queue
        self.processor = processor
        self.concurrency = max(1, concurrency)
        self.lock_duration_ms = lock_duration_ms
        self.poll_interval = poll_interval

        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._stopping = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._loop_task = asyncio.create_task(self._run(), name=f"worker:{self.queue.name}")
        logger.info("worker_started", queue=self.queue.name, concurrency=self.concurrency)

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _run(self) -> None:
        while not self._stopping.is_set():
            await self._semaphore.acquire()
            if self._stopping.is_set():
                self._semaphore.release()
                break

            try:
                job = await self.queue.claim(self.lock_duration_ms)
            except Exception:
                self._semaphore.release()
                logger.exception("claim_failed", queue=self.queue.name)
                await self._idle()
                continue

            if job is None:
                self._semaphore.release()
                await self._idle()
                continue

            task = asyncio.create_task(self._process(job))
            self._in_flight.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        self._semaphore.release()

    async def _renew_lock(self, job: Job) -> None:
        interval = self.lock_duration_ms / 2000
        while True:
            await asyncio.sleep(interval)
            try:
                renewed = await self.queue.extend_lock(job, self.lock_duration_ms)
            except Exception as exc:
                # Try again next tick; the stall sweep covers a lock that really expires
                logger.warning("lock_renew_failed", queue=self.queue.name, job_id=job.id, error=str(exc))
                continue
            if not renewed:
                logger.warning("lock_lost", queue=self.queue.name, job_id=job.id)
                return

    async def _process(self, job: Job) -> Job:
        log = logger.bind(queue=self.queue.name, job_id=job.id, job_name=job.name, attempt=job.attempts_made)
        renewer = asyncio.create_task(self._renew_lock(job))
        try:
            try:
                result = await self.processor(JobContext(job, self.queue))
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                retryable = is_retryable(exc)
                updated = await self.queue.fail(
                    job,
                    f"{type(exc).__name__}: {exc}",
                    retryable=retryable,
                    stacktrace=traceback.format_exc(),
                )
                if updated.status == JobStatus.DELAYED:
                    log.warning("job_retrying", error=str(exc), run_at=str(updated.run_at))
                else:
                    log.error("job_failed", error=str(exc), retryable=retryable)
                return updated

            updated = await self.queue.complete(job, result)
            log.info("job_completed")
            return updated
        except JobLockError:
            log.warning("job_outcome_discarded", reason="lock lost to another worker")
            return job
        except Exception:
            # Outcome not stored; the expired lock hands the job to stalled reclaim
            log.exception("job_outcome_not_recorded")
            return job
        finally:
            renewer.cancel()

    async def run_once(self) -> Optional[Job]:
        """Claim and process a single job inline; None when the queue is empty."""
        job = await self.queue.claim(self.lock_duration_ms)
        if job is None:
            return None
        return await self._process(job)

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop claiming and drain in-flight jobs, cancelling any left after ``timeout``."""
        self._stopping.set()
        if self._loop_task is not None:
            # The loop may be parked on the semaphore while every slot is busy
            await asyncio.wait({self._loop_task}, timeout=timeout)
            if not self._loop_task.done():
                self._loop_task.cancel()
                await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None

        pending = set(self._in_flight)
        if pending:
            logger.info("worker_draining", queue=self.queue.name, in_flight=len(pending))
            done, still_running = await asyncio.wait(pending, timeout=timeout)
            for task in still_running:
                task.cancel()
            if still_running:
                await asyncio.gather(*still_running, return_exceptions=True)
                logger.warning(
                    "worker_drain_timeout",
                    queue=self.queue.name,
                    cancelled=len(still_running),
                )
        logger.info("worker_stopped", queue=self.queue.name)

"""Queue registry: the named queues, their workers and their lifecycle."""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

import redis.asyncio as aioredis
import structlog

from app.config import Settings, settings as default_settings
from app.core.exceptions import QueueNotRegisteredError
from app.queues.base import JobQueue
from app.queues.memory import InMemoryJobQueue
from app.queues.models import BackoffPolicy, Job, JobOptions
from app.queues.redis_queue import RedisJobQueue
from app.queues.worker import Processor, Worker

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class QueueDefinition:
    key: str
    name: str
    concurrency: int
    lock_duration_ms: int


QUEUE_DEFINITIONS: Dict[str, QueueDefinition] = {
    "email": QueueDefinition("email", "emails", 10, 60_000),
    "notification": QueueDefinition("notification", "notifications", 15, 60_000),
    "logbook": QueueDefinition("logbook", "logbook-processing", 5, 60_000),
    "completion": QueueDefinition("completion", "completion-processing", 4, 120_000),
    "report": QueueDefinition("report", "report-generation", 3, 120_000),
}


def default_job_options(settings: Settings) -> JobOptions:
    return JobOptions(
        attempts=settings.QUEUE_DEFAULT_ATTEMPTS,
        backoff=BackoffPolicy(type="exponential", delay_ms=settings.QUEUE_BACKOFF_DELAY_MS),
        remove_on_complete=settings.QUEUE_KEEP_COMPLETED,
        remove_on_fail=settings.QUEUE_KEEP_FAILED,
    )


class QueueRegistry:
    """
    Owns every named queue and worker of the process.

    Built once at startup and passed to whatever needs to enqueue, so
    producers never reach for module-level queue objects.
    """

    def __init__(
        self,
        queue_factory: Callable[[QueueDefinition, JobOptions], JobQueue],
        settings: Settings = default_settings,
        definitions: Optional[Dict[str, QueueDefinition]] = None,
        redis_client: Optional[aioredis.Redis] = None,
    ):
        self.settings = settings
        self.definitions = dict(definitions or QUEUE_DEFINITIONS)
        self.default_options = default_job_options(settings)
        self._queues: Dict[str, JobQueue] = {
            key: queue_factory(definition, self.default_options)
            for key, definition in self.definitions.items()
        }
        self._workers: Dict[str, Worker] = {}
        self._background: Set[asyncio.Task] = set()
        self._redis_client = redis_client

    @classmethod
    def in_memory(cls, settings: Settings = default_settings) -> "QueueRegistry":
        return cls(
            lambda definition, options: InMemoryJobQueue(definition.name, options),
            settings=settings,
        )

    @classmethod
    def with_redis(
        cls, client: aioredis.Redis, settings: Settings = default_settings
    ) -> "QueueRegistry":
        return cls(
            lambda definition, options: RedisJobQueue(
                client, definition.name, options, prefix=settings.QUEUE_PREFIX
            ),
            settings=settings,
            redis_client=client,
        )

    @classmethod
    def from_settings(cls, settings: Settings = default_settings) -> "QueueRegistry":
        if settings.QUEUE_BACKEND == "memory":
            logger.info("queue_backend_selected", backend="memory")
            return cls.in_memory(settings)
        client = aioredis.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            health_check_interval=settings.REDIS_HEALTH_CHECK_INTERVAL,
            decode_responses=True,
        )
        logger.info("queue_backend_selected", backend="redis")
        return cls.with_redis(client, settings)

    # --- lookup -----------------------------------------------------------

    @property
    def keys(self) -> List[str]:
        return list(self.definitions)

    def definition(self, key: str) -> QueueDefinition:
        try:
            return self.definitions[key]
        except KeyError:
            raise QueueNotRegisteredError(f"Queue '{key}' is not registered") from None

    def get_queue(self, key: str) -> JobQueue:
        self.definition(key)
        return self._queues[key]

    # --- producers --------------------------------------------------------

    def build_options(self, **overrides: Any) -> JobOptions:
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return self.default_options.model_copy(update=overrides)

    async def enqueue(
        self, key: str, name: str, payload: Dict[str, Any], **overrides: Any
    ) -> Job:
        """Enqueue a job on a named queue; option overrides are JobOptions fields."""
        queue = self.get_queue(key)
        job = await queue.enqueue(name, payload, self.build_options(**overrides))
        logger.debug("job_enqueued", queue=queue.name, job_id=job.id, job_name=name)
        return job

    def enqueue_nowait(
        self, key: str, name: str, payload: Dict[str, Any], **overrides: Any
    ) -> asyncio.Task:
        """Fire-and-forget enqueue; failures are logged and never reach the caller."""
        self.definition(key)
        task = asyncio.create_task(self.enqueue(key, name, payload, **overrides))
        self._background.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.error(
                    "enqueue_failed",
                    queue=key,
                    job_name=name,
                    error=str(t.exception()),
                )

        task.add_done_callback(_done)
        return task

    async def wait_for_background(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # --- workers ----------------------------------------------------------

    def concurrency_for(self, key: str) -> int:
        override = getattr(self.settings, f"{key.upper()}_WORKER_CONCURRENCY", None)
        return override or self.definition(key).concurrency

    def register_worker(self, key: str, processor: Processor) -> Worker:
        definition = self.definition(key)
        worker = Worker(
            self._queues[key],
            processor,
            concurrency=self.concurrency_for(key),
            lock_duration_ms=definition.lock_duration_ms,
            poll_interval=self.settings.QUEUE_POLL_INTERVAL_SECONDS,
        )
        self._workers[key] = worker
        return worker

    def start(self) -> None:
        for worker in self._workers.values():
            worker.start()
        logger.info("queue_workers_started", queues=list(self._workers))

    async def drain(self, key: str, max_jobs: int = 1000) -> List[Job]:
        """Process waiting jobs of one queue inline until it is empty."""
        worker = self._workers.get(key)
        if worker is None:
            raise QueueNotRegisteredError(f"No worker registered for queue '{key}'")
        processed = []
        for _ in range(max_jobs):
            job = await worker.run_once()
            if job is None:
                break
            processed.append(job)
        return processed

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop workers (draining in-flight jobs), then close the backends."""
        timeout = timeout if timeout is not None else self.settings.WORKER_SHUTDOWN_TIMEOUT_SECONDS
        await asyncio.gather(
            *(worker.stop(timeout) for worker in self._workers.values()),
            return_exceptions=True,
        )
        await self.wait_for_background()
        for queue in self._queues.values():
            await queue.close()
        if self._redis_client is not None:
            await self._redis_client.aclose()
        logger.info("queue_registry_shutdown")

    # --- inspection & maintenance ----------------------------------------

    async def get_status(self, key: str) -> Dict[str, Any]:
        definition = self.definition(key)
        counts = await self._queues[key].get_counts()
        worker = self._workers.get(key)
        return {
            "key": key,
            "name": definition.name,
            "concurrency": self.concurrency_for(key),
            "lock_duration_ms": definition.lock_duration_ms,
            "worker_running": bool(worker and worker.running),
            "in_flight": worker.in_flight if worker else 0,
            "counts": counts.model_dump(),
        }

    async def get_all_status(self) -> List[Dict[str, Any]]:
        return [await self.get_status(key) for key in self.definitions]

    async def run_maintenance(self) -> Dict[str, Dict[str, int]]:
        summary = {}
        for key, queue in self._queues.items():
            promoted = await queue.promote_due_jobs()
            stalled = await queue.requeue_stalled(
                max_stalled_count=self.settings.QUEUE_MAX_STALLED_COUNT
            )
            summary[key] = {"promoted": promoted, "stalled": stalled}
        return summary

"""Named background job queues and their workers."""

from app.queues.base import JobQueue
from app.queues.models import BackoffPolicy, Job, JobOptions, JobStatus, QueueCounts
from app.queues.registry import QUEUE_DEFINITIONS, QueueDefinition, QueueRegistry
from app.queues.worker import HandlerRouter, JobContext, Worker

__all__ = [
    "BackoffPolicy",
    "HandlerRouter",
    "Job",
    "JobContext",
    "JobOptions",
    "JobQueue",
    "JobStatus",
    "QUEUE_DEFINITIONS",
    "QueueCounts",
    "QueueDefinition",
    "QueueRegistry",
    "Worker",
]

"""Queue workers: one handler router per named queue."""

from typing import Iterable, List, Optional

from app.queues.registry import QueueRegistry
from app.workers.completion_worker import CompletionJobs
from app.workers.context import WorkerServices, build_services
from app.workers.email_worker import EmailJobs
from app.workers.logbook_worker import LogbookJobs
from app.workers.notification_worker import NotificationJobs
from app.workers.report_worker import ReportJobs

WORKER_JOBS = {
    "email": EmailJobs,
    "notification": NotificationJobs,
    "logbook": LogbookJobs,
    "completion": CompletionJobs,
    "report": ReportJobs,
}


def register_workers(
    registry: QueueRegistry,
    services: WorkerServices,
    queues: Optional[Iterable[str]] = None,
) -> List[str]:
    """Register a worker for each requested queue (all queues by default)."""
    keys = list(queues) if queues else list(WORKER_JOBS)
    for key in keys:
        registry.definition(key)
        jobs = WORKER_JOBS[key](services)
        registry.register_worker(key, jobs.router())
    return keys


__all__ = ["WORKER_JOBS", "WorkerServices", "build_services", "register_workers"]

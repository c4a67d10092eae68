"""Operator endpoints for queue inspection and job management."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_registry
from app.core.exceptions import JobNotFoundError
from app.core.security import Principal, Role, require_role
from app.queues.models import JobStatus
from app.queues.registry import QueueRegistry

router = APIRouter()

admin_only = require_role(Role.ADMIN)


@router.get("")
async def list_queues(
    registry: QueueRegistry = Depends(get_registry),
    principal: Principal = Depends(admin_only),
):
    """Counts by state for every queue."""
    return {"queues": await registry.get_all_status()}


@router.get("/{queue_key}")
async def get_queue_status(
    queue_key: str,
    registry: QueueRegistry = Depends(get_registry),
    principal: Principal = Depends(admin_only),
):
    return await registry.get_status(queue_key)


@router.get("/{queue_key}/jobs")
async def list_jobs(
    queue_key: str,
    states: Optional[List[JobStatus]] = Query(None, description="Filter by job state (repeatable)"),
    offset: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    registry: QueueRegistry = Depends(get_registry),
    principal: Principal = Depends(admin_only),
):
    """Jobs in the given states, newest first (all states by default)."""
    queue = registry.get_queue(queue_key)
    jobs = await queue.list_jobs(states or list(JobStatus), offset=offset, limit=limit)
    return {
        "queue": queue.name,
        "offset": offset,
        "limit": limit,
        "jobs": [job.summary() for job in jobs],
    }


@router.get("/{queue_key}/jobs/{job_id}")
async def get_job(
    queue_key: str,
    job_id: str,
    registry: QueueRegistry = Depends(get_registry),
    principal: Principal = Depends(admin_only),
):
    job = await registry.get_queue(queue_key).get_job(job_id)
    if job is None:
        raise JobNotFoundError(f"Job {job_id} not found", {"queue": queue_key})
    return job.summary()


@router.post("/{queue_key}/jobs/{job_id}/promote")
async def promote_job(
    queue_key: str,
    job_id: str,
    registry: QueueRegistry = Depends(get_registry),
    principal: Principal = Depends(admin_only),
):
    """Move a delayed job to waiting now."""
    job = await registry.get_queue(queue_key).promote(job_id)
    return job.summary()


@router.post("/{queue_key}/jobs/{job_id}/retry")
async def retry_job(
    queue_key: str,
    job_id: str,
    registry: QueueRegistry = Depends(get_registry),
    principal: Principal = Depends(admin_only),
):
    """Requeue a failed job with its attempts reset."""
    job = await registry.get_queue(queue_key).retry(job_id)
    return job.summary()


@router.delete("/{queue_key}/jobs/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_job(
    queue_key: str,
    job_id: str,
    registry: QueueRegistry = Depends(get_registry),
    principal: Principal = Depends(admin_only),
):
    """Delete a job that is not currently active."""
    await registry.get_queue(queue_key).remove(job_id)

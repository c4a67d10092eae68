from datetime import timedelta

import fakeredis
import pytest

from app.core.exceptions import JobLockError, JobStateError
from app.queues.base import STALLED_REASON
from app.queues.models import BackoffPolicy, JobOptions, JobStatus
from app.queues.redis_queue import RedisJobQueue
from app.utils.helpers import utcnow

LOCK_MS = 30_000


@pytest.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.aclose()


def make_queue(client, **options):
    return RedisJobQueue(client, "emails", JobOptions(**options), prefix="test:queue")


def later(minutes=10):
    return utcnow() + timedelta(minutes=minutes)


async def test_job_round_trip_through_redis(redis_client):
    queue = make_queue(redis_client)
    first = await queue.enqueue("welcome", {"email": "a@x.test"})
    await queue.enqueue("welcome", {"email": "b@x.test"})
    assert first.id == "1"
    assert await redis_client.llen("test:queue:emails:waiting") == 2

    claimed = await queue.claim(LOCK_MS)
    assert claimed.id == first.id
    assert claimed.status == JobStatus.ACTIVE

    done = await queue.complete(claimed, {"delivered": True})
    assert done.status == JobStatus.COMPLETED
    stored = await queue.get_job(first.id)
    assert stored.result == {"delivered": True}

    counts = await queue.get_counts()
    assert (counts.waiting, counts.active, counts.completed) == (1, 0, 1)


async def test_failure_is_delayed_with_backoff_and_promoted(redis_client):
    queue = make_queue(redis_client, attempts=2, backoff=BackoffPolicy(delay_ms=1000))
    job = await queue.enqueue("welcome", {})

    failed_once = await queue.fail(await queue.claim(LOCK_MS), "SMTP down")
    assert failed_once.status == JobStatus.DELAYED
    assert await queue.claim(LOCK_MS) is None

    assert await queue.promote_due_jobs(now=utcnow()) == 0
    assert await queue.promote_due_jobs(now=later()) == 1

    failed = await queue.fail(await queue.claim(LOCK_MS), "SMTP still down")
    assert failed.status == JobStatus.FAILED
    assert failed.attempts_made == 2
    assert (await queue.get_job(job.id)).failure_reason == "SMTP still down"


async def test_duplicate_job_id_returns_existing_job(redis_client):
    queue = make_queue(redis_client)
    first = await queue.enqueue("generate-nep-report", {"reportId": "RPT-1"}, JobOptions(job_id="report:RPT-1"))
    again = await queue.enqueue("generate-nep-report", {"reportId": "RPT-1"}, JobOptions(job_id="report:RPT-1"))

    assert again.id == first.id == "report:RPT-1"
    assert (await queue.get_counts()).waiting == 1


async def test_stalled_job_is_reclaimed_then_failed(redis_client):
    queue = make_queue(redis_client)
    job = await queue.enqueue("generate-summary", {})
    holder = await queue.claim(LOCK_MS)

    assert await queue.requeue_stalled(now=later(), max_stalled_count=1) == 1
    assert (await queue.get_job(job.id)).status == JobStatus.WAITING
    with pytest.raises(JobLockError):
        await queue.fail(holder, "late failure")

    await queue.claim(LOCK_MS)
    assert await queue.requeue_stalled(now=later(), max_stalled_count=1) == 1
    stored = await queue.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.failure_reason == STALLED_REASON


async def test_operator_actions_and_listing(redis_client):
    queue = make_queue(redis_client, attempts=1, remove_on_fail=10)
    delayed = await queue.enqueue("welcome", {"n": 0}, JobOptions(attempts=1, delay_ms=60_000))
    await queue.enqueue("welcome", {"n": 1})

    promoted = await queue.promote(delayed.id)
    assert promoted.status == JobStatus.WAITING
    with pytest.raises(JobStateError):
        await queue.promote(delayed.id)

    active = await queue.claim(LOCK_MS)
    with pytest.raises(JobStateError):
        await queue.remove(active.id)
    failed = await queue.fail(active, "boom")
    assert failed.status == JobStatus.FAILED

    retried = await queue.retry(failed.id)
    assert retried.status == JobStatus.WAITING
    assert retried.attempts_made == 0

    listed = await queue.list_jobs([JobStatus.WAITING])
    assert len(listed) == 2
    await queue.remove(listed[0].id)
    assert (await queue.get_counts()).waiting == 1

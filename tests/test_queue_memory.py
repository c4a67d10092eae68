from datetime import timedelta

import pytest

from app.core.exceptions import JobLockError, JobNotFoundError, JobStateError
from app.queues.base import STALLED_REASON
from app.queues.memory import InMemoryJobQueue
from app.queues.models import BackoffPolicy, JobOptions, JobStatus
from app.utils.helpers import utcnow

LOCK_MS = 30_000


def make_queue(**options):
    return InMemoryJobQueue("emails", JobOptions(**options))


def later(minutes=10):
    return utcnow() + timedelta(minutes=minutes)


def test_exponential_backoff_doubles_per_attempt():
    policy = BackoffPolicy(type="exponential", delay_ms=2000)
    assert policy.delay_for(1) == timedelta(seconds=2)
    assert policy.delay_for(2) == timedelta(seconds=4)
    assert policy.delay_for(3) == timedelta(seconds=8)

    fixed = BackoffPolicy(type="fixed", delay_ms=2000)
    assert fixed.delay_for(3) == timedelta(seconds=2)


async def test_claim_is_fifo_and_locks_the_job():
    queue = make_queue()
    first = await queue.enqueue("welcome", {"email": "a@x.test"})
    await queue.enqueue("welcome", {"email": "b@x.test"})

    claimed = await queue.claim(LOCK_MS)
    assert claimed.id == first.id
    assert claimed.status == JobStatus.ACTIVE
    assert claimed.attempts_made == 1
    assert claimed.lock_token

    assert (await queue.claim(LOCK_MS)).payload == {"email": "b@x.test"}
    assert await queue.claim(LOCK_MS) is None
    assert (await queue.get_counts()).active == 2


async def test_delayed_job_waits_until_promoted():
    queue = make_queue()
    job = await queue.enqueue("reminder", {}, JobOptions(delay_ms=60_000))
    assert job.status == JobStatus.DELAYED
    assert await queue.claim(LOCK_MS) is None

    assert await queue.promote_due_jobs(now=utcnow()) == 0
    assert await queue.promote_due_jobs(now=later()) == 1
    assert (await queue.claim(LOCK_MS)).id == job.id


async def test_retryable_failure_backs_off_then_fails_when_attempts_run_out():
    queue = make_queue(attempts=2, backoff=BackoffPolicy(delay_ms=1000))
    job = await queue.enqueue("welcome", {})

    claimed = await queue.claim(LOCK_MS)
    before = utcnow()
    retried = await queue.fail(claimed, "SMTP down")
    assert retried.status == JobStatus.DELAYED
    assert retried.failure_reason == "SMTP down"
    assert retried.run_at >= before + timedelta(milliseconds=1000)

    await queue.promote_due_jobs(now=later())
    claimed = await queue.claim(LOCK_MS)
    assert claimed.attempts_made == 2

    failed = await queue.fail(claimed, "SMTP still down", stacktrace="Traceback ...")
    assert failed.status == JobStatus.FAILED
    assert failed.finished_at is not None
    assert failed.stacktrace == ["Traceback ..."]

    stored = await queue.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert (await queue.get_counts()).failed == 1


async def test_non_retryable_failure_skips_remaining_attempts():
    queue = make_queue(attempts=3)
    await queue.enqueue("welcome", {})
    claimed = await queue.claim(LOCK_MS)

    failed = await queue.fail(claimed, "InvalidPayloadError: missing email", retryable=False)
    assert failed.status == JobStatus.FAILED
    assert failed.attempts_made == 1


async def test_completed_jobs_are_trimmed_to_retention():
    queue = make_queue(remove_on_complete=2)
    ids = []
    for n in range(3):
        job = await queue.enqueue("welcome", {"n": n})
        ids.append(job.id)
        done = await queue.complete(await queue.claim(LOCK_MS), {"sent": True})
        assert done.progress == 100
        assert done.result == {"sent": True}

    assert (await queue.get_counts()).completed == 2
    assert await queue.get_job(ids[0]) is None
    assert await queue.get_job(ids[2]) is not None


async def test_caller_job_id_deduplicates():
    queue = make_queue()
    first = await queue.enqueue("process-completion", {"a": 1}, JobOptions(job_id="completion:s1:i1"))
    second = await queue.enqueue("process-completion", {"a": 2}, JobOptions(job_id="completion:s1:i1"))

    assert first.id == second.id == "completion:s1:i1"
    assert second.payload == {"a": 1}
    assert (await queue.get_counts()).waiting == 1


async def test_stalled_job_is_reclaimed_once_then_failed():
    queue = make_queue()
    job = await queue.enqueue("generate-summary", {})
    first_claim = await queue.claim(LOCK_MS)

    assert await queue.requeue_stalled(now=utcnow()) == 0
    assert await queue.requeue_stalled(now=later(), max_stalled_count=1) == 1
    reclaimed = await queue.get_job(job.id)
    assert reclaimed.status == JobStatus.WAITING
    assert reclaimed.stalled_count == 1
    assert reclaimed.attempts_made == 0

    # The original holder lost its lock
    with pytest.raises(JobLockError):
        await queue.complete(first_claim)

    await queue.claim(LOCK_MS)
    assert await queue.requeue_stalled(now=later(), max_stalled_count=1) == 1
    failed = await queue.get_job(job.id)
    assert failed.status == JobStatus.FAILED
    assert failed.failure_reason == STALLED_REASON


async def test_extend_lock_and_progress_require_the_current_token():
    queue = make_queue()
    await queue.enqueue("welcome", {})
    claimed = await queue.claim(LOCK_MS)
    expires = claimed.lock_expires_at

    assert await queue.update_progress(claimed, 150) is True
    assert (await queue.get_job(claimed.id)).progress == 100
    assert await queue.extend_lock(claimed, LOCK_MS * 2) is True
    assert (await queue.get_job(claimed.id)).lock_expires_at > expires

    stale = claimed.model_copy(update={"lock_token": "someone-else"})
    assert await queue.extend_lock(stale, LOCK_MS) is False
    assert await queue.update_progress(stale, 10) is False


async def test_operator_actions_respect_job_state():
    queue = make_queue(attempts=1)
    waiting = await queue.enqueue("welcome", {})
    delayed = await queue.enqueue("welcome", {}, JobOptions(attempts=1, delay_ms=60_000))

    with pytest.raises(JobStateError):
        await queue.promote(waiting.id)
    promoted = await queue.promote(delayed.id)
    assert promoted.status == JobStatus.WAITING
    assert promoted.run_at is None

    active = await queue.claim(LOCK_MS)
    with pytest.raises(JobStateError):
        await queue.remove(active.id)
    with pytest.raises(JobStateError):
        await queue.retry(active.id)

    failed = await queue.fail(active, "boom")
    assert failed.status == JobStatus.FAILED
    retried = await queue.retry(failed.id)
    assert retried.status == JobStatus.WAITING
    assert retried.attempts_made == 0
    assert retried.failure_reason is None

    await queue.remove(retried.id)
    assert await queue.get_job(retried.id) is None
    with pytest.raises(JobNotFoundError):
        await queue.remove(retried.id)


async def test_list_jobs_newest_first_with_paging():
    queue = make_queue()
    for n in range(5):
        await queue.enqueue("welcome", {"n": n})

    jobs = await queue.list_jobs([JobStatus.WAITING])
    assert [job.payload["n"] for job in jobs] == [4, 3, 2, 1, 0]

    page = await queue.list_jobs([JobStatus.WAITING], offset=1, limit=2)
    assert [job.payload["n"] for job in page] == [3, 2]
    assert await queue.list_jobs([JobStatus.FAILED]) == []

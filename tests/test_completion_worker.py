import uuid
from pathlib import Path
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from app.core.exceptions import UnsupportedDatabaseError, is_retryable
from app.models import InternshipCompletion, Student
from app.queues.models import JobStatus
from app.services.credit_service import settle_completion


async def load_student(session_factory, student_id):
    async with session_factory() as session:
        return await session.get(Student, student_id)


async def run_completion(workers, student, internship):
    await workers.enqueue(
        "completion",
        "process-completion",
        {"studentId": str(student.id), "internshipId": str(internship.id)},
    )
    [job] = await workers.drain("completion")
    return job


async def test_completion_settles_credits_and_issues_certificate(workers, services, seed, test_settings):
    company = await seed.company()
    internship = await seed.internship(company, status="closed")
    student = await seed.student(credits_pending=1)
    await seed.logbook(student, internship, week=1, hours=20, status="approved")
    await seed.logbook(student, internship, week=2, hours=20, status="completed")
    await seed.logbook(student, internship, week=3, hours=30, status="submitted")

    job = await run_completion(workers, student, internship)

    assert job.status == JobStatus.COMPLETED
    assert job.result["totalHours"] == 40
    assert job.result["creditsEarned"] == 1
    assert job.result["creditDelta"] == 1
    key = f"certificates/{student.id}-{internship.id}.docx"
    assert job.result["certificateUrl"] == f"/uploads/{key}"
    assert (Path(test_settings.LOCAL_STORAGE_DIR) / key).read_bytes()[:2] == b"PK"

    stored = await load_student(services.session_factory, student.id)
    assert (stored.credits_earned, stored.credits_approved, stored.credits_pending) == (1, 1, 0)
    assert stored.completed_internships == 1

    async with services.session_factory() as session:
        completion = (
            await session.execute(
                select(InternshipCompletion).where(InternshipCompletion.student_id == student.id)
            )
        ).scalar_one()
    assert completion.status == "issued"
    assert completion.credits_settled == 1

    followups = await workers.get_queue("notification").list_jobs([JobStatus.WAITING])
    assert [job.name for job in followups] == ["notify-student"]
    [email] = await workers.get_queue("email").list_jobs([JobStatus.WAITING])
    assert email.name == "internship-completion"
    assert email.payload["creditsEarned"] == 1


async def test_rerunning_a_completion_moves_the_ledger_once(workers, services, seed):
    company = await seed.company()
    internship = await seed.internship(company, status="closed")
    student = await seed.student()
    await seed.logbook(student, internship, week=1, hours=40, status="approved")

    first = await run_completion(workers, student, internship)
    second = await run_completion(workers, student, internship)
    assert first.result["completionCode"] == second.result["completionCode"]
    assert second.result["creditDelta"] == 0

    stored = await load_student(services.session_factory, student.id)
    assert (stored.credits_earned, stored.completed_internships) == (1, 1)

    # Late-approved hours settle only the difference
    await seed.logbook(student, internship, week=2, hours=25, status="approved")
    third = await run_completion(workers, student, internship)
    assert (third.result["creditsEarned"], third.result["creditDelta"]) == (2, 1)

    stored = await load_student(services.session_factory, student.id)
    assert (stored.credits_earned, stored.credits_approved, stored.completed_internships) == (2, 2, 1)


async def test_pending_credits_never_go_negative(workers, services, seed):
    company = await seed.company()
    internship = await seed.internship(company, status="closed")
    student = await seed.student(credits_pending=0)
    await seed.logbook(student, internship, week=1, hours=60, status="approved")

    job = await run_completion(workers, student, internship)
    assert job.result["creditsEarned"] == 2

    stored = await load_student(services.session_factory, student.id)
    assert (stored.credits_earned, stored.credits_pending) == (2, 0)


async def test_no_approved_hours_earns_nothing(workers, services, seed):
    company = await seed.company()
    internship = await seed.internship(company, status="closed")
    student = await seed.student()

    job = await run_completion(workers, student, internship)
    assert (job.result["creditsEarned"], job.result["totalHours"]) == (0, 0)

    stored = await load_student(services.session_factory, student.id)
    assert (stored.credits_earned, stored.completed_internships) == (0, 1)


async def test_unknown_student_fails_permanently(workers, seed):
    company = await seed.company()
    internship = await seed.internship(company)

    await workers.enqueue(
        "completion",
        "process-completion",
        {"studentId": str(uuid.uuid4()), "internshipId": str(internship.id)},
    )
    [job] = await workers.drain("completion")
    assert job.status == JobStatus.FAILED
    assert job.failure_reason.startswith("NotFoundError")


async def test_recalculate_rebuilds_the_ledger(workers, services, seed):
    company = await seed.company()
    first = await seed.internship(company, status="closed")
    second = await seed.internship(company, status="closed")
    student = await seed.student()
    await seed.logbook(student, first, week=1, hours=30, status="approved")
    await seed.logbook(student, second, week=1, hours=60, status="approved")
    await run_completion(workers, student, first)
    await run_completion(workers, student, second)

    async with services.session_factory() as session:
        drifted = await session.get(Student, student.id)
        drifted.credits_earned = 11
        drifted.credits_pending = 4
        await session.commit()

    await workers.enqueue("completion", "recalculate-credits", {"studentId": str(student.id)})
    [job] = await workers.drain("completion")
    assert job.result == {"studentId": str(student.id), "totalCredits": 3}

    stored = await load_student(services.session_factory, student.id)
    assert (stored.credits_earned, stored.credits_approved, stored.credits_pending) == (3, 3, 0)
    assert stored.completed_internships == 2


async def test_settlement_refuses_databases_without_upsert():
    session = SimpleNamespace(bind=SimpleNamespace(dialect=SimpleNamespace(name="mysql")))

    with pytest.raises(UnsupportedDatabaseError) as excinfo:
        await settle_completion(
            session,
            student_id=uuid.uuid4(),
            internship_id=uuid.uuid4(),
            company_id=None,
            total_hours=40,
            credits=1,
            certificate_url=None,
        )
    assert excinfo.value.details == {"dialect": "mysql"}
    assert not is_retryable(excinfo.value)

import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from app.core.exceptions import CollaboratorError, PermissionDeniedError
from app.core.security import Principal, Role
from app.models import InternshipCompletion, Report, Student
from app.queues.base import STALLED_REASON
from app.queues.models import JobStatus
from app.utils.helpers import utcnow
from app.workflows import ReportWorkflow

ADMIN = Principal(identity="admin-1", role=Role.ADMIN)


def as_student(student):
    return Principal(identity=str(student.id), role=Role.STUDENT)


async def load_report(session_factory, code):
    async with session_factory() as session:
        return (await session.execute(select(Report).where(Report.report_code == code))).scalar_one()


async def setup_internship(seed, hours=(20, 15)):
    mentor = await seed.mentor()
    company = await seed.company()
    internship = await seed.internship(company, status="closed")
    student = await seed.student(mentor=mentor)
    for week, worked in enumerate(hours, start=1):
        await seed.logbook(student, internship, week=week, hours=worked, status="approved")
    return mentor, company, internship, student


async def test_nep_report_is_generated_and_stored(workers, services, seed):
    _, _, internship, student = await setup_internship(seed)

    async with services.session_factory() as session:
        report = await ReportWorkflow(session, workers).request_nep_report(
            as_student(student), student.id, internship.id
        )
    assert report.status == "pending"
    assert report.requested_by == str(student.id)

    [job] = await workers.drain("report")
    assert job.status == JobStatus.COMPLETED
    assert job.id == f"report:{report.report_code}"

    stored = await load_report(services.session_factory, report.report_code)
    assert stored.status == "completed"
    assert stored.file_url == f"/uploads/reports/{report.report_code}.docx"
    assert stored.generated_at is not None
    assert [s["title"] for s in stored.sections] == [
        "Executive Summary",
        "Key Achievements",
        "Skills Developed",
        "Learning Outcomes",
        "Performance Highlights",
        "Credit Summary",
    ]
    assert stored.sections[-1]["content"] == "Total Hours: 35.0\nCredits Earned: 1"
    assert stored.extra_data["creditsEarned"] == 1

    [notice] = await workers.get_queue("notification").list_jobs([JobStatus.WAITING])
    assert notice.payload["actionUrl"] == stored.file_url
    assert notice.payload["type"] == "report"


async def test_repeated_request_reuses_the_report_in_flight(workers, services, seed):
    _, _, internship, student = await setup_internship(seed)

    async with services.session_factory() as session:
        workflow = ReportWorkflow(session, workers)
        first = await workflow.request_nep_report(as_student(student), student.id, internship.id)
        second = await workflow.request_nep_report(as_student(student), student.id, internship.id)

    assert first.report_code == second.report_code
    assert (await workers.get_queue("report").get_counts()).waiting == 1


async def test_report_whose_job_died_is_replaced_on_next_request(workers, services, seed):
    _, _, internship, student = await setup_internship(seed)
    queue = workers.get_queue("report")

    async with services.session_factory() as session:
        stuck = await ReportWorkflow(session, workers).request_nep_report(
            as_student(student), student.id, internship.id
        )
    # The worker holding the job dies twice
    for _ in range(2):
        await queue.claim(1000)
        await queue.requeue_stalled(now=utcnow() + timedelta(hours=1), max_stalled_count=1)
    assert (await queue.get_job(f"report:{stuck.report_code}")).status == JobStatus.FAILED

    async with services.session_factory() as session:
        fresh = await ReportWorkflow(session, workers).request_nep_report(
            as_student(student), student.id, internship.id
        )
    assert fresh.report_code != stuck.report_code
    assert (await queue.get_counts()).waiting == 1

    abandoned = await load_report(services.session_factory, stuck.report_code)
    assert abandoned.status == "failed"
    assert abandoned.failed_reason == STALLED_REASON

    [job] = await workers.drain("report")
    assert job.status == JobStatus.COMPLETED
    assert (await load_report(services.session_factory, fresh.report_code)).status == "completed"


async def test_students_request_only_their_own_reports(workers, services, seed):
    _, _, internship, student = await setup_internship(seed)
    stranger = await seed.student()

    async with services.session_factory() as session:
        workflow = ReportWorkflow(session, workers)
        with pytest.raises(PermissionDeniedError):
            await workflow.request_nep_report(as_student(stranger), student.id, internship.id)
        with pytest.raises(PermissionDeniedError):
            await workflow.request_recommendation_letter(as_student(student), student.id, internship.id)
        with pytest.raises(PermissionDeniedError):
            await workflow.request_admin_report(as_student(student))


async def test_certificate_records_url_without_touching_the_ledger(workers, services, seed):
    _, _, internship, student = await setup_internship(seed, hours=(30, 30))

    async with services.session_factory() as session:
        report = await ReportWorkflow(session, workers).request_completion_certificate(
            ADMIN, student.id, internship.id
        )
    [job] = await workers.drain("report")
    assert job.status == JobStatus.COMPLETED
    assert job.payload["creditsEarned"] == 2

    async with services.session_factory() as session:
        completion = (
            await session.execute(
                select(InternshipCompletion).where(InternshipCompletion.student_id == student.id)
            )
        ).scalar_one()
        ledger = await session.get(Student, student.id)
    assert completion.certificate_url == f"/uploads/certificates/{report.report_code}.docx"
    assert completion.credits_earned == 2
    assert completion.credits_settled == 0
    assert ledger.credits_earned == 0


async def test_recommendation_letter_from_mentor(workers, services, seed, ai_provider):
    mentor, _, internship, student = await setup_internship(seed)

    async with services.session_factory() as session:
        report = await ReportWorkflow(session, workers).request_recommendation_letter(
            Principal(identity=str(mentor.id), role=Role.MENTOR), student.id, internship.id
        )
    [job] = await workers.drain("report")
    assert job.status == JobStatus.COMPLETED
    assert job.payload["mentorId"] == str(mentor.id)

    stored = await load_report(services.session_factory, report.report_code)
    assert stored.file_url.startswith("/uploads/letters/")
    assert "outstanding intern" in stored.sections[0]["content"]
    assert any("recommendation letter" in prompt for prompt in ai_provider.prompts)


async def test_admin_report_counts_platform_activity(workers, services, seed):
    await setup_internship(seed)

    async with services.session_factory() as session:
        report = await ReportWorkflow(session, workers).request_admin_report(ADMIN, start="2020-01-01T00:00:00Z")
    assert report.student_id is None

    [job] = await workers.drain("report")
    assert job.status == JobStatus.COMPLETED

    stored = await load_report(services.session_factory, report.report_code)
    assert stored.extra_data["metrics"] == {
        "students": 1,
        "companies": 1,
        "approvedInternships": 0,
        "applications": 0,
    }
    assert stored.sections[1]["content"] == ["Applications are growing"]
    assert stored.sections[2]["content"] == "No critical risks"

    [notice] = await workers.get_queue("notification").list_jobs([JobStatus.WAITING])
    assert notice.name == "notify-admin"
    assert notice.payload["adminId"] == "admin-1"


async def test_retryable_failure_keeps_report_processing_until_final_attempt(workers, services, seed, ai_provider):
    _, _, internship, student = await setup_internship(seed)
    ai_provider.reply = CollaboratorError("provider down")
    payload = {"reportId": "RPT-FAILS", "studentId": str(student.id), "internshipId": str(internship.id)}

    await workers.enqueue("report", "generate-nep-report", payload, attempts=2, job_id="report:RPT-FAILS")
    [job] = await workers.drain("report")
    assert job.status == JobStatus.DELAYED
    assert (await load_report(services.session_factory, "RPT-FAILS")).status == "processing"

    await workers.get_queue("report").promote(job.id)
    [job] = await workers.drain("report")
    assert job.status == JobStatus.FAILED

    stored = await load_report(services.session_factory, "RPT-FAILS")
    assert stored.status == "failed"
    assert "provider down" in stored.failed_reason
    assert stored.file_url is None


async def test_unknown_student_fails_report_immediately(workers, services, seed):
    company = await seed.company()
    internship = await seed.internship(company)
    payload = {"reportId": "RPT-GHOST", "studentId": str(uuid.uuid4()), "internshipId": str(internship.id)}

    await workers.enqueue("report", "generate-nep-report", payload)
    [job] = await workers.drain("report")
    assert job.status == JobStatus.FAILED
    assert job.attempts_made == 1

    stored = await load_report(services.session_factory, "RPT-GHOST")
    assert stored.status == "failed"
    assert stored.failed_reason.startswith("NotFoundError")


async def test_payload_without_report_id_is_rejected(workers, services):
    await workers.enqueue("report", "generate-admin-report", {"dateRange": {}})

    [job] = await workers.drain("report")
    assert job.status == JobStatus.FAILED
    async with services.session_factory() as session:
        assert (await session.execute(select(Report))).scalars().all() == []

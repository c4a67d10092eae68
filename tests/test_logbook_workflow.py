import pytest
from pydantic import ValidationError

from app.core.exceptions import DuplicateEntityError, InvalidPayloadError, InvalidTransitionError
from app.core.security import Principal, Role
from app.models import Student
from app.queues.models import JobStatus
from app.schemas.logbook import LogbookSubmission
from app.workflows import LogbookWorkflow


def as_student(student):
    return Principal(identity=str(student.id), role=Role.STUDENT)


def as_mentor(mentor):
    return Principal(identity=str(mentor.id), role=Role.MENTOR)


def as_company(company):
    return Principal(identity=str(company.id), role=Role.COMPANY)


def submission(internship, week=1, **fields):
    return LogbookSubmission(
        internshipId=str(internship.id),
        weekNumber=week,
        hoursWorked=fields.pop("hours", 20),
        activities="Built the attendance API",
        **fields,
    )


async def waiting(registry, key):
    await registry.wait_for_background()
    return await registry.get_queue(key).list_jobs([JobStatus.WAITING], limit=100)


def test_submission_schema_bounds():
    with pytest.raises(ValidationError):
        LogbookSubmission(internshipId="x", weekNumber=1, hoursWorked=61, activities="Too much")
    with pytest.raises(ValidationError):
        LogbookSubmission(internshipId="x", weekNumber=0, hoursWorked=10, activities="Week zero")
    with pytest.raises(ValidationError):
        LogbookSubmission(internshipId="x", weekNumber=1, hoursWorked=10, activities="")


async def test_submit_queues_summary_generation(session_factory, registry, seed):
    company = await seed.company()
    internship = await seed.internship(company)
    student = await seed.student()

    async with session_factory() as session:
        logbook = await LogbookWorkflow(session, registry).submit(as_student(student), submission(internship))

    assert logbook.status == "submitted"
    assert logbook.submitted_at is not None
    assert logbook.company_id == company.id

    [job] = await waiting(registry, "logbook")
    assert job.name == "generate-summary"
    assert job.payload == {"logbookId": str(logbook.id)}


async def test_draft_is_queued_only_when_submitted(session_factory, registry, seed):
    company = await seed.company()
    internship = await seed.internship(company)
    student = await seed.student()

    async with session_factory() as session:
        workflow = LogbookWorkflow(session, registry)
        draft = await workflow.submit(as_student(student), submission(internship, draft=True))
        assert draft.status == "draft"
        assert await waiting(registry, "logbook") == []

        submitted = await workflow.submit_draft(as_student(student), draft.id)
        assert submitted.status == "submitted"

        with pytest.raises(DuplicateEntityError):
            await workflow.submit(as_student(student), submission(internship))

    assert len(await waiting(registry, "logbook")) == 1


async def test_mentor_approval_adds_pending_credits(session_factory, registry, seed):
    mentor = await seed.mentor()
    company = await seed.company()
    internship = await seed.internship(company)
    student = await seed.student(mentor=mentor)
    logbook = await seed.logbook(student, internship, status="pending_mentor_review")

    async with session_factory() as session:
        workflow = LogbookWorkflow(session, registry)
        with pytest.raises(InvalidPayloadError):
            await workflow.mentor_approve(as_mentor(mentor), logbook.id, credits_approved=-1)
        approved = await workflow.mentor_approve(as_mentor(mentor), logbook.id, credits_approved=2, comments="Good")

    assert approved.status == "pending_company_review"
    assert approved.mentor_review["credits_approved"] == 2

    async with session_factory() as session:
        assert (await session.get(Student, student.id)).credits_pending == 2

    [email] = await waiting(registry, "email")
    assert email.name == "logbook-approved"
    assert email.payload["creditsApproved"] == 2


async def test_revision_and_resubmission(session_factory, registry, seed):
    mentor = await seed.mentor()
    company = await seed.company()
    internship = await seed.internship(company)
    student = await seed.student(mentor=mentor)
    logbook = await seed.logbook(student, internship, status="pending_mentor_review")

    async with session_factory() as session:
        workflow = LogbookWorkflow(session, registry)
        with pytest.raises(InvalidPayloadError):
            await workflow.mentor_request_revision(as_mentor(mentor), logbook.id)

        revised = await workflow.mentor_request_revision(
            as_mentor(mentor), logbook.id, "Describe your tasks", suggestions=["List the endpoints"]
        )
        assert revised.status == "needs_revision"
        assert revised.mentor_review["suggestions"] == ["List the endpoints"]

        with pytest.raises(InvalidPayloadError):
            await workflow.resubmit(as_student(student), logbook.id, week_number=2)
        with pytest.raises(InvalidPayloadError):
            await workflow.resubmit(as_student(student), logbook.id, hours_worked=75)

        resubmitted = await workflow.resubmit(
            as_student(student), logbook.id, activities="Built and documented the attendance API", hours_worked=24
        )
        assert resubmitted.status == "submitted"
        assert resubmitted.hours_worked == 24

    notifications = await waiting(registry, "notification")
    assert [job.payload["priority"] for job in notifications] == ["high"]
    [summary_job] = await waiting(registry, "logbook")
    assert summary_job.payload["logbookId"] == str(logbook.id)


async def test_company_feedback_then_completion(session_factory, registry, seed):
    company = await seed.company()
    internship = await seed.internship(company)
    student = await seed.student()
    logbook = await seed.logbook(student, internship, status="pending_company_review")

    async with session_factory() as session:
        workflow = LogbookWorkflow(session, registry)
        with pytest.raises(InvalidPayloadError):
            await workflow.company_feedback(as_company(company), logbook.id)
        approved = await workflow.company_feedback(as_company(company), logbook.id, "Great week", rating=5)
        assert approved.status == "approved"
        assert approved.company_feedback["rating"] == 5

        completed = await workflow.complete(as_company(company), logbook.id)
        assert completed.status == "completed"
        with pytest.raises(InvalidTransitionError):
            await workflow.complete(as_company(company), logbook.id)

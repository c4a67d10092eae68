from datetime import timedelta

import pytest

from app.core.exceptions import (
    DuplicateEntityError,
    InvalidPayloadError,
    InvalidTransitionError,
    PermissionDeniedError,
)
from app.core.security import Principal, Role
from app.models import Application, Internship, Notification
from app.queues.models import JobStatus
from app.utils.helpers import utcnow
from app.workflows import ApplicationWorkflow


def as_student(student):
    return Principal(identity=str(student.id), role=Role.STUDENT)


def as_mentor(mentor):
    return Principal(identity=str(mentor.id), role=Role.MENTOR)


def as_company(company):
    return Principal(identity=str(company.id), role=Role.COMPANY)


async def queued(registry, key):
    await registry.wait_for_background()
    jobs = await registry.get_queue(key).list_jobs([JobStatus.WAITING], limit=100)
    return sorted(jobs, key=lambda job: int(job.id))


async def test_apply_records_application_and_queues_confirmation(session_factory, registry, seed):
    company = await seed.company()
    internship = await seed.internship(company)
    student = await seed.student()

    async with session_factory() as session:
        application = await ApplicationWorkflow(session, registry).apply(
            as_student(student), internship.id, "I enjoy building APIs"
        )

    assert application.status == "pending"
    assert application.company_id == company.id
    assert [event["event"] for event in application.timeline] == ["applied"]

    async with session_factory() as session:
        assert (await session.get(Internship, internship.id)).applied_count == 1

    [email] = await queued(registry, "email")
    assert email.name == "application-submitted"
    assert email.payload["email"] == student.email
    assert email.payload["companyName"] == "Acme Labs"


async def test_apply_guards(session_factory, registry, seed):
    company = await seed.company()
    open_internship = await seed.internship(company)
    draft = await seed.internship(company, status="draft")
    expired = await seed.internship(company, application_deadline=utcnow() - timedelta(days=1))
    student = await seed.student()

    async with session_factory() as session:
        workflow = ApplicationWorkflow(session, registry)
        with pytest.raises(InvalidPayloadError):
            await workflow.apply(as_student(student), open_internship.id, "   ")
        with pytest.raises(PermissionDeniedError):
            await workflow.apply(as_company(company), open_internship.id, "hello")
        with pytest.raises(InvalidTransitionError):
            await workflow.apply(as_student(student), draft.id, "hello")
        with pytest.raises(InvalidTransitionError):
            await workflow.apply(as_student(student), expired.id, "hello")

        await workflow.apply(as_student(student), open_internship.id, "hello")
        with pytest.raises(DuplicateEntityError):
            await workflow.apply(as_student(student), open_internship.id, "again")


async def test_review_flow_to_acceptance(session_factory, registry, seed):
    mentor = await seed.mentor()
    company = await seed.company()
    internship = await seed.internship(company)
    student = await seed.student(mentor=mentor)
    application = await seed.application(student, internship)

    async with session_factory() as session:
        workflow = ApplicationWorkflow(session, registry)
        await workflow.mentor_approve(as_mentor(mentor), application.id, "Strong profile")
        await workflow.shortlist(as_company(company), application.id)
        accepted = await workflow.accept(as_company(company), application.id, "Join on Monday")

        assert accepted.status == "accepted"
        assert accepted.mentor_approval["decision"] == "approved"
        assert accepted.company_feedback["decision"] == "accepted"
        assert [e["event"] for e in accepted.timeline] == ["mentor_approve", "shortlist", "accept"]

        with pytest.raises(InvalidTransitionError):
            await workflow.withdraw(as_student(student), application.id)

    notifications = await queued(registry, "notification")
    assert [job.name for job in notifications] == ["notify-student"] * 3
    assert notifications[-1].payload["priority"] == "high"
    assert notifications[-1].payload["metadata"]["status"] == "accepted"

    [email] = await queued(registry, "email")
    assert email.name == "application-approved"
    assert email.payload["nextSteps"] == "Join on Monday"


async def test_only_the_assigned_mentor_reviews(session_factory, registry, seed):
    mentor = await seed.mentor()
    other_mentor = await seed.mentor()
    company = await seed.company()
    internship = await seed.internship(company)
    student = await seed.student(mentor=mentor)
    application = await seed.application(student, internship)
    approved = await seed.application(student, await seed.internship(company), status="mentor_approved")

    async with session_factory() as session:
        workflow = ApplicationWorkflow(session, registry)
        with pytest.raises(PermissionDeniedError):
            await workflow.mentor_approve(as_mentor(other_mentor), application.id)
        # Shortlisting is the company's move even once the state allows it
        with pytest.raises(PermissionDeniedError):
            await workflow.shortlist(as_student(student), approved.id)


async def test_mentor_rejection_needs_comments_and_emails_student(session_factory, registry, seed):
    mentor = await seed.mentor()
    company = await seed.company()
    internship = await seed.internship(company)
    student = await seed.student(mentor=mentor)
    application = await seed.application(student, internship)

    async with session_factory() as session:
        workflow = ApplicationWorkflow(session, registry)
        with pytest.raises(InvalidPayloadError):
            await workflow.mentor_reject(as_mentor(mentor), application.id)

        rejected = await workflow.mentor_reject(as_mentor(mentor), application.id, "Resume incomplete")
        assert rejected.status == "mentor_rejected"
        assert rejected.rejection_reason == "Resume incomplete"

    [email] = await queued(registry, "email")
    assert email.name == "application-rejected"
    assert email.payload["feedback"] == "Resume incomplete"


async def test_withdraw_releases_the_applied_count(session_factory, registry, seed):
    company = await seed.company()
    internship = await seed.internship(company)
    student = await seed.student()

    async with session_factory() as session:
        workflow = ApplicationWorkflow(session, registry)
        application = await workflow.apply(as_student(student), internship.id, "hello")
        withdrawn = await workflow.withdraw(as_student(student), application.id, "Took another offer")
        assert withdrawn.status == "withdrawn"

    async with session_factory() as session:
        assert (await session.get(Internship, internship.id)).applied_count == 0


def test_json_columns_get_their_own_type():
    columns = [
        Application.__table__.c.timeline,
        Application.__table__.c.mentor_approval,
        Notification.__table__.c.deliveries,
    ]
    assert len({id(column.type) for column in columns}) == len(columns)

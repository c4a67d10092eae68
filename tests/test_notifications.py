import asyncio

from sqlalchemy import select

from app.models import Notification
from app.queues.models import JobStatus

ALL_CHANNELS = {"email": True, "sms": True, "realtime": True}


async def load_notification(session_factory, code):
    async with session_factory() as session:
        return (
            await session.execute(select(Notification).where(Notification.notification_code == code))
        ).scalar_one()


async def test_email_failure_does_not_block_sms(services, seed, email_sender, sms):
    student = await seed.student(phone="+919800000001", notification_channels=ALL_CHANNELS)
    email_sender.fail_with = "SMTP down"

    result = await services.notifications.notify_user(
        user_id=str(student.id),
        role="student",
        title="Logbook ready for review",
        message="Your week 3 summary is ready.",
        priority="high",
    )

    email, text = result["deliveries"]
    assert email["channel"] == "email"
    assert email["status"] == "failed"
    assert email["metadata"]["reason"] == "All email providers failed"
    assert text["channel"] == "sms"
    assert text["status"] == "sent"
    assert "sent_at" in text
    assert sms.sent == [("+919800000001", "Your week 3 summary is ready.")]

    stored = await load_notification(services.session_factory, result["notification_id"])
    assert stored.priority == "high"
    assert [d["status"] for d in stored.deliveries] == ["failed", "sent"]


async def test_student_defaults_to_email_only(services, seed, email_sender, sms):
    student = await seed.student(phone="+919800000002")

    result = await services.notifications.notify_user(
        user_id=str(student.id), role="student", title="Hello", message="Welcome aboard"
    )

    assert result["channels_used"] == ["email", "realtime"]
    assert [d["channel"] for d in result["deliveries"]] == ["email"]
    assert email_sender.sent[0].to == student.email
    assert sms.sent == []


async def test_overrides_and_missing_contact_details(services, seed, sms):
    student = await seed.student(notification_channels=ALL_CHANNELS)

    result = await services.notifications.notify_user(
        user_id=str(student.id),
        role="student",
        title="Heads up",
        message="Mentor left a comment",
        channel_overrides={"email": False},
    )

    [delivery] = result["deliveries"]
    assert delivery == {"channel": "sms", "status": "failed", "metadata": {"reason": "missing-phone"}}
    assert sms.sent == []


async def test_unknown_recipient_still_gets_explicit_email(services, email_sender):
    result = await services.notifications.notify_user(
        user_id="not-a-uuid",
        role="company",
        title="Verification pending",
        message="We are reviewing your documents.",
        email="hr@acme.test",
    )

    assert [d["status"] for d in result["deliveries"]] == ["sent"]
    assert email_sender.sent[0].to == "hr@acme.test"
    assert result["notification_id"] is not None


async def test_notify_job_runs_through_the_queue(workers, seed, email_sender):
    mentor = await seed.mentor()
    await workers.enqueue(
        "notification",
        "notify-mentor",
        {"mentorId": str(mentor.id), "title": "Logbook ready", "message": "Please review week 2."},
    )

    [job] = await workers.drain("notification")
    assert job.status == JobStatus.COMPLETED
    assert "email" in job.result["channels_used"]
    assert email_sender.sent[0].to == mentor.email


async def test_bad_priority_fails_without_retry(workers):
    await workers.enqueue(
        "notification",
        "notify-student",
        {"studentId": "s-1", "title": "Hi", "message": "There", "priority": "urgent"},
    )

    [job] = await workers.drain("notification")
    assert job.status == JobStatus.FAILED
    assert job.attempts_made == 1
    assert job.failure_reason.startswith("InvalidPayloadError")


async def test_email_job_failure_is_logged_and_retried(workers, services, seed, email_sender):
    student = await seed.student()
    created = await services.notifications.notify_user(
        user_id=str(student.id),
        role="student",
        title="Report ready",
        message="Download it",
        channel_overrides={"email": False},
    )
    email_sender.fail_with = "SMTP down"

    await workers.enqueue(
        "email",
        "report-ready",
        {"email": student.email, "reportTitle": "NEP report", "notificationId": created["notification_id"]},
    )
    [job] = await workers.drain("email")
    assert job.status == JobStatus.DELAYED

    email_sender.fail_with = None
    await asyncio.sleep(0.05)
    await workers.run_maintenance()
    [job] = await workers.drain("email")
    assert job.status == JobStatus.COMPLETED
    assert job.result["provider"] == "recording"

    stored = await load_notification(services.session_factory, created["notification_id"])
    assert [(d["channel"], d["status"]) for d in stored.deliveries] == [("email", "failed"), ("email", "sent")]


async def test_sms_job_requires_recipient(workers):
    await workers.enqueue("notification", "send-sms", {"message": "No number"})

    [job] = await workers.drain("notification")
    assert job.status == JobStatus.FAILED
    assert "to" in job.failure_reason

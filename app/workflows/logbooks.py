"""Weekly logbook workflow: submission, mentor review, company feedback."""

import logging
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import DuplicateEntityError, InvalidPayloadError, PermissionDeniedError
from app.core.security import Principal, Role
from app.models import Internship, Logbook, Student
from app.queues.models import Job
from app.schemas.logbook import LogbookSubmission
from app.services.credit_service import add_pending_credits
from app.utils.constants import MAX_WEEKLY_HOURS
from app.utils.helpers import generate_code, utcnow
from app.workflows.base import Workflow, ensure_actor, review_record
from app.workflows.machine import StateMachine, transition

logger = logging.getLogger(__name__)

LOGBOOK_MACHINE = StateMachine(
    "logbook",
    [
        transition("submit_draft", ["draft"], "submitted", [Role.STUDENT]),
        transition(
            "mentor_approve",
            ["submitted", "pending_mentor_review"],
            "pending_company_review",
            [Role.MENTOR],
        ),
        transition(
            "mentor_request_revision",
            ["submitted", "pending_mentor_review"],
            "needs_revision",
            [Role.MENTOR],
            required=["comments"],
        ),
        transition("resubmit", ["needs_revision"], "submitted", [Role.STUDENT]),
        transition(
            "company_feedback",
            ["pending_company_review"],
            "approved",
            [Role.COMPANY],
            required=["comments"],
        ),
        transition("complete", ["approved"], "completed", [Role.COMPANY, Role.ADMIN]),
    ],
    terminal_states=["completed"],
)

# Fields a student may change when resubmitting after a revision request
EDITABLE_FIELDS = ("hours_worked", "activities", "tasks_completed", "skills_used", "challenges", "learnings")


class LogbookWorkflow(Workflow):
    """Logbook lifecycle; the AI advance to pending_mentor_review lives in the summary service."""

    async def submit(self, principal: Principal, submission: LogbookSubmission) -> Logbook:
        if principal.role != Role.STUDENT:
            raise PermissionDeniedError("Only students can submit logbooks")
        student = await self.load(Student, principal.identity, "Student")
        internship = await self.load(Internship, submission.internship_id, "Internship")

        existing = (
            await self.session.execute(
                select(Logbook.id).where(
                    Logbook.student_id == student.id,
                    Logbook.internship_id == internship.id,
                    Logbook.week_number == submission.week_number,
                )
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateEntityError(f"Logbook already exists for week {submission.week_number}")

        now = utcnow()
        logbook = Logbook(
            logbook_code=generate_code("LOG"),
            student_id=student.id,
            internship_id=internship.id,
            company_id=internship.company_id,
            week_number=submission.week_number,
            start_date=submission.start_date,
            end_date=submission.end_date,
            hours_worked=submission.hours_worked,
            activities=submission.activities,
            tasks_completed=list(submission.tasks_completed),
            skills_used=list(submission.skills_used),
            challenges=submission.challenges,
            learnings=submission.learnings,
            status="draft" if submission.draft else "submitted",
            submitted_at=None if submission.draft else now,
        )
        self.session.add(logbook)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise DuplicateEntityError(f"Logbook already exists for week {submission.week_number}") from None

        logger.info(f"📓 Logbook {logbook.logbook_code} week {logbook.week_number} ({logbook.status})")
        if logbook.status == "submitted":
            await self._enqueue_summary(logbook)
        return logbook

    async def _enqueue_summary(self, logbook: Logbook) -> Job:
        return await self.registry.enqueue("logbook", "generate-summary", {"logbookId": str(logbook.id)})

    async def _load_for(self, principal: Principal, logbook_id: Any, action: str, **fields: Any):
        logbook = await self.load(Logbook, logbook_id, "Logbook", for_update=True)
        t = LOGBOOK_MACHINE.resolve(action, logbook.status, principal.role, fields)

        if principal.role == Role.STUDENT:
            ensure_actor(principal, logbook.student_id, "logbook")
        elif principal.role == Role.MENTOR:
            student = await self.load(Student, logbook.student_id, "Student")
            if student.mentor_id is not None:
                ensure_actor(principal, student.mentor_id, "logbook")
        elif principal.role == Role.COMPANY:
            ensure_actor(principal, logbook.company_id, "logbook")
        return logbook, t

    async def submit_draft(self, principal: Principal, logbook_id: Any) -> Logbook:
        logbook, t = await self._load_for(principal, logbook_id, "submit_draft")
        logbook.status = t.target
        logbook.submitted_at = utcnow()
        await self.session.commit()
        await self._enqueue_summary(logbook)
        return logbook

    async def mentor_approve(
        self,
        principal: Principal,
        logbook_id: Any,
        credits_approved: int = 0,
        comments: Optional[str] = None,
    ) -> Logbook:
        """Approve and add ``credits_approved`` to the student's pending credits atomically."""
        if credits_approved < 0:
            raise InvalidPayloadError("credits_approved cannot be negative")
        logbook, t = await self._load_for(principal, logbook_id, "mentor_approve")
        logbook.status = t.target
        logbook.mentor_review = review_record(
            principal, "approved", comments, status="approved", credits_approved=credits_approved
        )
        await add_pending_credits(self.session, logbook.student_id, credits_approved)
        await self.session.commit()

        student = await self.session.get(Student, logbook.student_id)
        self.email(
            "logbook-approved",
            {
                "email": student.email,
                "studentName": student.full_name,
                "weekNumber": logbook.week_number,
                "creditsApproved": credits_approved,
            },
        )
        logger.info(f"✅ Logbook {logbook.logbook_code} approved by mentor (+{credits_approved} pending)")
        return logbook

    async def mentor_request_revision(
        self,
        principal: Principal,
        logbook_id: Any,
        comments: Optional[str] = None,
        suggestions: Optional[List[str]] = None,
    ) -> Logbook:
        logbook, t = await self._load_for(principal, logbook_id, "mentor_request_revision", comments=comments)
        logbook.status = t.target
        logbook.mentor_review = review_record(
            principal, "needs_revision", comments, status="needs_revision", suggestions=suggestions
        )
        await self.session.commit()
        self.notify(
            "notify-student",
            {
                "studentId": str(logbook.student_id),
                "title": f"Week {logbook.week_number} logbook needs revision",
                "message": comments,
                "priority": "high",
                "type": "logbook",
                "metadata": {"logbookId": str(logbook.id)},
            },
        )
        return logbook

    async def resubmit(self, principal: Principal, logbook_id: Any, **changes: Any) -> Logbook:
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise InvalidPayloadError(f"Cannot change {', '.join(sorted(unknown))} on resubmit")
        hours = changes.get("hours_worked")
        if hours is not None and not 0 <= hours <= MAX_WEEKLY_HOURS:
            raise InvalidPayloadError(f"hours_worked must be between 0 and {MAX_WEEKLY_HOURS}")

        logbook, t = await self._load_for(principal, logbook_id, "resubmit")
        for name, value in changes.items():
            if value is not None:
                setattr(logbook, name, value)
        logbook.status = t.target
        logbook.submitted_at = utcnow()
        await self.session.commit()
        await self._enqueue_summary(logbook)
        return logbook

    async def company_feedback(
        self,
        principal: Principal,
        logbook_id: Any,
        comments: Optional[str] = None,
        rating: Optional[int] = None,
    ) -> Logbook:
        logbook, t = await self._load_for(principal, logbook_id, "company_feedback", comments=comments)
        logbook.status = t.target
        logbook.company_feedback = review_record(principal, "approved", comments, rating=rating)
        await self.session.commit()
        self.notify(
            "notify-student",
            {
                "studentId": str(logbook.student_id),
                "title": f"Week {logbook.week_number} logbook approved",
                "message": "The company reviewed your logbook.",
                "type": "logbook",
                "metadata": {"logbookId": str(logbook.id)},
            },
        )
        return logbook

    async def complete(self, principal: Principal, logbook_id: Any) -> Logbook:
        logbook, t = await self._load_for(principal, logbook_id, "complete")
        logbook.status = t.target
        await self.session.commit()
        return logbook

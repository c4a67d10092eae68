"""Internship application workflow."""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    DuplicateEntityError,
    InvalidPayloadError,
    InvalidTransitionError,
    PermissionDeniedError,
)
from app.core.security import Principal, Role
from app.models import Application, Company, Internship, Student
from app.utils.helpers import generate_code, utcnow
from app.workflows.base import Workflow, ensure_actor, review_record
from app.workflows.machine import StateMachine, transition

logger = logging.getLogger(__name__)

APPLICATION_MACHINE = StateMachine(
    "application",
    [
        transition("mentor_approve", ["pending"], "mentor_approved", [Role.MENTOR]),
        transition("mentor_reject", ["pending"], "mentor_rejected", [Role.MENTOR], required=["comments"]),
        transition("shortlist", ["mentor_approved"], "shortlisted", [Role.COMPANY]),
        transition(
            "company_reject", ["mentor_approved", "shortlisted"], "rejected", [Role.COMPANY], required=["reason"]
        ),
        transition("accept", ["shortlisted"], "accepted", [Role.COMPANY]),
        transition("withdraw", ["pending", "mentor_approved"], "withdrawn", [Role.STUDENT]),
    ],
    terminal_states=["accepted", "rejected", "withdrawn", "mentor_rejected"],
)


def timeline_event(event: str, principal: Principal, notes: Optional[str] = None) -> Dict[str, Any]:
    return {
        "event": event,
        "performed_by": f"{principal.role.value}:{principal.identity}",
        "notes": notes,
        "timestamp": utcnow().isoformat(),
    }


class ApplicationWorkflow(Workflow):
    """Apply, review and withdraw internship applications."""

    async def apply(self, principal: Principal, internship_id: Any, cover_letter: Optional[str]) -> Application:
        if principal.role != Role.STUDENT:
            raise PermissionDeniedError("Only students can apply to internships")
        if not cover_letter or not cover_letter.strip():
            raise InvalidPayloadError("cover_letter required to apply", {"missing": ["cover_letter"]})

        student = await self.load(Student, principal.identity, "Student")
        internship = await self.load(Internship, internship_id, "Internship")
        if internship.status != "approved":
            raise InvalidTransitionError(f"Internship is {internship.status} and not accepting applications")
        if internship.application_deadline and internship.application_deadline < utcnow():
            raise InvalidTransitionError("Application deadline has passed")

        existing = (
            await self.session.execute(
                select(Application.id).where(
                    Application.student_id == student.id,
                    Application.internship_id == internship.id,
                )
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateEntityError("Already applied to this internship")

        application = Application(
            application_code=generate_code("APP"),
            student_id=student.id,
            internship_id=internship.id,
            company_id=internship.company_id,
            department=student.department,
            status="pending",
            cover_letter=cover_letter,
            timeline=[timeline_event("applied", principal)],
            applied_at=utcnow(),
        )
        self.session.add(application)
        await self.session.execute(
            update(Internship)
            .where(Internship.id == internship.id)
            .values(applied_count=Internship.applied_count + 1)
            .execution_options(synchronize_session=False)
        )
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise DuplicateEntityError("Already applied to this internship") from None

        company = await self.session.get(Company, internship.company_id)
        logger.info(f"📨 Application {application.application_code} submitted by {student.email}")
        self.email(
            "application-submitted",
            {
                "email": student.email,
                "studentName": student.full_name,
                "internshipTitle": internship.title,
                "companyName": company.company_name if company else None,
                "applicationId": application.application_code,
            },
        )
        return application

    async def _transition(
        self,
        principal: Principal,
        application_id: Any,
        action: str,
        notes: Optional[str] = None,
        **fields: Any,
    ):
        application = await self.load(Application, application_id, "Application", for_update=True)
        student = await self.load(Student, application.student_id, "Student")

        t = APPLICATION_MACHINE.resolve(action, application.status, principal.role, {"notes": notes, **fields})

        if principal.role == Role.STUDENT:
            ensure_actor(principal, application.student_id, "application")
        elif principal.role == Role.MENTOR and student.mentor_id is not None:
            ensure_actor(principal, student.mentor_id, "application")
        elif principal.role == Role.COMPANY:
            ensure_actor(principal, application.company_id, "application")

        application.status = t.target
        application.timeline.append(timeline_event(action, principal, notes))
        return application, student

    async def mentor_approve(self, principal: Principal, application_id: Any, comments: Optional[str] = None):
        application, student = await self._transition(principal, application_id, "mentor_approve", comments)
        application.mentor_approval = review_record(principal, "approved", comments)
        await self.session.commit()
        self._notify_student(application, "Application approved by mentor",
                             "Your mentor approved your application. It is now with the company.")
        return application

    async def mentor_reject(self, principal: Principal, application_id: Any, comments: Optional[str] = None):
        application, student = await self._transition(
            principal, application_id, "mentor_reject", comments, comments=comments
        )
        application.mentor_approval = review_record(principal, "rejected", comments)
        application.rejection_reason = comments
        await self.session.commit()
        self._notify_student(application, "Application not approved", comments)
        await self._rejection_email(student, application, comments)
        return application

    async def shortlist(self, principal: Principal, application_id: Any, comments: Optional[str] = None):
        application, _ = await self._transition(principal, application_id, "shortlist", comments)
        application.company_feedback = review_record(principal, "shortlisted", comments)
        await self.session.commit()
        self._notify_student(application, "You have been shortlisted",
                             "The company shortlisted your application.", priority="high")
        return application

    async def company_reject(self, principal: Principal, application_id: Any, reason: Optional[str] = None):
        application, student = await self._transition(
            principal, application_id, "company_reject", reason, reason=reason
        )
        application.company_feedback = review_record(principal, "rejected", reason)
        application.rejection_reason = reason
        await self.session.commit()
        self._notify_student(application, "Application update", reason)
        await self._rejection_email(student, application, reason)
        return application

    async def accept(self, principal: Principal, application_id: Any, comments: Optional[str] = None):
        application, student = await self._transition(principal, application_id, "accept", comments)
        application.company_feedback = review_record(principal, "accepted", comments)
        await self.session.commit()

        internship = await self.session.get(Internship, application.internship_id)
        self._notify_student(application, "Offer accepted 🎉",
                             "The company accepted your application.", priority="high")
        self.email(
            "application-approved",
            {
                "email": student.email,
                "studentName": student.full_name,
                "internshipTitle": internship.title if internship else None,
                "nextSteps": comments,
            },
        )
        return application

    async def withdraw(self, principal: Principal, application_id: Any, reason: Optional[str] = None):
        application, _ = await self._transition(principal, application_id, "withdraw", reason)
        await self.session.execute(
            update(Internship)
            .where(Internship.id == application.internship_id, Internship.applied_count > 0)
            .values(applied_count=Internship.applied_count - 1)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        logger.info(f"↩️  Application {application.application_code} withdrawn")
        return application

    def _notify_student(self, application: Application, title: str, message: Optional[str], priority: str = "medium"):
        self.notify(
            "notify-student",
            {
                "studentId": str(application.student_id),
                "title": title,
                "message": message or title,
                "priority": priority,
                "type": "application",
                "metadata": {"applicationId": application.application_code, "status": application.status},
            },
        )

    async def _rejection_email(self, student: Student, application: Application, feedback: Optional[str]):
        internship = await self.session.get(Internship, application.internship_id)
        self.email(
            "application-rejected",
            {
                "email": student.email,
                "studentName": student.full_name,
                "internshipTitle": internship.title if internship else None,
                "feedback": feedback,
            },
        )


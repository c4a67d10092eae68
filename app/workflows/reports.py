"""Report requests: create a pending Report and queue its generation."""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import func, select, update

from app.core.exceptions import PermissionDeniedError
from app.core.security import Principal, Role
from app.models import InternshipCompletion, Internship, Logbook, Report, Student
from app.queues.models import JobStatus
from app.services.credit_service import credits_for_hours
from app.utils.constants import CREDIT_BEARING_LOGBOOK_STATUSES
from app.utils.helpers import generate_code
from app.workflows.base import Workflow, as_uuid, ensure_actor

logger = logging.getLogger(__name__)

REPORT_JOBS = {
    "nep": "generate-nep-report",
    "completion": "generate-completion-certificate",
    "recommendation": "generate-recommendation-letter",
    "admin": "generate-admin-report",
}

ACTIVE_REPORT_STATUSES = ("pending", "processing")


class ReportWorkflow(Workflow):
    """Report requests are idempotent while an earlier request is still in flight."""

    async def _request(
        self,
        principal: Principal,
        report_type: str,
        payload: Dict[str, Any],
        student_id: Optional[str] = None,
        internship_id: Optional[str] = None,
    ) -> Report:
        active = (
            await self.session.execute(
                select(Report)
                .where(
                    Report.type == report_type,
                    Report.student_id == student_id,
                    Report.internship_id == internship_id,
                    Report.status.in_(ACTIVE_REPORT_STATUSES),
                )
                .order_by(Report.created_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()

        if active is not None:
            active = await self._abandon_if_dead(active)

        if active is None:
            report = Report(
                report_code=generate_code("RPT"),
                type=report_type,
                status="pending",
                student_id=student_id,
                internship_id=internship_id,
                requested_by=principal.identity,
                extra_data={"requestPayload": payload},
            )
            self.session.add(report)
            await self.session.commit()
            logger.info(f"📄 Report {report.report_code} ({report_type}) requested")
        else:
            report = active
            logger.info(f"📄 Report {report.report_code} ({report_type}) already {report.status}")

        await self.registry.enqueue(
            "report",
            REPORT_JOBS[report_type],
            {**payload, "reportId": report.report_code, "requestedBy": principal.identity},
            job_id=f"report:{report.report_code}",
        )
        return report

    async def _abandon_if_dead(self, report: Report) -> Optional[Report]:
        """Fail a pending report whose job already ended so a new one can be requested."""
        job = await self.registry.get_queue("report").get_job(f"report:{report.report_code}")
        if job is None or job.status not in (JobStatus.FAILED, JobStatus.COMPLETED):
            return report

        reason = job.failure_reason or f"Job ended {job.status.value} without updating the report"
        # The job may have finished the report since it was read
        await self.session.execute(
            update(Report)
            .where(Report.id == report.id, Report.status.in_(ACTIVE_REPORT_STATUSES))
            .values(status="failed", failed_reason=reason[:2000])
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        logger.warning(f"⚠️  Report {report.report_code} abandoned: {reason}")
        return None

    async def _student_scope(self, principal: Principal, student_id: Any, internship_id: Any):
        student = await self.load(Student, student_id, "Student")
        internship = await self.load(Internship, internship_id, "Internship")
        if principal.role == Role.STUDENT:
            ensure_actor(principal, student.id, "report")
        elif principal.role == Role.MENTOR and student.mentor_id is not None:
            ensure_actor(principal, student.mentor_id, "report")
        elif principal.role == Role.COMPANY:
            ensure_actor(principal, internship.company_id, "report")
        return student, internship

    async def request_nep_report(self, principal: Principal, student_id: Any, internship_id: Any) -> Report:
        student, internship = await self._student_scope(principal, student_id, internship_id)
        ids = {"studentId": str(student.id), "internshipId": str(internship.id)}
        return await self._request(principal, "nep", ids, ids["studentId"], ids["internshipId"])

    async def request_completion_certificate(
        self, principal: Principal, student_id: Any, internship_id: Any
    ) -> Report:
        student, internship = await self._student_scope(principal, student_id, internship_id)
        completion = (
            await self.session.execute(
                select(InternshipCompletion).where(
                    InternshipCompletion.student_id == student.id,
                    InternshipCompletion.internship_id == internship.id,
                )
            )
        ).scalar_one_or_none()
        if completion is not None:
            credits = completion.credits_earned
        else:
            hours = (
                await self.session.execute(
                    select(func.coalesce(func.sum(Logbook.hours_worked), 0)).where(
                        Logbook.student_id == student.id,
                        Logbook.internship_id == internship.id,
                        Logbook.status.in_(CREDIT_BEARING_LOGBOOK_STATUSES),
                    )
                )
            ).scalar_one()
            credits = credits_for_hours(float(hours))

        payload = {"studentId": str(student.id), "internshipId": str(internship.id), "creditsEarned": credits}
        return await self._request(principal, "completion", payload, payload["studentId"], payload["internshipId"])

    async def request_recommendation_letter(
        self, principal: Principal, student_id: Any, internship_id: Any
    ) -> Report:
        if principal.role not in (Role.MENTOR, Role.COMPANY, Role.ADMIN):
            raise PermissionDeniedError("Recommendation letters are requested by mentors, companies or admins")
        student, internship = await self._student_scope(principal, student_id, internship_id)
        payload = {"studentId": str(student.id), "internshipId": str(internship.id)}
        if principal.role == Role.MENTOR:
            payload["mentorId"] = str(as_uuid(principal.identity, "Mentor"))
        return await self._request(
            principal, "recommendation", payload, payload["studentId"], payload["internshipId"]
        )

    async def request_admin_report(
        self, principal: Principal, start: Optional[str] = None, end: Optional[str] = None
    ) -> Report:
        if principal.role != Role.ADMIN:
            raise PermissionDeniedError("Only admins can request platform reports")
        return await self._request(principal, "admin", {"dateRange": {"start": start, "end": end}})

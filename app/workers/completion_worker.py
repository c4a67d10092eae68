"""Completion worker for the ``completion-processing`` queue."""

import logging
from typing import Any, Dict

from sqlalchemy import func, select

from app.core.exceptions import NotFoundError
from app.db.session import session_scope
from app.models import Company, Internship, Logbook, Student
from app.queues.worker import HandlerRouter, JobContext
from app.schemas.jobs import ProcessCompletionPayload, RecalculateCreditsPayload, parse_payload
from app.services.credit_service import credits_for_hours, recalculate_credits, settle_completion
from app.utils.constants import CREDIT_BEARING_LOGBOOK_STATUSES
from app.utils.helpers import utcnow
from app.workers.context import WorkerServices

logger = logging.getLogger(__name__)


def certificate_key(student_id: Any, internship_id: Any, extension: str) -> str:
    # Fixed per pair so a retried job overwrites its own upload
    return f"certificates/{student_id}-{internship_id}.{extension}"


class CompletionJobs:
    def __init__(self, services: WorkerServices):
        self.services = services

    async def process_completion(self, ctx: JobContext) -> Dict[str, Any]:
        """
        Settle credits for a finished internship.

        The certificate is rendered and uploaded before the settlement
        transaction opens, so no row lock is held across I/O. Settlement
        moves the ledger by the difference from what was already applied,
        which makes a rerun with unchanged logbooks a no-op on the ledger.
        """
        payload = parse_payload(ProcessCompletionPayload, ctx.payload)
        services = self.services
        await ctx.update_progress(5)

        async with services.session_factory() as session:
            student = await session.get(Student, payload.student_id)
            if student is None:
                raise NotFoundError("Student", payload.student_id)
            internship = await session.get(Internship, payload.internship_id)
            if internship is None:
                raise NotFoundError("Internship", payload.internship_id)
            company = await session.get(Company, internship.company_id)
            total_hours = (
                await session.execute(
                    select(func.coalesce(func.sum(Logbook.hours_worked), 0)).where(
                        Logbook.student_id == student.id,
                        Logbook.internship_id == internship.id,
                        Logbook.status.in_(CREDIT_BEARING_LOGBOOK_STATUSES),
                    )
                )
            ).scalar_one()

        total_hours = float(total_hours)
        credits = credits_for_hours(total_hours, services.settings.HOURS_PER_CREDIT)
        await ctx.update_progress(30)

        documents = services.documents
        certificate = await documents.generate_certificate(
            {
                "student_name": student.full_name,
                "internship_title": internship.title,
                "company_name": company.company_name if company else "Partner Company",
                "total_hours": total_hours,
                "credits_earned": credits,
                "issued_on": f"{utcnow():%d %B %Y}",
            }
        )
        upload = await services.storage.upload_file(
            certificate,
            f"certificate.{documents.extension}",
            content_type=documents.content_type,
            key=certificate_key(student.id, internship.id, documents.extension),
        )
        await ctx.update_progress(60)

        async with session_scope(services.session_factory) as session:
            settlement = await settle_completion(
                session,
                student_id=student.id,
                internship_id=internship.id,
                company_id=internship.company_id,
                total_hours=total_hours,
                credits=credits,
                certificate_url=upload.url,
            )
        await ctx.update_progress(85)

        await services.registry.enqueue(
            "notification",
            "notify-student",
            {
                "studentId": str(student.id),
                "title": "Internship completion recorded",
                "message": f"You earned {credits} credit(s) for {internship.title}. Your certificate is ready.",
                "priority": "high",
                "actionUrl": upload.url,
                "type": "completion",
                "metadata": {"completionId": settlement.completion_code, "creditsEarned": credits},
            },
        )
        await services.registry.enqueue(
            "email",
            "internship-completion",
            {
                "email": student.email,
                "name": student.full_name,
                "companyName": company.company_name if company else None,
                "creditsEarned": credits,
                "certificateUrl": upload.url,
            },
        )
        await ctx.update_progress(100)

        logger.info(
            f"🎓 Completion processed for {student.email}: {total_hours}h -> {credits} credit(s) "
            f"(ledger delta {settlement.delta})"
        )
        return {
            "completionId": str(settlement.completion_id),
            "completionCode": settlement.completion_code,
            "creditsEarned": credits,
            "certificateUrl": upload.url,
            "totalHours": total_hours,
            "creditDelta": settlement.delta,
        }

    async def recalculate_credits(self, ctx: JobContext) -> Dict[str, Any]:
        payload = parse_payload(RecalculateCreditsPayload, ctx.payload)
        async with session_scope(self.services.session_factory) as session:
            result = await recalculate_credits(session, payload.student_id)
        return {"studentId": str(payload.student_id), "totalCredits": result["total_credits"]}

    def router(self) -> HandlerRouter:
        return HandlerRouter(
            {
                "process-completion": self.process_completion,
                "recalculate-credits": self.recalculate_credits,
            }
        )

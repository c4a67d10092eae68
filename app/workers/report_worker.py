"""Report worker for the ``report-generation`` queue."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

from sqlalchemy import func, select

from app.core.exceptions import NotFoundError, is_retryable
from app.db.session import session_scope
from app.models import Application, Company, Internship, InternshipCompletion, Logbook, Report, Student
from app.queues.worker import HandlerRouter, JobContext
from app.schemas.jobs import (
    AdminReportPayload,
    CompletionCertificatePayload,
    NepReportPayload,
    RecommendationLetterPayload,
    ReportPayload,
    parse_payload,
)
from app.services.credit_service import credits_for_hours
from app.utils.constants import CREDIT_BEARING_LOGBOOK_STATUSES
from app.utils.helpers import generate_code, utcnow
from app.workers.context import WorkerServices

logger = logging.getLogger(__name__)


@dataclass
class ReportOutput:
    document: bytes
    folder: str
    sections: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    notification: Optional[Tuple[str, Dict[str, Any]]] = None
    on_uploaded: Optional[Callable[[str], Awaitable[None]]] = None


@dataclass
class StudentContext:
    student: Student
    internship: Internship
    company: Optional[Company]
    logbooks: List[Logbook]

    @property
    def total_hours(self) -> float:
        return float(sum(lb.hours_worked or 0 for lb in self.logbooks))

    @property
    def company_name(self) -> str:
        return self.company.company_name if self.company else "Partner Company"


def _text(value: Any, default: str) -> str:
    return value.strip() if isinstance(value, str) and value.strip() else default


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None)


def _items(value: Any, default: str) -> Any:
    if isinstance(value, list):
        items = [str(item).strip() for item in value if str(item).strip()]
        if items:
            return items
    return default


class ReportJobs:
    """
    Every report job marks its Report ``processing``, gathers entities, computes
    totals locally, asks the AI for narrative only, renders, uploads and marks
    the Report ``completed``. An unrecoverable error or the last attempt marks
    it ``failed`` before the error propagates to the queue.
    """

    def __init__(self, services: WorkerServices):
        self.services = services

    # --- report record ------------------------------------------------------

    async def _begin(self, payload: ReportPayload, report_type: str) -> None:
        student_id = getattr(payload, "student_id", None)
        internship_id = getattr(payload, "internship_id", None)
        async with session_scope(self.services.session_factory) as session:
            report = (
                await session.execute(
                    select(Report).where(Report.report_code == payload.report_id).with_for_update()
                )
            ).scalar_one_or_none()
            if report is None:
                report = Report(
                    report_code=payload.report_id,
                    type=report_type,
                    student_id=str(student_id) if student_id else None,
                    internship_id=str(internship_id) if internship_id else None,
                    requested_by=payload.requested_by,
                )
                session.add(report)
            report.status = "processing"
            report.failed_reason = None

    async def _finish(self, report_code: str, url: str, output: ReportOutput) -> None:
        async with session_scope(self.services.session_factory) as session:
            report = (
                await session.execute(select(Report).where(Report.report_code == report_code))
            ).scalar_one()
            report.status = "completed"
            report.file_url = url
            report.sections = output.sections
            report.generated_at = utcnow()
            report.extra_data = {**(report.extra_data or {}), **output.metadata}

    async def _fail(self, report_code: str, reason: str) -> None:
        async with session_scope(self.services.session_factory) as session:
            report = (
                await session.execute(select(Report).where(Report.report_code == report_code))
            ).scalar_one_or_none()
            if report is not None:
                report.status = "failed"
                report.failed_reason = reason[:2000]
        logger.error(f"❌ Report {report_code} failed: {reason}")

    async def _run(
        self,
        ctx: JobContext,
        report_type: str,
        model: Type[ReportPayload],
        produce: Callable[[JobContext, Any], Awaitable[ReportOutput]],
    ) -> Dict[str, Any]:
        payload = parse_payload(model, ctx.payload)
        await ctx.update_progress(5)
        await self._begin(payload, report_type)

        documents = self.services.documents
        try:
            output = await produce(ctx, payload)
            upload = await self.services.storage.upload_file(
                output.document,
                f"{payload.report_id}.{documents.extension}",
                content_type=documents.content_type,
                key=f"{output.folder}/{payload.report_id}.{documents.extension}",
            )
            await ctx.update_progress(85)
            if output.on_uploaded is not None:
                await output.on_uploaded(upload.url)
            await self._finish(payload.report_id, upload.url, output)
        except Exception as exc:
            if not is_retryable(exc) or ctx.is_final_attempt:
                await self._fail(payload.report_id, f"{type(exc).__name__}: {exc}")
            raise

        if output.notification is not None:
            job_name, data = output.notification
            await self.services.registry.enqueue(
                "notification", job_name, {**data, "actionUrl": upload.url, "type": "report"}
            )
        await ctx.update_progress(100)
        logger.info(f"📊 Report {payload.report_id} ({report_type}) completed")
        return {"reportId": payload.report_id, "url": upload.url, "sections": len(output.sections)}

    # --- entity loading -----------------------------------------------------

    async def _student_context(self, student_id, internship_id) -> StudentContext:
        async with self.services.session_factory() as session:
            student = await session.get(Student, student_id)
            if student is None:
                raise NotFoundError("Student", student_id)
            internship = await session.get(Internship, internship_id)
            if internship is None:
                raise NotFoundError("Internship", internship_id)
            company = await session.get(Company, internship.company_id)
            logbooks = (
                await session.execute(
                    select(Logbook)
                    .where(
                        Logbook.student_id == student.id,
                        Logbook.internship_id == internship.id,
                        Logbook.status.in_(CREDIT_BEARING_LOGBOOK_STATUSES),
                    )
                    .order_by(Logbook.week_number)
                )
            ).scalars().all()
        return StudentContext(student, internship, company, list(logbooks))

    # --- producers ----------------------------------------------------------

    async def _nep(self, ctx: JobContext, payload: NepReportPayload) -> ReportOutput:
        context = await self._student_context(payload.student_id, payload.internship_id)
        total_hours = context.total_hours
        credits = credits_for_hours(total_hours, self.services.settings.HOURS_PER_CREDIT)
        await ctx.update_progress(35)

        highlights = " | ".join(
            f"Week {lb.week_number}: {(lb.activities or '')[:200]}" for lb in context.logbooks
        )
        prompt = f"""Create an NEP-compliant internship report.
Return JSON with keys:
executiveSummary (string),
keyAchievements (array of strings),
skillsDeveloped (array of strings),
learningOutcomes (array of strings),
performanceHighlights (string).

Student: {context.student.full_name} ({context.student.department or "department not set"})
Internship: {context.internship.title} at {context.company_name}
Total hours: {total_hours}
Credits: {credits}
Logbook highlights: {highlights or "none"}"""
        narrative = await self.services.require_ai().generate_structured_json(
            prompt, feature="report_generation", user_id=str(context.student.id), role="student"
        )
        await ctx.update_progress(65)

        sections = [
            {"title": "Executive Summary", "content": _text(narrative.get("executiveSummary"), "Summary unavailable.")},
            {"title": "Key Achievements", "content": _items(narrative.get("keyAchievements"), "Not captured")},
            {"title": "Skills Developed", "content": _items(narrative.get("skillsDeveloped"), "Not captured")},
            {"title": "Learning Outcomes", "content": _items(narrative.get("learningOutcomes"), "Not captured")},
            {
                "title": "Performance Highlights",
                "content": _text(narrative.get("performanceHighlights"), "Highlights pending mentor review."),
            },
            {"title": "Credit Summary", "content": f"Total Hours: {total_hours}\nCredits Earned: {credits}"},
        ]
        document = await self.services.documents.generate_report(
            f"NEP Report - {context.student.full_name}",
            sections,
            {
                "Student": context.student.full_name,
                "Internship": context.internship.title,
                "Company": context.company_name,
                "Weeks logged": len(context.logbooks),
            },
        )
        return ReportOutput(
            document=document,
            folder="reports",
            sections=sections,
            metadata={"totalHours": total_hours, "creditsEarned": credits},
            notification=(
                "notify-student",
                {
                    "studentId": str(context.student.id),
                    "title": "NEP report ready",
                    "message": "Your NEP compliance report is ready to download.",
                    "priority": "medium",
                },
            ),
        )

    async def _certificate(self, ctx: JobContext, payload: CompletionCertificatePayload) -> ReportOutput:
        context = await self._student_context(payload.student_id, payload.internship_id)
        await ctx.update_progress(35)

        document = await self.services.documents.generate_certificate(
            {
                "student_name": context.student.full_name,
                "internship_title": context.internship.title,
                "company_name": context.company_name,
                "total_hours": context.total_hours,
                "credits_earned": payload.credits_earned,
            }
        )
        await ctx.update_progress(65)

        async def record_certificate(url: str) -> None:
            # Certificate URL only; credit settlement belongs to process-completion
            async with session_scope(self.services.session_factory) as session:
                completion = (
                    await session.execute(
                        select(InternshipCompletion)
                        .where(
                            InternshipCompletion.student_id == context.student.id,
                            InternshipCompletion.internship_id == context.internship.id,
                        )
                        .with_for_update()
                    )
                ).scalar_one_or_none()
                if completion is None:
                    completion = InternshipCompletion(
                        completion_code=generate_code("CMP"),
                        student_id=context.student.id,
                        internship_id=context.internship.id,
                        company_id=context.internship.company_id,
                        total_hours=context.total_hours,
                        credits_earned=payload.credits_earned,
                        credits_settled=0,
                        completion_date=utcnow(),
                    )
                    session.add(completion)
                completion.certificate_url = url
                completion.status = "issued"

        return ReportOutput(
            document=document,
            folder="certificates",
            sections=[{"title": "Certificate", "content": f"Credits Earned: {payload.credits_earned}"}],
            metadata={"creditsEarned": payload.credits_earned},
            notification=(
                "notify-student",
                {
                    "studentId": str(context.student.id),
                    "title": "Completion certificate ready",
                    "message": f"Download your certificate for {context.internship.title}.",
                    "priority": "high",
                },
            ),
            on_uploaded=record_certificate,
        )

    async def _recommendation(self, ctx: JobContext, payload: RecommendationLetterPayload) -> ReportOutput:
        context = await self._student_context(payload.student_id, payload.internship_id)
        await ctx.update_progress(35)

        prompt = (
            f"Write a professional recommendation letter for {context.student.full_name} who completed "
            f"the {context.internship.title} internship at {context.company_name}. "
            f"They logged {context.total_hours} approved hours over {len(context.logbooks)} weeks. "
            "Emphasize strengths, achievements, technical competencies and overall conduct. "
            "Tone: warm, professional, concise (3 paragraphs)."
        )
        response = await self.services.require_ai().generate_content(
            prompt,
            feature="recommendation_letter",
            user_id=str(context.student.id),
            role="mentor" if payload.mentor_id else "company",
            tier="pro",
        )
        await ctx.update_progress(65)

        sections = [{"title": context.company_name, "content": response.output.strip()}]
        document = await self.services.documents.generate_report(
            f"Recommendation Letter - {context.student.full_name}", sections
        )

        async def record_letter(url: str) -> None:
            async with session_scope(self.services.session_factory) as session:
                completion = (
                    await session.execute(
                        select(InternshipCompletion).where(
                            InternshipCompletion.student_id == context.student.id,
                            InternshipCompletion.internship_id == context.internship.id,
                        )
                    )
                ).scalar_one_or_none()
                if completion is not None:
                    completion.recommendation_letter_url = url

        return ReportOutput(
            document=document,
            folder="letters",
            sections=sections,
            notification=(
                "notify-student",
                {
                    "studentId": str(context.student.id),
                    "title": "Recommendation letter ready",
                    "message": f"Your recommendation letter for {context.internship.title} is ready.",
                    "priority": "medium",
                },
            ),
            on_uploaded=record_letter,
        )

    async def _admin(self, ctx: JobContext, payload: AdminReportPayload) -> ReportOutput:
        start, end = payload.date_range.start, payload.date_range.end

        def in_range(model, stmt):
            if start is not None:
                stmt = stmt.where(model.created_at >= _naive_utc(start))
            if end is not None:
                stmt = stmt.where(model.created_at <= _naive_utc(end))
            return stmt

        async with self.services.session_factory() as session:
            students = (await session.execute(in_range(Student, select(func.count(Student.id))))).scalar_one()
            companies = (await session.execute(in_range(Company, select(func.count(Company.id))))).scalar_one()
            internships = (
                await session.execute(
                    in_range(Internship, select(func.count(Internship.id)).where(Internship.status == "approved"))
                )
            ).scalar_one()
            applications = (
                await session.execute(in_range(Application, select(func.count(Application.id))))
            ).scalar_one()
        await ctx.update_progress(35)

        metrics = {
            "students": students,
            "companies": companies,
            "approvedInternships": internships,
            "applications": applications,
        }
        prompt = (
            "Provide a JSON summary with keys insights (array of strings), risks (array of strings) "
            "and recommendations (array of strings) based on these platform metrics: "
            f"Students: {students}, Companies: {companies}, Approved internships: {internships}, "
            f"Applications: {applications}."
        )
        narrative = await self.services.require_ai().generate_structured_json(
            prompt, feature="admin_report", user_id=payload.requested_by, role="admin"
        )
        await ctx.update_progress(65)

        sections = [
            {
                "title": "Key Metrics",
                "content": [
                    f"Students: {students}",
                    f"Companies: {companies}",
                    f"Approved internships: {internships}",
                    f"Applications: {applications}",
                ],
            },
            {"title": "Insights", "content": _items(narrative.get("insights"), "No insights")},
            {"title": "Risks", "content": _items(narrative.get("risks"), "No critical risks")},
            {"title": "Recommendations", "content": _items(narrative.get("recommendations"), "No recommendations")},
        ]
        date_range = {
            "start": start.isoformat() if start else None,
            "end": end.isoformat() if end else None,
        }
        document = await self.services.documents.generate_report(
            "System Health Report",
            sections,
            {"From": date_range["start"] or "beginning", "To": date_range["end"] or "now"},
        )

        notification = None
        if payload.requested_by:
            notification = (
                "notify-admin",
                {
                    "adminId": payload.requested_by,
                    "title": "Admin report ready",
                    "message": "The system health report is ready to download.",
                    "priority": "low",
                },
            )
        return ReportOutput(
            document=document,
            folder="reports",
            sections=sections,
            metadata={"metrics": metrics, "dateRange": date_range},
            notification=notification,
        )

    # --- handlers -----------------------------------------------------------

    async def generate_nep_report(self, ctx: JobContext) -> Dict[str, Any]:
        return await self._run(ctx, "nep", NepReportPayload, self._nep)

    async def generate_completion_certificate(self, ctx: JobContext) -> Dict[str, Any]:
        return await self._run(ctx, "completion", CompletionCertificatePayload, self._certificate)

    async def generate_recommendation_letter(self, ctx: JobContext) -> Dict[str, Any]:
        return await self._run(ctx, "recommendation", RecommendationLetterPayload, self._recommendation)

    async def generate_admin_report(self, ctx: JobContext) -> Dict[str, Any]:
        return await self._run(ctx, "admin", AdminReportPayload, self._admin)

    def router(self) -> HandlerRouter:
        return HandlerRouter(
            {
                "generate-nep-report": self.generate_nep_report,
                "generate-completion-certificate": self.generate_completion_certificate,
                "generate-recommendation-letter": self.generate_recommendation_letter,
                "generate-admin-report": self.generate_admin_report,
            }
        )

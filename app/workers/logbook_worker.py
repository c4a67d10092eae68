"""Logbook worker for the ``logbook-processing`` queue."""

import logging
import uuid
from typing import Any, Dict, Optional

from app.models import Student
from app.queues.worker import HandlerRouter, JobContext
from app.schemas.jobs import BatchProcessPayload, GenerateSummaryPayload, parse_payload
from app.workers.context import WorkerServices

logger = logging.getLogger(__name__)


class LogbookJobs:
    def __init__(self, services: WorkerServices):
        self.services = services

    async def generate_summary(self, ctx: JobContext) -> Dict[str, Any]:
        payload = parse_payload(GenerateSummaryPayload, ctx.payload)
        await ctx.update_progress(5)

        result = await self.services.summaries.generate_summary(payload.logbook_id)
        await ctx.update_progress(70)

        await self._notify(payload, result)
        await ctx.update_progress(100)
        return {
            "logbookId": result["logbookId"],
            "statusAdvanced": result["statusAdvanced"],
            "summary": result["summary"],
        }

    async def _notify(self, payload: GenerateSummaryPayload, result: Dict[str, Any]) -> None:
        if not (payload.notify_mentor or payload.notify_student):
            return

        async with self.services.session_factory() as session:
            student: Optional[Student] = await session.get(Student, uuid.UUID(result["studentId"]))
        registry = self.services.registry
        week = result["weekNumber"]
        metadata = {"logbookId": result["logbookId"], "weekNumber": week}

        mentor_id = payload.mentor_id or (student.mentor_id if student else None)
        if payload.notify_mentor and mentor_id:
            student_name = student.full_name if student else "A student"
            await registry.enqueue(
                "notification",
                "notify-mentor",
                {
                    "mentorId": str(mentor_id),
                    "title": "Logbook ready for review",
                    "message": f"{student_name} submitted the week {week} logbook. The AI summary is ready.",
                    "priority": "high",
                    "type": "logbook",
                    "metadata": metadata,
                },
            )

        if payload.notify_student:
            await registry.enqueue(
                "notification",
                "notify-student",
                {
                    "studentId": result["studentId"],
                    "title": "Logbook processed",
                    "message": f"The AI summary for your week {week} logbook is ready.",
                    "priority": "medium",
                    "type": "logbook",
                    "metadata": metadata,
                },
            )

    async def batch_process(self, ctx: JobContext) -> Dict[str, Any]:
        payload = parse_payload(BatchProcessPayload, ctx.payload)
        await ctx.update_progress(5)

        async def on_chunk_done(done: int, total: int) -> None:
            await ctx.update_progress(max(5, int(done * 100 / total)))

        results = await self.services.summaries.batch_generate(payload.logbook_ids, on_chunk_done)
        succeeded = sum(1 for r in results if r["success"])
        return {
            "total": len(results),
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
            "results": results,
        }

    def router(self) -> HandlerRouter:
        return HandlerRouter(
            {
                "generate-summary": self.generate_summary,
                "batch-process": self.batch_process,
            }
        )

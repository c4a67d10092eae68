"""
Logbook Summary Service
AI summaries for weekly logbooks, single and batched
"""

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, settings as default_settings
from app.core.exceptions import AIResponseFormatError, NotFoundError
from app.db.session import session_scope
from app.models import Logbook
from app.schemas.logbook import LogbookSummary
from app.services.ai import AIService
from app.utils.helpers import chunked, generate_hash, utcnow

logger = logging.getLogger(__name__)

# Statuses the summary may advance; anything later is left alone
SUMMARY_ADVANCEABLE_STATUSES = ("draft", "submitted")

SUMMARY_SYSTEM_PROMPT = (
    "You review weekly internship logbooks for faculty mentors. "
    "Respond with a single JSON object and nothing else."
)


def build_summary_prompt(logbook: Logbook) -> str:
    tasks = ", ".join(str(t) for t in (logbook.tasks_completed or [])) or "not listed"
    skills = ", ".join(str(s) for s in (logbook.skills_used or [])) or "not listed"
    return f"""Summarize this week {logbook.week_number} internship logbook.

Hours worked: {logbook.hours_worked}
Activities: {logbook.activities}
Tasks completed: {tasks}
Skills used: {skills}
Challenges: {logbook.challenges or "none reported"}
Learnings: {logbook.learnings or "none reported"}

Return JSON with keys:
- summary (string, 3-4 sentences)
- keySkillsDemonstrated (array of strings)
- learningOutcomes (array of strings)
- hoursVerification (boolean, true if the activities plausibly fill the hours)
- suggestedImprovements (string)
- estimatedProductivity ("high", "medium" or "low")"""


def summary_cache_key(logbook: Logbook) -> str:
    fingerprint = generate_hash(logbook.content_fingerprint())[:16]
    return f"logbook:summary:{logbook.id}:{fingerprint}"


def _as_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFoundError("Logbook", value) from None


class LogbookSummaryService:
    """Generates, validates and stores logbook summaries."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ai: AIService,
        settings: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.ai = ai
        self.settings = settings

    async def generate_summary(self, logbook_id: Any) -> Dict[str, Any]:
        """
        Summarize one logbook and store the result.

        The summary and ``ai_processed_at`` are always written. The status moves
        to ``pending_mentor_review`` only from draft or submitted, through a
        conditional UPDATE, so a logbook a mentor already reviewed never regresses.

        Raises:
            NotFoundError: Unknown logbook id
            AIResponseFormatError: AI output is not a valid summary
            CollaboratorError: AI provider failed
        """
        pk = _as_uuid(logbook_id)
        async with self.session_factory() as session:
            logbook = await session.get(Logbook, pk)
        if logbook is None:
            raise NotFoundError("Logbook", logbook_id)

        cache_key = summary_cache_key(logbook)
        data = await self.ai.generate_structured_json(
            build_summary_prompt(logbook),
            system=SUMMARY_SYSTEM_PROMPT,
            feature="logbook_summary",
            user_id=str(logbook.student_id),
            role="student",
            cache_key=cache_key,
            cache_ttl=self.settings.LOGBOOK_SUMMARY_CACHE_TTL,
        )
        try:
            summary = LogbookSummary.model_validate(data)
        except ValidationError as e:
            await self.ai.invalidate(cache_key)
            raise AIResponseFormatError(
                "AI summary did not match the expected shape",
                {"errors": [err["msg"] for err in e.errors()]},
            ) from None

        now = utcnow()
        async with session_scope(self.session_factory) as session:
            await session.execute(
                update(Logbook)
                .where(Logbook.id == pk)
                .values(ai_summary=summary.model_dump(), ai_processed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(
                update(Logbook)
                .where(Logbook.id == pk, Logbook.status.in_(SUMMARY_ADVANCEABLE_STATUSES))
                .values(status="pending_mentor_review")
                .execution_options(synchronize_session=False)
            )
            advanced = result.rowcount > 0

        logger.info(
            f"📝 Summarized logbook {logbook.logbook_code} "
            f"(week {logbook.week_number}, advanced={advanced})"
        )
        return {
            "logbookId": str(pk),
            "logbookCode": logbook.logbook_code,
            "studentId": str(logbook.student_id),
            "internshipId": str(logbook.internship_id),
            "weekNumber": logbook.week_number,
            "summary": summary.model_dump(),
            "statusAdvanced": advanced,
        }

    async def batch_generate(
        self,
        logbook_ids: Sequence[Any],
        on_chunk_done: Optional[Callable[[int, int], Awaitable[None]]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Summarize many logbooks, one result per id in input order.

        Chunks run one after another with the items of a chunk in parallel.
        A failed item is reported and never aborts the batch or is retried here.
        """
        chunk_size = self.settings.LOGBOOK_BATCH_CHUNK_SIZE
        results: List[Dict[str, Any]] = []
        done = 0
        total = len(logbook_ids)

        for chunk in chunked(logbook_ids, chunk_size):
            outcomes = await asyncio.gather(
                *(self.generate_summary(logbook_id) for logbook_id in chunk),
                return_exceptions=True,
            )
            for logbook_id, outcome in zip(chunk, outcomes):
                if isinstance(outcome, Exception):
                    logger.warning(f"Batch summary failed for logbook {logbook_id}: {outcome}")
                    results.append({"logbookId": str(logbook_id), "success": False, "error": str(outcome)})
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    results.append(
                        {"logbookId": str(logbook_id), "success": True, "summary": outcome["summary"]}
                    )
            done += len(chunk)
            if on_chunk_done is not None:
                await on_chunk_done(done, total)

        succeeded = sum(1 for r in results if r["success"])
        logger.info(f"📚 Batch summary finished: {succeeded}/{total} succeeded")
        return results

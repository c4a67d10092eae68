"""
Credit ledger operations
Every change is a single atomic UPDATE so concurrent workers never lose increments
"""

import logging
import math
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import InvalidPayloadError, NotFoundError, UnsupportedDatabaseError
from app.models import InternshipCompletion, Student
from app.utils.helpers import generate_code, utcnow

logger = logging.getLogger(__name__)


def credits_for_hours(total_hours: float, hours_per_credit: Optional[int] = None) -> int:
    """Whole credits for a number of approved hours."""
    hours_per_credit = hours_per_credit or settings.HOURS_PER_CREDIT
    if total_hours <= 0:
        return 0
    return int(math.floor(total_hours / hours_per_credit))


def _clamped_decrement(column, amount: int):
    """``max(column - amount, 0)`` as a SQL expression."""
    return case((column - amount < 0, 0), else_=column - amount)


async def add_pending_credits(session: AsyncSession, student_id: uuid.UUID, credits: int) -> None:
    """Atomically add mentor-approved credits to the student's pending balance."""
    if credits < 0:
        raise InvalidPayloadError("Approved credits cannot be negative")
    if credits == 0:
        return
    result = await session.execute(
        update(Student)
        .where(Student.id == student_id)
        .values(credits_pending=Student.credits_pending + credits, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("Student", student_id)


@dataclass
class SettlementResult:
    completion_id: uuid.UUID
    completion_code: str
    credits_earned: int
    delta: int
    newly_settled: bool


def _insert_for(session: AsyncSession):
    dialect = session.bind.dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise UnsupportedDatabaseError(f"Completion upsert is not supported on {dialect}", {"dialect": dialect})


async def settle_completion(
    session: AsyncSession,
    *,
    student_id: uuid.UUID,
    internship_id: uuid.UUID,
    company_id: Optional[uuid.UUID],
    total_hours: float,
    credits: int,
    certificate_url: Optional[str],
) -> SettlementResult:
    """
    Create-or-replace the completion record and move the ledger by the difference.

    The ledger changes by ``credits - credits_settled`` where ``credits_settled``
    is what earlier runs already applied, so repeating this with unchanged
    inputs moves nothing. Must run inside the caller's transaction.
    """
    now = utcnow()
    insert = _insert_for(session)

    # Create the row if missing; a concurrent creator makes this a no-op
    await session.execute(
        insert(InternshipCompletion)
        .values(
            id=uuid.uuid4(),
            completion_code=generate_code("CMP"),
            student_id=student_id,
            internship_id=internship_id,
            company_id=company_id,
            total_hours=0,
            credits_earned=0,
            credits_settled=0,
            status="pending",
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["student_id", "internship_id"])
    )

    completion = (
        await session.execute(
            select(InternshipCompletion)
            .where(
                InternshipCompletion.student_id == student_id,
                InternshipCompletion.internship_id == internship_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one()

    newly_settled = completion.settled_at is None
    delta = credits - (completion.credits_settled or 0)

    completion.company_id = company_id or completion.company_id
    completion.total_hours = total_hours
    completion.credits_earned = credits
    completion.credits_settled = credits
    completion.settled_at = now
    completion.completion_date = completion.completion_date or now
    if certificate_url:
        completion.certificate_url = certificate_url
    completion.status = "issued"

    values: Dict[str, Any] = {"updated_at": now}
    if delta:
        values["credits_earned"] = Student.credits_earned + delta
        values["credits_approved"] = Student.credits_approved + delta
        if delta > 0:
            values["credits_pending"] = _clamped_decrement(Student.credits_pending, delta)
    if newly_settled:
        values["completed_internships"] = Student.completed_internships + 1

    result = await session.execute(
        update(Student)
        .where(Student.id == student_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError("Student", student_id)

    await session.flush()
    logger.info(
        f"🎓 Settled completion {completion.completion_code}: credits={credits} delta={delta} "
        f"new={newly_settled}"
    )
    return SettlementResult(
        completion_id=completion.id,
        completion_code=completion.completion_code,
        credits_earned=credits,
        delta=delta,
        newly_settled=newly_settled,
    )


async def recalculate_credits(session: AsyncSession, student_id: uuid.UUID) -> Dict[str, int]:
    """
    Rebuild the ledger from completion records.

    earned = approved = sum of completion credits, pending = 0, and every
    completion is marked settled at its current credits.
    """
    student = await session.get(Student, student_id, with_for_update=True)
    if student is None:
        raise NotFoundError("Student", student_id)

    total, count = (
        await session.execute(
            select(
                func.coalesce(func.sum(InternshipCompletion.credits_earned), 0),
                func.count(InternshipCompletion.id),
            ).where(InternshipCompletion.student_id == student_id)
        )
    ).one()
    total = int(total)
    now = utcnow()

    await session.execute(
        update(InternshipCompletion)
        .where(InternshipCompletion.student_id == student_id)
        .values(credits_settled=InternshipCompletion.credits_earned, settled_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        update(Student)
        .where(Student.id == student_id)
        .values(
            credits_earned=total,
            credits_approved=total,
            credits_pending=0,
            completed_internships=count,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    logger.info(f"♻️  Recalculated credits for student {student_id}: total={total} completions={count}")
    return {"total_credits": total, "completions": count}

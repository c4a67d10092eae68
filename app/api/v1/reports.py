"""Report status endpoint, polled by clients after requesting a document."""

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_session
from app.core.exceptions import NotFoundError, PermissionDeniedError
from app.core.security import Principal, Role, get_current_principal
from app.models.report import Report

router = APIRouter()


def _serialize(report: Report) -> dict:
    return {
        "reportId": report.report_code,
        "type": report.type,
        "status": report.status,
        "studentId": report.student_id,
        "internshipId": report.internship_id,
        "sections": report.sections or [],
        "fileUrl": report.file_url,
        "generatedAt": report.generated_at.isoformat() if report.generated_at else None,
        "failedReason": report.failed_reason,
    }


@router.get("/{report_code}")
async def get_report(
    report_code: str,
    db: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_current_principal),
):
    """Status and file URL of a generated report."""
    result = await db.execute(select(Report).where(Report.report_code == report_code))
    report = result.scalar_one_or_none()
    if report is None:
        raise NotFoundError("Report", report_code)

    # Admins see everything; others only reports about or requested by them
    if principal.role != Role.ADMIN and principal.identity not in (
        report.student_id,
        report.requested_by,
    ):
        raise PermissionDeniedError("Not allowed to view this report")

    return _serialize(report)

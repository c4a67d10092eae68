"""Job payload schemas.

Producers write camelCase keys; snake_case field names are accepted as well.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Type, TypeVar
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.core.exceptions import InvalidPayloadError
from app.utils.constants import NOTIFICATION_PRIORITIES

P = TypeVar("P", bound=BaseModel)


class JobPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def parse_payload(model: Type[P], payload: Dict[str, Any]) -> P:
    """Validate a job payload, raising InvalidPayloadError before any side effect."""
    try:
        return model.model_validate(payload or {})
    except ValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise InvalidPayloadError(
            f"Invalid {model.__name__} payload: {', '.join(fields) or 'malformed'}",
            {"errors": [err["msg"] for err in e.errors()], "fields": fields},
        ) from None


# ---- logbook-processing ------------------------------------------------


class GenerateSummaryPayload(JobPayload):
    logbook_id: UUID = Field(alias="logbookId")
    mentor_id: Optional[UUID] = Field(default=None, alias="mentorId")
    notify_mentor: bool = Field(default=True, alias="notifyMentor")
    notify_student: bool = Field(default=True, alias="notifyStudent")


class BatchProcessPayload(JobPayload):
    # Kept as strings so one malformed id fails its own item, not the batch
    logbook_ids: List[str] = Field(alias="logbookIds", min_length=1)


# ---- completion-processing ---------------------------------------------


class ProcessCompletionPayload(JobPayload):
    student_id: UUID = Field(alias="studentId")
    internship_id: UUID = Field(alias="internshipId")


class RecalculateCreditsPayload(JobPayload):
    student_id: UUID = Field(alias="studentId")


# ---- report-generation -------------------------------------------------


class ReportPayload(JobPayload):
    report_id: str = Field(alias="reportId", min_length=1)
    requested_by: Optional[str] = Field(default=None, alias="requestedBy")


class NepReportPayload(ReportPayload):
    student_id: UUID = Field(alias="studentId")
    internship_id: UUID = Field(alias="internshipId")


class CompletionCertificatePayload(ReportPayload):
    student_id: UUID = Field(alias="studentId")
    internship_id: UUID = Field(alias="internshipId")
    credits_earned: int = Field(alias="creditsEarned", ge=0)


class RecommendationLetterPayload(ReportPayload):
    student_id: UUID = Field(alias="studentId")
    internship_id: UUID = Field(alias="internshipId")
    mentor_id: Optional[UUID] = Field(default=None, alias="mentorId")


class DateRange(BaseModel):
    start: Optional[datetime] = None
    end: Optional[datetime] = None


class AdminReportPayload(ReportPayload):
    date_range: DateRange = Field(alias="dateRange")


# ---- notifications -----------------------------------------------------


class NotifyPayload(JobPayload):
    user_id: str = Field(
        validation_alias=AliasChoices(
            "userId", "user_id", "studentId", "mentorId", "companyId", "adminId"
        ),
        min_length=1,
    )
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    priority: str = "medium"
    action_url: Optional[str] = Field(default=None, alias="actionUrl")
    email: Optional[str] = None
    phone: Optional[str] = None
    type: str = "system"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    channels: Optional[Dict[str, bool]] = None

    @field_validator("priority")
    @classmethod
    def check_priority(cls, v: str) -> str:
        if v not in NOTIFICATION_PRIORITIES:
            raise ValueError(f"priority must be one of {NOTIFICATION_PRIORITIES}")
        return v


class SmsPayload(JobPayload):
    to: str = Field(min_length=1)
    message: str = Field(min_length=1)
    notification_id: Optional[str] = Field(default=None, alias="notificationId")


class PushPayload(JobPayload):
    user_id: str = Field(alias="userId", min_length=1)
    role: str = "student"
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)

"""Weekly logbook model."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.ext.mutable import MutableDict, MutableList
from sqlalchemy.orm import relationship

from app.db.base import Base, json_type


class Logbook(Base):
    """A student's weekly activity record for one internship."""

    __tablename__ = "logbooks"
    __table_args__ = (
        UniqueConstraint("student_id", "internship_id", "week_number", name="unique_logbook_week"),
        CheckConstraint("hours_worked >= 0 AND hours_worked <= 60", name="ck_logbooks_hours_range"),
        CheckConstraint("week_number >= 1", name="ck_logbooks_week_number"),
    )

    logbook_code = Column(String(20), unique=True, index=True)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id"), nullable=False, index=True)
    internship_id = Column(Uuid(as_uuid=True), ForeignKey("internships.id"), nullable=False, index=True)
    company_id = Column(Uuid(as_uuid=True), ForeignKey("companies.id"), nullable=True)
    week_number = Column(Integer, nullable=False)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)

    hours_worked = Column(Float, nullable=False, default=0)
    activities = Column(Text, nullable=False)
    tasks_completed = Column(MutableList.as_mutable(json_type()), default=list)
    skills_used = Column(MutableList.as_mutable(json_type()), default=list)
    challenges = Column(Text)
    learnings = Column(Text)

    # AI summary (written by the logbook worker)
    ai_summary = Column(MutableDict.as_mutable(json_type()), nullable=True)
    ai_processed_at = Column(DateTime, nullable=True)

    # Reviews
    mentor_review = Column(MutableDict.as_mutable(json_type()), default=dict)
    company_feedback = Column(MutableDict.as_mutable(json_type()), default=dict)

    status = Column(String(30), default="submitted", nullable=False, index=True)
    submitted_at = Column(DateTime, nullable=True)

    student = relationship("Student")
    internship = relationship("Internship")

    def content_fingerprint(self) -> str:
        """Stable text of the student-authored fields, used for summary caching."""
        parts = [
            str(self.week_number),
            str(self.hours_worked),
            self.activities or "",
            "|".join(str(t) for t in (self.tasks_completed or [])),
            "|".join(str(s) for s in (self.skills_used or [])),
            self.challenges or "",
            self.learnings or "",
        ]
        return "\n".join(parts)

    def __repr__(self):
        return f"<Logbook {self.student_id} week {self.week_number}>"

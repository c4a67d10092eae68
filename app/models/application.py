"""Internship application model."""

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.ext.mutable import MutableDict, MutableList
from sqlalchemy.orm import relationship

from app.db.base import Base, json_type
from app.utils.helpers import utcnow


class Application(Base):
    """Student application to an internship."""

    __tablename__ = "applications"
    __table_args__ = (
        UniqueConstraint("student_id", "internship_id", name="unique_student_internship_application"),
    )

    application_code = Column(String(20), unique=True, index=True)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id"), nullable=False, index=True)
    internship_id = Column(Uuid(as_uuid=True), ForeignKey("internships.id"), nullable=False, index=True)
    company_id = Column(Uuid(as_uuid=True), ForeignKey("companies.id"), nullable=False, index=True)
    department = Column(String(100))

    # pending, mentor_approved, mentor_rejected, shortlisted, rejected, accepted, withdrawn
    status = Column(String(20), default="pending", nullable=False, index=True)
    cover_letter = Column(Text)
    mentor_approval = Column(MutableDict.as_mutable(json_type()), default=dict)
    company_feedback = Column(MutableDict.as_mutable(json_type()), default=dict)
    rejection_reason = Column(Text)

    # Append-only: [{event, performed_by, notes, timestamp}]
    timeline = Column(MutableList.as_mutable(json_type()), default=list)
    applied_at = Column(DateTime, default=utcnow)

    student = relationship("Student")
    internship = relationship("Internship")

    def __repr__(self):
        return f"<Application {self.student_id} -> {self.internship_id}>"

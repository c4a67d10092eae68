"""Internship completion model."""

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint, Uuid

from app.db.base import Base


class InternshipCompletion(Base):
    """Completion record for one (student, internship) pair."""

    __tablename__ = "internship_completions"
    __table_args__ = (
        UniqueConstraint("student_id", "internship_id", name="unique_student_internship_completion"),
    )

    completion_code = Column(String(20), unique=True, index=True)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id"), nullable=False, index=True)
    internship_id = Column(Uuid(as_uuid=True), ForeignKey("internships.id"), nullable=False, index=True)
    company_id = Column(Uuid(as_uuid=True), ForeignKey("companies.id"), nullable=True)

    total_hours = Column(Float, default=0, nullable=False)
    credits_earned = Column(Integer, default=0, nullable=False)
    # Credits already applied to the student's ledger
    credits_settled = Column(Integer, default=0, nullable=False)
    settled_at = Column(DateTime, nullable=True)

    completion_date = Column(DateTime, nullable=True)
    certificate_url = Column(String(1000))
    recommendation_letter_url = Column(String(1000))
    status = Column(String(20), default="pending", nullable=False)  # pending, issued

    def __repr__(self):
        return f"<InternshipCompletion {self.completion_code}>"

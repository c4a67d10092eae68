"""Student model."""

from sqlalchemy import CheckConstraint, Column, Float, ForeignKey, Integer, String, Uuid
from sqlalchemy.ext.mutable import MutableDict
from sqlalchemy.orm import relationship

from app.db.base import Base, json_type


def default_notification_channels() -> dict:
    return {"email": True, "sms": False, "whatsapp": False, "realtime": True}


class Student(Base):
    """Student profile with the academic credit ledger."""

    __tablename__ = "students"
    __table_args__ = (
        CheckConstraint("credits_pending >= 0", name="ck_students_credits_pending_non_negative"),
    )

    student_code = Column(String(20), unique=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    department = Column(String(100), index=True)
    phone = Column(String(20))
    mentor_id = Column(Uuid(as_uuid=True), ForeignKey("mentors.id"), nullable=True, index=True)

    # Channel preferences: {email, sms, whatsapp, realtime}
    notification_channels = Column(
        MutableDict.as_mutable(json_type()), default=default_notification_channels
    )

    # Credit ledger
    credits_earned = Column(Integer, default=0, nullable=False)
    credits_approved = Column(Integer, default=0, nullable=False)
    credits_pending = Column(Integer, default=0, nullable=False)
    completed_internships = Column(Integer, default=0, nullable=False)
    readiness_score = Column(Float, default=0.0)

    status = Column(String(20), default="active")  # active, inactive, graduated

    mentor = relationship("Mentor", back_populates="students")

    def __repr__(self):
        return f"<Student {self.email}>"

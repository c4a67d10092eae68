"""Internship posting model."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.ext.mutable import MutableDict
from sqlalchemy.orm import relationship

from app.db.base import Base, json_type


class Internship(Base):
    """Internship posted by a company."""

    __tablename__ = "internships"

    company_id = Column(Uuid(as_uuid=True), ForeignKey("companies.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    department = Column(String(100), index=True)
    slots = Column(Integer, default=1)
    applied_count = Column(Integer, default=0, nullable=False)
    application_deadline = Column(DateTime, nullable=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)

    # draft, pending_approval, approved, closed, cancelled
    status = Column(String(30), default="draft", nullable=False, index=True)
    approval = Column(MutableDict.as_mutable(json_type()), default=dict)  # {reviewed_by, reviewed_at, comments, decision}
    posted_by = Column(String(100))
    closed_at = Column(DateTime, nullable=True)

    company = relationship("Company")

    def __repr__(self):
        return f"<Internship {self.title}>"

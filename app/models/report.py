"""Generated report model."""

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.ext.mutable import MutableDict, MutableList

from app.db.base import Base, json_type


class Report(Base):
    """Asynchronously generated document (NEP report, certificate, letter, admin report)."""

    __tablename__ = "reports"

    report_code = Column(String(30), unique=True, nullable=False, index=True)
    type = Column(String(20), nullable=False)  # nep, completion, recommendation, admin
    status = Column(String(20), default="pending", nullable=False, index=True)
    student_id = Column(String(64), index=True)
    internship_id = Column(String(64), index=True)
    requested_by = Column(String(64))
    sections = Column(MutableList.as_mutable(json_type()), default=list)
    file_url = Column(String(1000))
    extra_data = Column(MutableDict.as_mutable(json_type()), default=dict)
    generated_at = Column(DateTime, nullable=True)
    failed_reason = Column(Text)

    def __repr__(self):
        return f"<Report {self.report_code} {self.status}>"

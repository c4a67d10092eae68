"""In-app notification model."""

from sqlalchemy import Boolean, Column, String, Text
from sqlalchemy.ext.mutable import MutableDict, MutableList

from app.db.base import Base, json_type


class Notification(Base):
    """Notification addressed to one user, with its delivery log."""

    __tablename__ = "notifications"

    notification_code = Column(String(20), unique=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    role = Column(String(20), nullable=False)  # student, mentor, company, admin
    type = Column(String(50), default="general")
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    priority = Column(String(20), default="medium")  # low, medium, high, critical
    action_url = Column(String(1000))
    read = Column(Boolean, default=False, nullable=False)

    # Append-only: [{channel, status, sent_at, metadata}]
    deliveries = Column(MutableList.as_mutable(json_type()), default=list)
    extra_data = Column(MutableDict.as_mutable(json_type()), default=dict)

    def __repr__(self):
        return f"<Notification {self.role}:{self.user_id} {self.title}>"

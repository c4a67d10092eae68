"""Faculty mentor and admin models."""

from sqlalchemy import Column, String
from sqlalchemy.ext.mutable import MutableDict
from sqlalchemy.orm import relationship

from app.db.base import Base, json_type


class Mentor(Base):
    """Faculty mentor reviewing applications and logbooks."""

    __tablename__ = "mentors"

    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    department = Column(String(100), index=True)
    phone = Column(String(20))
    notification_preferences = Column(
        MutableDict.as_mutable(json_type()), default=lambda: {"email": True, "realtime": True}
    )

    students = relationship("Student", back_populates="mentor")

    def __repr__(self):
        return f"<Mentor {self.email}>"


class Admin(Base):
    """Platform administrator."""

    __tablename__ = "admins"

    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)

    def __repr__(self):
        return f"<Admin {self.email}>"

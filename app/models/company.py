"""Company model."""

from sqlalchemy import Column, String, Text
from sqlalchemy.ext.mutable import MutableDict, MutableList

from app.db.base import Base, json_type


class Company(Base):
    """Host company offering internships."""

    __tablename__ = "companies"

    company_name = Column(String(255), nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(20))
    website = Column(String(500))
    description = Column(Text)

    # Verification
    status = Column(String(30), default="pending_verification", nullable=False, index=True)
    point_of_contact = Column(MutableDict.as_mutable(json_type()), default=dict)  # {name, email, phone}
    admin_review = Column(MutableDict.as_mutable(json_type()), default=dict)  # {reviewed_by, reviewed_at, comments, decision}
    restrictions = Column(MutableList.as_mutable(json_type()), default=list)

    @property
    def contact_email(self):
        return (self.point_of_contact or {}).get("email") or self.email

    @property
    def contact_phone(self):
        return (self.point_of_contact or {}).get("phone") or self.phone

    def __repr__(self):
        return f"<Company {self.company_name}>"

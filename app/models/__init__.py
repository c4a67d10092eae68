"""Database models."""

# Import all models in dependency order to ensure proper relationship initialization

# Base models (no foreign keys)
from app.models.mentor import Admin, Mentor
from app.models.company import Company

# Models with foreign keys to base models
from app.models.student import Student
from app.models.internship import Internship

# Models with foreign keys to other models
from app.models.application import Application
from app.models.logbook import Logbook
from app.models.completion import InternshipCompletion
from app.models.notification import Notification
from app.models.report import Report
from app.models.ai_usage_log import AiUsageLog

# Export all models
__all__ = [
    "Admin",
    "Mentor",
    "Company",
    "Student",
    "Internship",
    "Application",
    "Logbook",
    "InternshipCompletion",
    "Notification",
    "Report",
    "AiUsageLog",
]

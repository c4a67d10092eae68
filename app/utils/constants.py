"""Common constants."""

# Application statuses
APPLICATION_STATUSES = [
    "pending",
    "mentor_approved",
    "mentor_rejected",
    "shortlisted",
    "rejected",
    "accepted",
    "withdrawn",
]

# Logbook statuses
LOGBOOK_STATUSES = [
    "draft",
    "submitted",
    "pending_mentor_review",
    "pending_company_review",
    "approved",
    "needs_revision",
    "completed",
]

# Logbooks whose hours count toward credits
CREDIT_BEARING_LOGBOOK_STATUSES = ["approved", "completed"]

# Internship statuses
INTERNSHIP_STATUSES = ["draft", "pending_approval", "approved", "closed", "cancelled"]

# Company statuses
COMPANY_STATUSES = ["pending_verification", "verified", "rejected", "suspended"]

# Notification
NOTIFICATION_PRIORITIES = ["low", "medium", "high", "critical"]

# Logbook limits
MAX_WEEKLY_HOURS = 60
MIN_WEEK_NUMBER = 1

# AI pricing, USD per million tokens (input, output)
AI_MODEL_PRICING = {
    "flash": (0.075, 0.30),
    "pro": (1.25, 5.00),
}

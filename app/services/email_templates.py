"""HTML email templates keyed by email job name."""

from html import escape
from typing import Any, Callable, Dict, Optional

from app.config import settings
from app.core.exceptions import InvalidPayloadError
from app.services.email_service import EmailMessage

CTA_STYLE = (
    "display:inline-block;padding:12px 18px;background:#2563eb;color:#ffffff;"
    "text-decoration:none;border-radius:6px;font-weight:600;"
)


def _e(value: Any, default: str = "") -> str:
    return escape(str(value)) if value not in (None, "") else default


def build_button(url: Optional[str], text: str = "View details") -> str:
    if not url:
        return ""
    return f'<p style="margin:24px 0;"><a href="{escape(url, quote=True)}" style="{CTA_STYLE}">{escape(text)}</a></p>'


def wrap_email(greeting: str, body: str, cta: str = "") -> str:
    return f"""
  <div style="font-family:'Segoe UI',Arial,sans-serif;color:#111827;line-height:1.6;">
    <p>{greeting}</p>
    {body}
    {cta}
    <p style="margin-top:32px;">Regards,<br/>Team {escape(settings.EMAIL_FROM_NAME)}</p>
    <hr style="margin:32px 0;border:none;border-top:1px solid #e5e7eb;" />
    <p style="font-size:12px;color:#6b7280;">This is an automated message. Please do not reply.</p>
  </div>
"""


def _application_submitted(data: Dict[str, Any]) -> EmailMessage:
    return EmailMessage(
        to=data.get("email"),
        subject="Application submitted successfully",
        html=wrap_email(
            f"Hi {_e(data.get('studentName'), 'there')},",
            f"<p>Your application for <strong>{_e(data.get('internshipTitle'))}</strong> at "
            f"{_e(data.get('companyName'))} has been received.</p>"
            "<p>You can track the status anytime from your dashboard.</p>",
            build_button(data.get("trackingUrl"), "Track application"),
        ),
    )


def _application_approved(data: Dict[str, Any]) -> EmailMessage:
    return EmailMessage(
        to=data.get("email"),
        subject="Your internship application was approved 🎉",
        html=wrap_email(
            f"Hi {_e(data.get('studentName'), 'there')},",
            f"<p>Great news! Your application for <strong>{_e(data.get('internshipTitle'))}</strong> "
            f"has been approved.</p><p>{_e(data.get('nextSteps'), 'Please log in to view the next steps.')}</p>",
            build_button(data.get("nextStepsUrl"), "View next steps"),
        ),
    )


def _application_rejected(data: Dict[str, Any]) -> EmailMessage:
    feedback = _e(
        data.get("feedback"),
        "Keep building your skills and explore other opportunities on the platform.",
    )
    return EmailMessage(
        to=data.get("email"),
        subject="Update on your internship application",
        html=wrap_email(
            f"Hi {_e(data.get('studentName'), 'there')},",
            f"<p>Thank you for applying for <strong>{_e(data.get('internshipTitle'))}</strong>.</p>"
            f"<p>We couldn't move forward this time. {feedback}</p>",
            build_button(data.get("recommendationsUrl"), "Explore other internships"),
        ),
    )


def _logbook_approved(data: Dict[str, Any]) -> EmailMessage:
    week = _e(data.get("weekNumber"))
    return EmailMessage(
        to=data.get("email"),
        subject=f"Week {week} logbook approved",
        html=wrap_email(
            f"Hi {_e(data.get('studentName'), 'there')},",
            f"<p>Your week {week} logbook has been approved.</p>"
            f"<p>Credits awarded: <strong>{_e(data.get('creditsApproved'), '0')}</strong></p>",
            build_button(data.get("logbookUrl"), "View logbook"),
        ),
    )


def _internship_completion(data: Dict[str, Any]) -> EmailMessage:
    return EmailMessage(
        to=data.get("email"),
        subject="Congratulations on completing your internship! 🏆",
        html=wrap_email(
            f"Hi {_e(data.get('name'), 'there')},",
            f"<p>You've successfully completed your internship with <strong>{_e(data.get('companyName'))}</strong>.</p>"
            f"<p>Total credits earned: {_e(data.get('creditsEarned'), '0')}</p>",
            build_button(data.get("certificateUrl"), "Download certificate"),
        ),
    )


def _report_ready(data: Dict[str, Any]) -> EmailMessage:
    return EmailMessage(
        to=data.get("email"),
        subject=f"{_e(data.get('reportTitle'), 'Your report')} is ready",
        html=wrap_email(
            f"Hi {_e(data.get('name'), 'there')},",
            f"<p>{_e(data.get('reportTitle'), 'Your report')} has been generated.</p>",
            build_button(data.get("fileUrl"), "Download report"),
        ),
    )


TEMPLATE_HANDLERS: Dict[str, Callable[[Dict[str, Any]], EmailMessage]] = {
    "application-submitted": _application_submitted,
    "application-approved": _application_approved,
    "application-rejected": _application_rejected,
    "logbook-approved": _logbook_approved,
    "internship-completion": _internship_completion,
    "report-ready": _report_ready,
}


def build_email(job_name: str, data: Dict[str, Any]) -> EmailMessage:
    """Build the message for an email job.

    Named templates render from their data; any other job name is a generic
    email carrying ``to``/``email``, ``subject`` and ``html`` or ``text``.

    Raises:
        InvalidPayloadError: When the recipient or subject is missing
    """
    handler = TEMPLATE_HANDLERS.get(job_name)
    if handler is not None:
        message = handler(data)
        if not message.to:
            raise InvalidPayloadError(f"Email template {job_name} missing recipient address")
        return message

    to = data.get("to") or data.get("email")
    if not to:
        raise InvalidPayloadError("Email job missing recipient")
    subject = data.get("subject")
    if not subject:
        raise InvalidPayloadError("Email job missing subject")
    text = data.get("text")
    return EmailMessage(
        to=to,
        subject=subject,
        html=data.get("html") or f"<p>{_e(text, 'Notification from ' + settings.EMAIL_FROM_NAME)}</p>",
        text=text,
    )

"""
Notification Service
Fan-out of one notification to the recipient's channels with a persisted delivery log
"""

import logging
import uuid
from html import escape
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.cache import CacheManager
from app.core.exceptions import CollaboratorError
from app.db.session import session_scope
from app.models import Admin, Company, Mentor, Notification, Student
from app.services.email_service import EmailMessage, EmailService
from app.services.sms_service import SmsService
from app.utils.helpers import generate_code, utcnow

logger = logging.getLogger(__name__)

DEFAULT_CHANNELS = {"email": True, "sms": False, "realtime": True}

ROLE_MODELS = {
    "student": Student,
    "mentor": Mentor,
    "company": Company,
    "admin": Admin,
}


def delivery_entry(channel: str, status: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    entry: Dict[str, Any] = {"channel": channel, "status": status}
    if status == "sent":
        entry["sent_at"] = utcnow().isoformat()
    if metadata:
        entry["metadata"] = metadata
    return entry


class NotificationService:
    """Delivers notifications over email, SMS and realtime, independently per channel."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        email_service: EmailService,
        sms_service: SmsService,
        cache: Optional[CacheManager] = None,
    ):
        self.session_factory = session_factory
        self.email_service = email_service
        self.sms_service = sms_service
        self.cache = cache

    async def load_user_context(self, role: str, user_id: Optional[str]) -> Dict[str, Any]:
        """Return ``{preferences, email, phone}`` for a recipient, or {} when unknown."""
        model = ROLE_MODELS.get(role)
        if model is None or not user_id:
            return {}
        try:
            pk = uuid.UUID(str(user_id))
        except ValueError:
            return {}

        async with self.session_factory() as session:
            user = await session.get(model, pk)
        if user is None:
            return {}

        if role == "student":
            preferences = dict(user.notification_channels or {})
            email, phone = user.email, user.phone
        elif role == "mentor":
            preferences = dict(user.notification_preferences or {})
            email, phone = user.email, user.phone
        elif role == "company":
            preferences = {"email": True, "realtime": True}
            email, phone = user.contact_email, user.contact_phone
        else:
            preferences = {"email": True, "realtime": True}
            email, phone = user.email, None
        return {"preferences": preferences, "email": email, "phone": phone}

    @staticmethod
    def resolve_channels(
        preferences: Dict[str, Any], overrides: Optional[Dict[str, Any]] = None
    ) -> Dict[str, bool]:
        overrides = overrides or {}
        channels = {}
        for channel, default in DEFAULT_CHANNELS.items():
            value = overrides.get(channel)
            if value is None:
                value = preferences.get(channel)
            channels[channel] = default if value is None else bool(value)
        return channels

    async def _send_email(self, to: Optional[str], title: str, message: str, action_url: Optional[str]):
        if not to:
            return delivery_entry("email", "failed", {"reason": "missing-email"})
        html = f"<p>{escape(message)}</p>"
        if action_url:
            html += f'<p><a href="{escape(action_url, quote=True)}">View details</a></p>'
        try:
            result = await self.email_service.send(EmailMessage(to=to, subject=title, html=html, text=message))
        except CollaboratorError as e:
            return delivery_entry("email", "failed", {"reason": e.message})
        if not result.delivered:
            return delivery_entry("email", "failed", {"reason": "no-email-provider"})
        return delivery_entry("email", "sent", {"provider": result.provider})

    async def _send_sms(self, to: Optional[str], message: str):
        if not to:
            return delivery_entry("sms", "failed", {"reason": "missing-phone"})
        try:
            result = await self.sms_service.send(to, message)
        except CollaboratorError as e:
            return delivery_entry("sms", "failed", {"reason": e.message})
        if not result.get("delivered"):
            return delivery_entry("sms", "failed", {"reason": "no-sms-provider"})
        return delivery_entry("sms", "sent", {"sid": result.get("sid")})

    async def notify_user(
        self,
        *,
        user_id: str,
        role: str,
        title: str,
        message: str,
        priority: str = "medium",
        action_url: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        notification_type: str = "system",
        metadata: Optional[Dict[str, Any]] = None,
        channel_overrides: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Notify one user on every enabled channel.

        Email and SMS are attempted independently; a failure on one never
        prevents the other. Persisting the notification is best-effort.

        Returns:
            {"deliveries": [...], "channels_used": [...], "notification_id": str | None}
        """
        context = await self.load_user_context(role, user_id)
        channels = self.resolve_channels(context.get("preferences", {}), channel_overrides)

        deliveries: List[Dict[str, Any]] = []
        if channels["email"]:
            deliveries.append(
                await self._send_email(email or context.get("email"), title, message, action_url)
            )
        if channels["sms"]:
            deliveries.append(await self._send_sms(phone or context.get("phone"), message))

        notification_code = generate_code("NTF")
        persisted = await self._persist(
            Notification(
                notification_code=notification_code,
                user_id=str(user_id),
                role=role,
                type=notification_type,
                title=title,
                message=message,
                priority=priority,
                action_url=action_url,
                deliveries=deliveries,
                extra_data=metadata or {},
            )
        )

        if channels["realtime"] and self.cache is not None:
            await self.cache.publish(
                f"notifications:{role}:{user_id}",
                {
                    "notification_id": notification_code,
                    "title": title,
                    "message": message,
                    "priority": priority,
                    "action_url": action_url,
                },
            )

        sent = sum(1 for d in deliveries if d["status"] == "sent")
        logger.info(f"🔔 Notified {role}:{user_id} '{title}' ({sent}/{len(deliveries)} deliveries sent)")
        return {
            "deliveries": deliveries,
            "channels_used": [channel for channel, enabled in channels.items() if enabled],
            "notification_id": notification_code if persisted else None,
        }

    async def _persist(self, notification: Notification) -> bool:
        try:
            async with session_scope(self.session_factory) as session:
                session.add(notification)
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist notification: {e}")
            return False

    async def append_delivery(
        self, notification_code: str, channel: str, status: str, metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Append a delivery outcome to an existing notification (best-effort)."""
        try:
            async with session_scope(self.session_factory) as session:
                notification = (
                    await session.execute(
                        select(Notification)
                        .where(Notification.notification_code == notification_code)
                        .with_for_update()
                    )
                ).scalar_one_or_none()
                if notification is None:
                    logger.warning(f"Notification {notification_code} not found for delivery log")
                    return False
                notification.deliveries.append(delivery_entry(channel, status, metadata))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to log notification delivery for {notification_code}: {e}")
            return False

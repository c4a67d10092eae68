"""Notification worker for the ``notifications`` queue."""

import logging
from typing import Any, Dict

from app.core.exceptions import SmsDeliveryError
from app.queues.worker import HandlerRouter, JobContext
from app.schemas.jobs import NotifyPayload, PushPayload, SmsPayload, parse_payload
from app.workers.context import WorkerServices

logger = logging.getLogger(__name__)

NOTIFY_ROLES = {
    "notify-student": "student",
    "notify-mentor": "mentor",
    "notify-admin": "admin",
    "notify-company": "company",
}


class NotificationJobs:
    def __init__(self, services: WorkerServices):
        self.services = services

    async def notify(self, ctx: JobContext) -> Dict[str, Any]:
        payload = parse_payload(NotifyPayload, ctx.payload)
        return await self.services.notifications.notify_user(
            user_id=payload.user_id,
            role=NOTIFY_ROLES[ctx.name],
            title=payload.title,
            message=payload.message,
            priority=payload.priority,
            action_url=payload.action_url,
            email=payload.email,
            phone=payload.phone,
            notification_type=payload.type,
            metadata=payload.metadata,
            channel_overrides=payload.channels,
        )

    async def send_sms(self, ctx: JobContext) -> Dict[str, Any]:
        payload = parse_payload(SmsPayload, ctx.payload)
        notifications = self.services.notifications
        try:
            result = await self.services.sms.send(payload.to, payload.message)
        except SmsDeliveryError as e:
            if payload.notification_id:
                await notifications.append_delivery(payload.notification_id, "sms", "failed", {"reason": e.message})
            raise

        if payload.notification_id:
            await notifications.append_delivery(
                payload.notification_id,
                "sms",
                "sent" if result.get("delivered") else "failed",
                {"sid": result.get("sid")},
            )
        return result

    async def send_push(self, ctx: JobContext) -> Dict[str, Any]:
        """Realtime push over the cache pub/sub channel the in-app clients follow."""
        payload = parse_payload(PushPayload, ctx.payload)
        published = False
        if self.services.cache is not None:
            published = await self.services.cache.publish(
                f"notifications:{payload.role}:{payload.user_id}",
                {"title": payload.title, "message": payload.message, "data": payload.data},
            )
        if not published:
            logger.info(f"Push to {payload.role}:{payload.user_id} not published (realtime unavailable)")
        return {"published": published}

    def router(self) -> HandlerRouter:
        router = HandlerRouter({name: self.notify for name in NOTIFY_ROLES})
        router.register("send-sms", self.send_sms)
        router.register("send-push", self.send_push)
        return router

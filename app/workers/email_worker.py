"""Email worker for the ``emails`` queue."""

from typing import Any, Dict

from app.core.exceptions import EmailDeliveryError
from app.queues.worker import HandlerRouter, JobContext
from app.services.email_templates import TEMPLATE_HANDLERS, build_email
from app.workers.context import WorkerServices

GENERIC_EMAIL_JOB = "send-email"


class EmailJobs:
    def __init__(self, services: WorkerServices):
        self.services = services

    async def send(self, ctx: JobContext) -> Dict[str, Any]:
        """Render the template named by the job and send it through the sender chain."""
        data = dict(ctx.payload or {})
        notification_id = data.get("notificationId")
        message = build_email(ctx.name, data)

        try:
            result = await self.services.email.send(message)
        except EmailDeliveryError as e:
            if notification_id:
                await self.services.notifications.append_delivery(
                    notification_id, "email", "failed", {"reason": e.message, "attempt": ctx.attempt}
                )
            raise

        if notification_id:
            await self.services.notifications.append_delivery(
                notification_id,
                "email",
                "sent" if result.delivered else "failed",
                {"provider": result.provider, "messageId": result.message_id},
            )
        return result.to_dict()

    def router(self) -> HandlerRouter:
        router = HandlerRouter({name: self.send for name in TEMPLATE_HANDLERS})
        router.register(GENERIC_EMAIL_JOB, self.send)
        return router

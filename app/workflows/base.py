"""Shared plumbing for the approval workflows."""

import logging
import uuid
from typing import Any, Dict, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError, PermissionDeniedError
from app.core.security import Principal, Role
from app.db.base import Base
from app.queues.registry import QueueRegistry
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=Base)


def as_uuid(value: Any, entity: str) -> uuid.UUID:
    """Parse an id; a malformed id cannot exist, so it is reported as not found."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFoundError(entity, value) from None


def review_record(principal: Principal, decision: str, comments: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    record = {
        "decision": decision,
        "reviewed_by": principal.identity,
        "reviewed_at": utcnow().isoformat(),
        "comments": comments,
    }
    record.update({k: v for k, v in extra.items() if v is not None})
    return record


def ensure_actor(principal: Principal, owner_id: Any, entity: str) -> None:
    """Admins act on anything; everyone else only on entities they own."""
    if principal.role in (Role.ADMIN, Role.SYSTEM):
        return
    if owner_id is None or str(owner_id) != str(principal.identity):
        raise PermissionDeniedError(f"Not allowed to act on this {entity}")


class Workflow:
    """Base for workflow services: one session per request, commits then enqueues."""

    def __init__(self, session: AsyncSession, registry: QueueRegistry):
        self.session = session
        self.registry = registry

    async def load(self, model: Type[M], entity_id: Any, entity: str, for_update: bool = False) -> M:
        pk = as_uuid(entity_id, entity)
        stmt = select(model).where(model.id == pk)
        if for_update:
            stmt = stmt.with_for_update()
        instance = (await self.session.execute(stmt)).scalar_one_or_none()
        if instance is None:
            raise NotFoundError(entity, entity_id)
        return instance

    def notify(self, job_name: str, payload: Dict[str, Any]) -> None:
        """Queue a notification without waiting for it."""
        self.registry.enqueue_nowait("notification", job_name, payload)

    def email(self, template: str, payload: Dict[str, Any]) -> None:
        self.registry.enqueue_nowait("email", template, payload)

"""Service container handed to the queue workers."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings, settings as default_settings
from app.core.cache import CacheManager
from app.core.exceptions import CollaboratorError
from app.db.session import get_session_factory
from app.queues.registry import QueueRegistry
from app.services.ai import AIFactory, AIService
from app.services.document_service import DocumentService
from app.services.email_service import EmailService
from app.services.logbook_summary_service import LogbookSummaryService
from app.services.notification_service import NotificationService
from app.services.sms_service import SmsService
from app.services.storage_service import StorageService

logger = logging.getLogger(__name__)


@dataclass
class WorkerServices:
    session_factory: async_sessionmaker[AsyncSession]
    registry: QueueRegistry
    cache: Optional[CacheManager]
    ai: Optional[AIService]
    email: EmailService
    sms: SmsService
    notifications: NotificationService
    storage: StorageService
    documents: DocumentService
    settings: Settings = field(default_factory=lambda: default_settings)

    def require_ai(self) -> AIService:
        if self.ai is None:
            raise CollaboratorError("No AI provider is configured")
        return self.ai

    @property
    def summaries(self) -> LogbookSummaryService:
        return LogbookSummaryService(self.session_factory, self.require_ai(), self.settings)


def build_services(
    registry: QueueRegistry,
    cache: Optional[CacheManager] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    settings: Settings = default_settings,
) -> WorkerServices:
    """Wire the production collaborators from settings."""
    session_factory = session_factory or get_session_factory()

    try:
        ai = AIService(AIFactory.get_provider_with_fallback(), cache, session_factory, settings)
    except ValueError as e:
        logger.warning(f"⚠️  AI disabled: {e}")
        ai = None

    email = EmailService.from_settings(settings)
    sms = SmsService(settings)
    return WorkerServices(
        session_factory=session_factory,
        registry=registry,
        cache=cache,
        ai=ai,
        email=email,
        sms=sms,
        notifications=NotificationService(session_factory, email, sms, cache),
        storage=StorageService.from_settings(settings),
        documents=DocumentService(),
        settings=settings,
    )

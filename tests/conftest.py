import json
from typing import Any, Callable, Dict, List, Optional, Union

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

import app.models  # noqa: F401
from app.config import Settings
from app.core.exceptions import SmsDeliveryError
from app.db.base import Base
from app.db.session import create_session_factory, session_scope
from app.models import Application, Company, Internship, Logbook, Mentor, Student
from app.queues.registry import QueueRegistry
from app.services.ai import AIProvider, AIService, ProviderResult
from app.services.document_service import DocumentService
from app.services.email_service import EmailMessage, EmailService
from app.services.notification_service import NotificationService
from app.services.sms_service import SmsService
from app.services.storage_service import LocalStorageBackend, StorageService
from app.utils.helpers import generate_code
from app.workers import WorkerServices, register_workers

SUMMARY_REPLY = {
    "summary": "Built the REST endpoints for the attendance module and paired on code review.",
    "keySkillsDemonstrated": ["Python", "FastAPI"],
    "learningOutcomes": ["API design"],
    "hoursVerification": True,
    "suggestedImprovements": "Add more tests",
    "estimatedProductivity": "High",
}

NARRATIVE_REPLY = {
    "executiveSummary": "A productive internship.",
    "keyAchievements": ["Shipped the attendance API"],
    "skillsDeveloped": ["Python"],
    "learningOutcomes": ["Code review"],
    "performanceHighlights": "Consistent weekly delivery.",
    "insights": ["Applications are growing"],
    "risks": [],
    "recommendations": ["Onboard more companies"],
}


def default_reply(prompt: str) -> str:
    if "recommendation letter" in prompt:
        return "To whom it may concern,\n\nAsha was an outstanding intern."
    if "logbook" in prompt and "Hours worked" in prompt:
        return "```json\n" + json.dumps(SUMMARY_REPLY) + "\n```"
    return json.dumps(NARRATIVE_REPLY)


class FakeAIProvider(AIProvider):
    """Provider double; ``reply`` is a string, an exception or a prompt -> reply function."""

    def __init__(self, reply: Union[str, Exception, Callable[[str], Any]] = default_reply):
        self.reply = reply
        self.prompts: List[str] = []

    @property
    def name(self) -> str:
        return "fake"

    async def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        tier: str = "flash",
        temperature: float = 0.4,
        max_output_tokens: int = 1024,
        json_mode: bool = False,
    ) -> ProviderResult:
        self.prompts.append(prompt)
        reply = self.reply(prompt) if callable(self.reply) else self.reply
        if isinstance(reply, Exception):
            raise reply
        return ProviderResult(text=reply, model="fake-model", input_tokens=120, output_tokens=80)


class RecordingSender:
    name = "recording"
    configured = True

    def __init__(self, fail_with: Optional[str] = None):
        self.fail_with = fail_with
        self.sent: List[EmailMessage] = []

    async def send(self, message: EmailMessage) -> Optional[str]:
        if self.fail_with:
            raise RuntimeError(self.fail_with)
        self.sent.append(message)
        return f"msg-{len(self.sent)}"


class RecordingSms(SmsService):
    def __init__(self, fail_with: Optional[str] = None):
        super().__init__(Settings(_env_file=None))
        self.fail_with = fail_with
        self.sent: List[tuple] = []

    async def send(self, to: str, body: str) -> Dict[str, Any]:
        if not to:
            raise SmsDeliveryError("SMS recipient is missing")
        if self.fail_with:
            raise SmsDeliveryError(self.fail_with)
        self.sent.append((to, body))
        return {"delivered": True, "provider": "recording", "sid": f"SM{len(self.sent)}"}


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        QUEUE_BACKEND="memory",
        QUEUE_BACKOFF_DELAY_MS=10,
        QUEUE_POLL_INTERVAL_SECONDS=0.01,
        CACHE_ENABLED=False,
        AI_MAX_RETRIES=0,
        AI_RETRY_BASE_DELAY=0,
        STORAGE_TYPE="local",
        LOCAL_STORAGE_DIR=str(tmp_path / "uploads"),
        LOCAL_STORAGE_BASE_URL="/uploads",
    )


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
async def registry(test_settings):
    registry = QueueRegistry.in_memory(test_settings)
    yield registry
    await registry.shutdown(timeout=1)


@pytest.fixture
def ai_provider():
    return FakeAIProvider()


@pytest.fixture
def email_sender():
    return RecordingSender()


@pytest.fixture
def sms():
    return RecordingSms()


@pytest.fixture
def services(session_factory, registry, ai_provider, email_sender, sms, test_settings):
    email = EmailService([email_sender])
    return WorkerServices(
        session_factory=session_factory,
        registry=registry,
        cache=None,
        ai=AIService(ai_provider, None, session_factory, test_settings),
        email=email,
        sms=sms,
        notifications=NotificationService(session_factory, email, sms, None),
        storage=StorageService(
            LocalStorageBackend(test_settings.LOCAL_STORAGE_DIR, test_settings.LOCAL_STORAGE_BASE_URL)
        ),
        documents=DocumentService(),
        settings=test_settings,
    )


@pytest.fixture
def workers(registry, services):
    """Every queue has a worker registered; tests drain queues inline."""
    register_workers(registry, services)
    return registry


class Seeder:
    """Creates rows for tests, each in its own committed transaction."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _add(self, instance):
        async with session_scope(self.session_factory) as session:
            session.add(instance)
        return instance

    async def mentor(self, **fields) -> Mentor:
        code = generate_code("M")
        return await self._add(
            Mentor(email=f"{code.lower()}@college.edu", full_name="Dr. Meera Iyer", department="CSE", **fields)
        )

    async def company(self, status: str = "verified", **fields) -> Company:
        code = generate_code("C")
        return await self._add(
            Company(company_name="Acme Labs", email=f"{code.lower()}@acme.test", status=status, **fields)
        )

    async def student(self, mentor: Optional[Mentor] = None, **fields) -> Student:
        code = generate_code("STU")
        fields.setdefault("email", f"{code.lower()}@college.edu")
        return await self._add(
            Student(
                student_code=code,
                full_name="Asha Verma",
                department="CSE",
                mentor_id=mentor.id if mentor else None,
                **fields,
            )
        )

    async def internship(self, company: Company, status: str = "approved", **fields) -> Internship:
        return await self._add(
            Internship(company_id=company.id, title="Backend Intern", department="CSE", status=status, **fields)
        )

    async def logbook(
        self,
        student: Student,
        internship: Internship,
        week: int = 1,
        hours: float = 20,
        status: str = "submitted",
    ) -> Logbook:
        return await self._add(
            Logbook(
                logbook_code=generate_code("LOG"),
                student_id=student.id,
                internship_id=internship.id,
                company_id=internship.company_id,
                week_number=week,
                hours_worked=hours,
                activities=f"Week {week}: built API endpoints and wrote tests",
                tasks_completed=["endpoints"],
                skills_used=["python"],
                status=status,
            )
        )

    async def application(self, student: Student, internship: Internship, status: str = "pending") -> Application:
        return await self._add(
            Application(
                application_code=generate_code("APP"),
                student_id=student.id,
                internship_id=internship.id,
                company_id=internship.company_id,
                status=status,
                cover_letter="Keen to learn",
                timeline=[],
            )
        )


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)

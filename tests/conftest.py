"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, SQLite in memory)
- Fake WhatsApp provider and fake language model
- A fresh reply scheduler per test
- Test data factories
"""
# משתני סביבה לפני ייבוא האפליקציה: Settings נטען בזמן import
import os
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("LANDLORD_WHATSAPP_NUMBERS", "+15550000001")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["GEMINI_API_KEY"] = ""
os.environ["EVOLUTION_API_BASE_URL"] = ""
os.environ.setdefault("COOLDOWN_STORE", "memory")
os.environ.setdefault("WEBHOOK_RATE_LIMIT_MAX_REQUESTS", "10000")

import pytest
from typing import Any, AsyncGenerator, Callable, Optional, Union
from unittest.mock import patch

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from landlord_assistant.db.database import Base, get_db
from landlord_assistant.db.models.contractor import Contractor
from landlord_assistant.db.models.maintenance_request import MaintenanceRequest
from landlord_assistant.db.models.tenant import Tenant
from landlord_assistant.db.models.unit import Unit
from landlord_assistant.domain.services.whatsapp.base_provider import BaseWhatsAppProvider, SendResult
from landlord_assistant.domain.services.llm_client import BaseLLMClient
from landlord_assistant.core.exceptions import LLMError
from landlord_assistant.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ADMIN_HEADERS = {"X-Admin-API-Key": "test-admin-key"}
LANDLORD_NUMBER = "15550000001"


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(async_engine) -> async_sessionmaker:
    """
    sessionmaker של בסיס הנתונים לבדיקות.

    מחליף את AsyncSessionLocal כדי שה-flush של המתזמן ובדיקת המוכנות
    ירוצו מול אותו מסד.
    """
    factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )
    with patch("landlord_assistant.db.database.AsyncSessionLocal", factory):
        yield factory


@pytest.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Fake External Services
# ============================================================================


class FakeWhatsAppProvider(BaseWhatsAppProvider):
    """ספק בדיקה — רושם כל שליחה; מספרים ב-fail_for נכשלים"""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail_for: set[str] = set()
        self.configured = True

    async def send_text(self, to: str, text: str) -> SendResult:
        destination = self.normalize_destination(to)
        if destination in self.fail_for:
            return SendResult(ok=False, error="send_failed_500")
        self.sent.append((destination, text))
        return SendResult(ok=True)

    def normalize_destination(self, to: str) -> str:
        trimmed = (to or "").strip()
        if trimmed.endswith("@g.us"):
            return trimmed
        return "".join(c for c in trimmed.split("@", 1)[0] if c.isdigit())

    @property
    def is_configured(self) -> bool:
        return self.configured

    @property
    def provider_name(self) -> str:
        return "fake"

    def sent_to(self, destination: str) -> list[str]:
        return [text for to, text in self.sent if to == destination]


LLMResponse = Union[str, Exception, Callable[[str], str]]


class FakeLLMClient(BaseLLMClient):
    """
    מודל שפה מזויף. כל תשובה נבחרת לפי מחרוזת שמופיעה ב-prompt;
    ללא התאמה נזרק LLMError.
    """

    def __init__(self, routes: Optional[dict[str, LLMResponse]] = None, configured: bool = True):
        self.routes: dict[str, LLMResponse] = dict(routes or {})
        self.prompts: list[str] = []
        self.configured = configured

    @property
    def is_configured(self) -> bool:
        return self.configured

    async def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        temperature: float = 0.4,
        json_output: bool = False,
    ) -> str:
        self.prompts.append(prompt)
        for marker, response in self.routes.items():
            if marker in prompt:
                if isinstance(response, Exception):
                    raise response
                if callable(response):
                    return response(prompt)
                return response
        raise LLMError("no scripted response")


# סמנים שמזהים כל prompt של AgentService
TRIAGE_PROMPT = "triage agent"
DRAFT_PROMPT = "Draft a casual reply"
REFINE_PROMPT = "Rewrite the draft"
ADVISOR_PROMPT = "assistant coach"
INTENT_PROMPT = "You classify a landlord"


def triage_json(severity: str = "normal", category: str = "plumbing", summary: str = "Issue") -> str:
    return (
        '{"summary": "%s", "classification": {"severity": "%s", "category": "%s", '
        '"urgency_hours": 24}, "recommended_actions": ["Schedule visit"], "data_requests": []}'
        % (summary, severity, category)
    )


@pytest.fixture(autouse=True)
def fake_whatsapp() -> FakeWhatsAppProvider:
    """מחליף את ספק ה-WhatsApp בספק מזויף לכל הבדיקות"""
    from landlord_assistant.domain.services.whatsapp import provider_factory

    fake = FakeWhatsAppProvider()
    provider_factory.reset_providers()
    provider_factory._provider = fake
    yield fake
    provider_factory.reset_providers()


@pytest.fixture
def fake_llm() -> FakeLLMClient:
    """מודל מזויף עם תשובות ברירת מחדל לכל הפעולות"""
    from landlord_assistant.domain.services import agent_service

    client = FakeLLMClient({
        TRIAGE_PROMPT: triage_json(),
        DRAFT_PROMPT: "Thanks, a plumber will come tomorrow morning.",
        REFINE_PROMPT: "Refined: a plumber will come tomorrow at 9.",
        ADVISOR_PROMPT: '{"analysis": "Confirm timing.", "reply": "We will send a plumber tomorrow."}',
        INTENT_PROMPT: '{"wants_draft": false, "approves": false}',
    })
    agent_service._agent_service = agent_service.AgentService(client=client)
    yield client
    agent_service.reset_agent_service()


# ============================================================================
# Singletons Reset
# ============================================================================

@pytest.fixture(autouse=True)
def reset_circuit_breakers():
    """Reset circuit breakers between tests"""
    from landlord_assistant.core.circuit_breaker import CircuitBreaker
    CircuitBreaker.reset_all()
    yield
    CircuitBreaker.reset_all()


@pytest.fixture(autouse=True)
def reset_service_singletons():
    """איפוס שירותי ה-LLM וסטטוס ה-webhook בין בדיקות"""
    from landlord_assistant.domain.services.agent_service import reset_agent_service
    from landlord_assistant.domain.services.llm_client import reset_llm_client
    from landlord_assistant.domain.services.webhook_status import reset_webhook_status

    reset_agent_service()
    reset_llm_client()
    reset_webhook_status()
    yield
    reset_agent_service()
    reset_llm_client()
    reset_webhook_status()


@pytest.fixture(autouse=True)
def reply_scheduler():
    """מתזמן חדש לכל בדיקה, עם מאגרים בזיכרון"""
    from landlord_assistant.domain.services import reply_scheduler as module
    from landlord_assistant.domain.services.tenant_reply_service import flush_pending_bucket

    scheduler = module.ReplyScheduler(
        flush_pending_bucket,
        pending_store=module.InMemoryPendingReplyStore(),
        cooldown_store=module.InMemoryCooldownStore(),
        max_wait_minutes=0,
    )
    module._scheduler = scheduler
    yield scheduler
    for key in scheduler.pending_keys():
        scheduler.cancel(key)
    module.reset_reply_scheduler()


class FakeRedis:
    """תחליף ל-Redis לבדיקות — in-memory dict עם ממשק תואם ומעקב TTL."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        """SET עם תמיכה ב-NX (רק אם לא קיים) ו-EX (תפוגה בשניות)"""
        if nx and key in self._store:
            return None
        self._store[key] = value
        if ex is not None:
            self._ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)

    async def aclose(self) -> None:
        self._store.clear()
        self._ttls.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """מחליף את get_redis ב-FakeRedis לכל הבדיקות."""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("landlord_assistant.core.redis_client.get_redis", _get_fake_redis), \
         patch("landlord_assistant.domain.services.health_service.get_redis", _get_fake_redis):
        yield _fake


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def unit_factory(db_session: AsyncSession):
    """Factory for creating test units"""
    async def _create_unit(label: str = "Apt 1", address: str = "1 Main St") -> Unit:
        unit = Unit(label=label, address=address)
        db_session.add(unit)
        await db_session.commit()
        await db_session.refresh(unit)
        return unit

    return _create_unit


@pytest.fixture
def tenant_factory(db_session: AsyncSession):
    """Factory for creating test tenants"""
    async def _create_tenant(
        name: str = "Dana",
        phone: str = "+15551234567",
        unit_id: int | None = None,
        auto_reply_enabled: bool = True,
        is_active: bool = True,
    ) -> Tenant:
        tenant = Tenant(
            name=name,
            phone=phone,
            unit_id=unit_id,
            auto_reply_enabled=auto_reply_enabled,
            is_active=is_active,
        )
        db_session.add(tenant)
        await db_session.commit()
        await db_session.refresh(tenant)
        return tenant

    return _create_tenant


@pytest.fixture
def contractor_factory(db_session: AsyncSession):
    """Factory for creating test contractors"""
    async def _create_contractor(
        name: str = "Moshe",
        phone: str = "+15557654321",
        role: str | None = "plumber",
    ) -> Contractor:
        contractor = Contractor(name=name, phone=phone, role=role)
        db_session.add(contractor)
        await db_session.commit()
        await db_session.refresh(contractor)
        return contractor

    return _create_contractor


@pytest.fixture
def maintenance_factory(db_session: AsyncSession):
    """Factory for creating maintenance conversations"""
    from landlord_assistant.domain.services.repository import ConversationRepository

    async def _create_maintenance(
        message: str = "The sink is leaking",
        tenant_id: int | None = None,
        severity: str | None = "normal",
        draft: str | None = None,
        autopilot_enabled: bool = False,
    ) -> MaintenanceRequest:
        triage: dict[str, Any] | None = None
        if severity is not None:
            triage = {
                "summary": message,
                "classification": {"severity": severity, "category": "general", "urgency_hours": 72},
                "recommended_actions": [],
                "data_requests": [],
            }
        ai_draft = {"draft": draft, "source": "initial"} if draft is not None else None
        return await ConversationRepository(db_session).create_maintenance(
            message=message,
            tenant_id=tenant_id,
            triage=triage,
            ai_draft=ai_draft,
            autopilot_enabled=autopilot_enabled,
        )

    return _create_maintenance


# ============================================================================
# Webhook payloads
# ============================================================================

def evolution_payload(
    text: Optional[str] = "hello",
    *,
    remote_jid: str = "15551234567@s.whatsapp.net",
    participant: Optional[str] = None,
    from_me: bool = False,
    message: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """payload בפורמט Evolution API (messages.upsert)"""
    key: dict[str, Any] = {"remoteJid": remote_jid, "fromMe": from_me, "id": "ABC123"}
    if participant:
        key["participant"] = participant
    body = message if message is not None else ({"conversation": text} if text is not None else {})
    return {"event": "messages.upsert", "data": {"key": key, "message": body}}

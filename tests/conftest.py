"""Pytest configuration and fixtures."""

from datetime import date, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from src.api.dependencies import get_engine, get_storage, reset_storage
from src.api.main import create_app
from src.models import FunctionCall, IncomingMessage, OutgoingMessage, Plan, TenantConfig
from src.services.channels.base import ChannelAdapter
from src.services.channels.delivery import DeliveryDispatcher
from src.services.conversation.engine import ConversationEngine, reset_conversation_engine
from src.services.conversation.guard import DuplicateCallGuard
from src.services.conversation.store import ConversationStore
from src.services.functions import FunctionContext, build_function_registry
from src.services.llm.planner import Planner
from src.services.payments.provider import PixCharge
from src.services.ratelimit.limiter import RateLimiter, reset_rate_limiter
from src.storage.memory import InMemoryStorage

TENANT_ID = "tenant-a"
OTHER_TENANT_ID = "tenant-b"
PHONE = "+551199990000"


def next_weekday(weekday: int, weeks_ahead: int = 2) -> date:
    """A future date on the given weekday (0=Monday), clear of today."""
    start = date.today() + timedelta(weeks=weeks_ahead)
    return start + timedelta(days=(weekday - start.weekday()) % 7)


def make_property(property_id: str, tenant_id: str = TENANT_ID, **overrides: Any) -> dict[str, Any]:
    doc = {
        "id": property_id,
        "tenant_id": tenant_id,
        "title": f"Apartamento {property_id}",
        "description": "Apartamento bem localizado",
        "category": "apartment",
        "neighborhood": "Centro",
        "city": "Florianópolis",
        "bedrooms": 2,
        "bathrooms": 1,
        "max_guests": 4,
        "base_price": 200.0,
        "cleaning_fee": 100.0,
        "amenities": ["wifi", "piscina"],
        "photos": [
            {"url": f"https://cdn.example.com/{property_id}/{i}.jpg", "order": i} for i in range(7)
        ],
        "videos": [
            {"url": f"https://cdn.example.com/{property_id}/{i}.mp4", "order": i} for i in range(3)
        ],
    }
    doc.update(overrides)
    return doc


class ScriptedPlanner(Planner):
    """Planner returning pre-scripted plans in order; an exception entry is raised."""

    def __init__(self, *plans: Plan | Exception) -> None:
        self.plans = list(plans)
        self.inputs = []

    def script(self, *plans: Plan | Exception) -> None:
        self.plans.extend(plans)

    async def plan(self, planning_input, tools, tenant_config) -> Plan:
        self.inputs.append(planning_input)
        if not self.plans:
            return Plan(reply="Posso ajudar em algo mais?")
        plan = self.plans.pop(0)
        if isinstance(plan, Exception):
            raise plan
        return plan


class RecordingChannel(ChannelAdapter):
    """Outbound channel that records every message instead of sending it."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[OutgoingMessage] = []
        self.fail = fail

    @property
    def channel_name(self) -> str:
        return "recording"

    async def parse_webhook(self, tenant_id: str, payload: dict[str, Any]) -> IncomingMessage | None:
        return None

    async def send_message(self, message: OutgoingMessage) -> dict[str, Any]:
        if self.fail:
            raise RuntimeError("channel down")
        self.sent.append(message)
        return {"status": "sent"}

    def validate_webhook(self, url: str, params: dict[str, Any], signature: str) -> bool:
        return True


def plan_calls(reply: str = "", **calls: dict[str, Any]) -> Plan:
    return Plan(reply=reply, function_calls=[FunctionCall(name=n, arguments=a) for n, a in calls.items()])


@pytest.fixture(autouse=True)
def reset_singletons():
    reset_rate_limiter()
    reset_conversation_engine()
    reset_storage()
    yield
    reset_rate_limiter()
    reset_conversation_engine()
    reset_storage()


@pytest.fixture
def storage():
    """Create in-memory storage for tests."""
    return InMemoryStorage()


@pytest_asyncio.fixture
async def catalogue(storage):
    """Three matching properties for tenant A, one small one, and one owned by tenant B."""
    await storage.seed(TENANT_ID, "properties", [
        make_property("p1", base_price=300.0, amenities=["wifi"]),
        make_property("p2", base_price=150.0, amenities=["wifi", "piscina", "churrasqueira"]),
        make_property("p3", base_price=250.0, title="Casa da Praia", category="house", max_guests=6, capacity=4,
                      price_per_extra_guest=50.0),
        make_property("p4", bedrooms=1, max_guests=2, base_price=100.0),
        make_property("p5", is_active=False),
    ])
    await storage.seed(OTHER_TENANT_ID, "properties", [make_property("b1", tenant_id=OTHER_TENANT_ID)])
    return storage


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def delivery(channel):
    return DeliveryDispatcher(channel, timeout_seconds=1, max_concurrency=5)


@pytest.fixture
def payments():
    provider = AsyncMock()
    provider.create_pix_qr_code.return_value = PixCharge(
        id="pix_char_123",
        amount_cents=50000,
        status="PENDING",
        br_code="00020101021226950014br.gov.bcb.pix",
        br_code_base64="data:image/png;base64,iVBORw0KGgo=",
        expires_at=None,
        raw={},
    )
    return provider


@pytest.fixture
def rate_limiter():
    return RateLimiter()


@pytest.fixture
def registry(storage, delivery, payments, rate_limiter):
    return build_function_registry(storage, delivery=delivery, payments=payments, rate_limiter=rate_limiter)


@pytest.fixture
def function_context():
    return FunctionContext(
        tenant_id=TENANT_ID,
        client_id="client-1",
        conversation_id="conv-1",
        channel_address=f"whatsapp:{PHONE}",
        tenant_config=TenantConfig(),
    )


@pytest.fixture
def planner():
    return ScriptedPlanner()


@pytest.fixture
def engine(storage, planner, registry, rate_limiter, delivery):
    return ConversationEngine(
        store=ConversationStore(storage, timeout_seconds=2),
        planner=planner,
        registry=registry,
        guard=DuplicateCallGuard(),
        rate_limiter=rate_limiter,
        delivery=delivery,
    )


@pytest.fixture
def app(storage, engine):
    """Create test application wired to the test engine."""
    application = create_app()
    application.dependency_overrides[get_storage] = lambda: storage
    application.dependency_overrides[get_engine] = lambda: engine
    return application


@pytest_asyncio.fixture
async def client(app):
    """Create test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

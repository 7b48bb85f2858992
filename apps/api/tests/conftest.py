import json
from typing import Any, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from generation.client import GenerationError
from main import app
from routers import rate_limit
from routers.clients import get_asm_portal, get_billing, get_generation_gateway
from services.asm_portal import AsmPortalClient
from services.billing import StripeBilling
from services.session_token import create_session_token


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


def auth_header(external_id: str, email: Optional[str] = None, **claims: Any) -> Dict[str, str]:
    token = create_session_token(external_id, email, **claims)["token"]
    return {"Authorization": f"Bearer {token}"}


class FakeGateway:
    """Stands in for GenerationGateway; replies are consumed in order."""

    def __init__(self, replies: Optional[List[Any]] = None):
        self.replies = list(replies or [])
        self.prompts: List[str] = []
        self.configured = True

    async def generate(self, prompt: str, **kwargs: Any) -> str:
        self.prompts.append(prompt)
        if not self.replies:
            raise GenerationError("No AI provider configured")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def aclose(self) -> None:
        return None


class FakeBilling(StripeBilling):
    """StripeBilling with the network calls replaced by canned results."""

    def __init__(self, events: Optional[Dict[str, Dict[str, Any]]] = None):
        super().__init__(secret_key="sk_test_fake", webhook_secret="whsec_fake", app_url="http://test")
        self.events = events or {}
        self.checkouts: List[Dict[str, Any]] = []

    async def create_checkout_session(self, *, user_id, tier, customer_email):
        self.checkouts.append({"user_id": user_id, "tier": tier.key, "email": customer_email})
        return f"https://checkout.stripe.test/{tier.key}"

    async def create_portal_session(self, customer_id):
        return f"https://billing.stripe.test/{customer_id}"

    def construct_event(self, payload, signature):
        if signature != "valid":
            raise ValueError("bad signature")
        return json.loads(payload)


def portal_client(handler=None) -> AsmPortalClient:
    """AsmPortalClient routed through a MockTransport; no handler means not configured."""
    if handler is None:
        return AsmPortalClient(base_url="", service_key="")
    return AsmPortalClient(
        base_url="https://portal.test",
        service_key="service-key",
        transport=httpx.MockTransport(handler),
    )


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "storywork.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def storywork_client(session_maker):
    gateway = FakeGateway()
    billing = FakeBilling()
    portal = portal_client()

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_generation_gateway] = lambda: gateway
    app.dependency_overrides[get_billing] = lambda: billing
    app.dependency_overrides[get_asm_portal] = lambda: portal
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client, session_maker, gateway, billing

    for dependency in (get_db, get_generation_gateway, get_billing, get_asm_portal):
        app.dependency_overrides.pop(dependency, None)
    await portal.aclose()

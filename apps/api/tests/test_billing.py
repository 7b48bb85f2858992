import json

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models.credit_transaction import CreditTransaction
from models.stripe_webhook_event import StripeWebhookEvent
from models.user import User
from services.billing import SUBSCRIPTION_TIERS, process_webhook_event

from conftest import auth_header


HEADER = auth_header("ext-1", "agent@example.com")


async def _user_id(client, session_maker) -> str:
    await client.get("/auth/me", headers=HEADER)
    async with session_maker() as session:
        return await session.scalar(select(User.id).where(User.external_id == "ext-1"))


async def _post_event(client, event, signature="valid"):
    headers = {"stripe-signature": signature} if signature else {}
    return await client.post("/webhooks/stripe", content=json.dumps(event), headers=headers)


def _checkout_event(user_id: str, tier: str = "starter", event_id: str = "evt_checkout_1"):
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_test_1",
                "mode": "subscription",
                "customer": "cus_123",
                "metadata": {"userId": user_id, "tier": tier},
            }
        },
    }


def test_tier_credit_allowances():
    assert SUBSCRIPTION_TIERS["starter"].monthly_credits == 10 * settings.CREDITS_PER_STORY
    assert SUBSCRIPTION_TIERS["pro"].monthly_credits == 30 * settings.CREDITS_PER_STORY
    assert SUBSCRIPTION_TIERS["team"].monthly_credits == 0


@pytest.mark.asyncio
async def test_tiers_endpoint_lists_plans(storywork_client):
    client, _, _, _ = storywork_client
    response = await client.get("/stripe/tiers")
    assert [tier["key"] for tier in response.json()["tiers"]] == ["starter", "pro", "team"]


@pytest.mark.asyncio
async def test_checkout_rejects_unknown_tier(storywork_client):
    client, _, _, _ = storywork_client
    response = await client.post("/stripe/checkout", headers=HEADER, json={"tier": "enterprise"})
    assert (response.status_code, response.json()) == (400, {"error": "Invalid subscription tier"})


@pytest.mark.asyncio
async def test_checkout_without_price_is_unavailable(storywork_client, monkeypatch):
    client, _, _, _ = storywork_client
    monkeypatch.setattr(settings, "STRIPE_PRO_PRICE_ID", "")
    response = await client.post("/stripe/checkout", headers=HEADER, json={"tier": "pro"})
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_checkout_returns_session_url(storywork_client, monkeypatch):
    client, session_maker, _, billing = storywork_client
    monkeypatch.setattr(settings, "STRIPE_PRO_PRICE_ID", "price_pro")

    response = await client.post("/stripe/checkout", headers=HEADER, json={"tier": "pro"})

    assert response.json() == {"url": "https://checkout.stripe.test/pro"}
    user_id = await _user_id(client, session_maker)
    assert billing.checkouts == [{"user_id": user_id, "tier": "pro", "email": "agent@example.com"}]


@pytest.mark.asyncio
async def test_portal_requires_subscription(storywork_client):
    client, session_maker, _, _ = storywork_client
    user_id = await _user_id(client, session_maker)

    missing = await client.post("/stripe/portal", headers=HEADER)
    async with session_maker() as session:
        user = await session.get(User, user_id)
        user.stripe_customer_id = "cus_123"
        await session.commit()
    found = await client.post("/stripe/portal", headers=HEADER)

    assert (missing.status_code, missing.json()) == (404, {"error": "No subscription found"})
    assert found.json() == {"url": "https://billing.stripe.test/cus_123"}


@pytest.mark.asyncio
async def test_webhook_rejects_missing_or_bad_signature(storywork_client):
    client, _, _, _ = storywork_client

    unsigned = await _post_event(client, {"id": "evt_1", "type": "invoice.paid"}, signature=None)
    forged = await _post_event(client, {"id": "evt_1", "type": "invoice.paid"}, signature="forged")

    assert (unsigned.status_code, unsigned.json()) == (400, {"error": "No signature"})
    assert (forged.status_code, forged.json()) == (400, {"error": "Invalid signature"})


@pytest.mark.asyncio
async def test_checkout_completed_activates_subscription_once(storywork_client):
    client, session_maker, _, _ = storywork_client
    user_id = await _user_id(client, session_maker)
    event = _checkout_event(user_id)

    first = await _post_event(client, event)
    replay = await _post_event(client, event)

    assert first.json() == {"received": True, "duplicate": False}
    assert replay.json() == {"received": True, "duplicate": True}
    async with session_maker() as session:
        user = await session.get(User, user_id)
        grants = await session.scalar(select(func.count()).select_from(CreditTransaction))
        processed = await session.get(StripeWebhookEvent, "evt_checkout_1")
    assert (user.subscription_status, user.subscription_tier, user.stripe_customer_id) == ("active", "starter", "cus_123")
    assert user.credit_balance == SUBSCRIPTION_TIERS["starter"].monthly_credits
    assert grants == 1
    assert processed.event_type == "checkout.session.completed"


@pytest.mark.asyncio
async def test_renewal_invoice_grants_monthly_credits(storywork_client):
    client, session_maker, _, _ = storywork_client
    user_id = await _user_id(client, session_maker)
    await _post_event(client, _checkout_event(user_id, tier="pro"))

    first_invoice = {
        "id": "evt_invoice_create",
        "type": "invoice.paid",
        "data": {"object": {"customer": "cus_123", "subscription": "sub_1", "billing_reason": "subscription_create"}},
    }
    renewal = {
        "id": "evt_invoice_cycle",
        "type": "invoice.paid",
        "data": {"object": {"customer": "cus_123", "subscription": "sub_1", "billing_reason": "subscription_cycle"}},
    }
    await _post_event(client, first_invoice)
    await _post_event(client, renewal)

    async with session_maker() as session:
        balance = await session.scalar(select(User.credit_balance).where(User.id == user_id))
    assert balance == 2 * SUBSCRIPTION_TIERS["pro"].monthly_credits


@pytest.mark.asyncio
async def test_subscription_updates_and_cancellation(storywork_client):
    client, session_maker, _, _ = storywork_client
    user_id = await _user_id(client, session_maker)
    await _post_event(client, _checkout_event(user_id))

    await _post_event(
        client,
        {"id": "evt_sub_upd", "type": "customer.subscription.updated", "data": {"object": {"customer": "cus_123", "status": "past_due"}}},
    )
    async with session_maker() as session:
        assert await session.scalar(select(User.subscription_status).where(User.id == user_id)) == "past_due"

    await _post_event(
        client,
        {"id": "evt_sub_del", "type": "customer.subscription.deleted", "data": {"object": {"customer": "cus_123"}}},
    )
    async with session_maker() as session:
        user = await session.get(User, user_id)
    assert (user.subscription_status, user.subscription_tier) == ("canceled", None)


@pytest.mark.asyncio
async def test_unhandled_event_types_are_acknowledged(storywork_client):
    client, _, _, _ = storywork_client
    response = await _post_event(client, {"id": "evt_other", "type": "customer.created", "data": {"object": {}}})
    assert response.json() == {"received": True, "duplicate": False}


@pytest.mark.asyncio
async def test_failed_event_commit_leaves_no_grant_behind(session_maker, monkeypatch):
    async with session_maker() as session:
        session.add(User(id="u1", external_id="ext-1", email="agent@example.com", credit_balance=0))
        await session.commit()
    event = _checkout_event("u1", tier="pro", event_id="evt_retry")

    async def lost_connection(self):
        raise OperationalError("COMMIT", {}, Exception("connection lost"))

    monkeypatch.setattr(AsyncSession, "commit", lost_connection)
    async with session_maker() as session:
        with pytest.raises(OperationalError):
            await process_webhook_event(session, event)
        await session.rollback()
    monkeypatch.undo()

    async with session_maker() as session:
        assert await session.scalar(select(User.credit_balance).where(User.id == "u1")) == 0
        assert await session.scalar(select(func.count()).select_from(CreditTransaction)) == 0
        assert await session.get(StripeWebhookEvent, "evt_retry") is None

    async with session_maker() as session:
        assert await process_webhook_event(session, event) is True
    async with session_maker() as session:
        assert await session.scalar(select(User.credit_balance).where(User.id == "u1")) == (
            SUBSCRIPTION_TIERS["pro"].monthly_credits
        )
        assert await session.scalar(select(func.count()).select_from(CreditTransaction)) == 1

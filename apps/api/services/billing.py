"""Stripe subscriptions: checkout, customer portal, and webhook event handling."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import stripe
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.stripe_webhook_event import StripeWebhookEvent
from models.user import User
from services.credits import CreditTransactionType, stage_credit_grant

logger = logging.getLogger(__name__)


class WebhookProcessingError(Exception):
    """A webhook event was understood but could not be applied."""


@dataclass(frozen=True)
class SubscriptionTier:
    key: str
    name: str
    price: int
    stories: int  # -1 means unlimited
    features: Tuple[str, ...]

    @property
    def price_id(self) -> str:
        return getattr(settings, f"STRIPE_{self.key.upper()}_PRICE_ID", "")

    @property
    def monthly_credits(self) -> int:
        if self.stories <= 0:
            return 0
        return self.stories * max(int(settings.CREDITS_PER_STORY), 0)


SUBSCRIPTION_TIERS: Dict[str, SubscriptionTier] = {
    "starter": SubscriptionTier(
        key="starter",
        name="Starter",
        price=49,
        stories=10,
        features=("10 stories/month", "Text input", "Basic carousels", "Brand kit"),
    ),
    "pro": SubscriptionTier(
        key="pro",
        name="Pro",
        price=99,
        stories=30,
        features=(
            "30 stories/month",
            "Voice + text input",
            "Premium carousels",
            "Brand kit",
            "Priority generation",
        ),
    ),
    "team": SubscriptionTier(
        key="team",
        name="Team",
        price=199,
        stories=-1,
        features=(
            "Unlimited stories",
            "Voice + text input",
            "Premium carousels",
            "Team brand kits",
            "Priority generation",
            "Team analytics",
        ),
    ),
}


class StripeBilling:
    """Stripe calls made with an explicit API key instead of the module-global one."""

    def __init__(self, secret_key: str, webhook_secret: str, app_url: str):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.app_url = app_url.rstrip("/")

    @classmethod
    def from_settings(cls) -> "StripeBilling":
        return cls(
            secret_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            app_url=settings.APP_URL,
        )

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    async def create_checkout_session(self, *, user_id: str, tier: SubscriptionTier, customer_email: str) -> str:
        session = await asyncio.to_thread(
            stripe.checkout.Session.create,
            api_key=self.secret_key,
            mode="subscription",
            customer_email=customer_email,
            line_items=[{"price": tier.price_id, "quantity": 1}],
            success_url=f"{self.app_url}/dashboard?success=true",
            cancel_url=f"{self.app_url}/dashboard?canceled=true",
            metadata={"userId": user_id, "tier": tier.key},
        )
        return session.url

    async def create_portal_session(self, customer_id: str) -> str:
        session = await asyncio.to_thread(
            stripe.billing_portal.Session.create,
            api_key=self.secret_key,
            customer=customer_id,
            return_url=f"{self.app_url}/dashboard/settings",
        )
        return session.url

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """Verify the signature and return the event as plain JSON.

        Raises ValueError for malformed payloads and
        stripe.SignatureVerificationError for bad signatures.
        """
        stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        return json.loads(payload)


async def _get_user_by_customer(db: AsyncSession, customer_id: Optional[str]) -> Optional[User]:
    if not customer_id:
        return None
    result = await db.execute(select(User).where(User.stripe_customer_id == customer_id))
    return result.scalars().first()


async def _grant_subscription_credits(db: AsyncSession, user_id: str, tier: SubscriptionTier, description: str) -> None:
    if tier.monthly_credits <= 0:
        return
    new_balance = await stage_credit_grant(
        user_id,
        db,
        amount=tier.monthly_credits,
        transaction_type=CreditTransactionType.SUBSCRIPTION_MONTHLY,
        description=description,
    )
    if new_balance is None:
        raise WebhookProcessingError(f"Credit grant failed for user {user_id}: User not found")


async def handle_checkout_session_completed(db: AsyncSession, event: Dict[str, Any]) -> None:
    session = event["data"]["object"]
    metadata = session.get("metadata") or {}
    user_id = metadata.get("userId")
    if session.get("mode") != "subscription" or not user_id:
        return

    tier = SUBSCRIPTION_TIERS.get(metadata.get("tier", ""))
    if tier is None:
        logger.warning("Checkout session %s has unknown tier %r", session.get("id"), metadata.get("tier"))
        return

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        logger.warning("Checkout session %s references unknown user %s", session.get("id"), user_id)
        return

    user.stripe_customer_id = session.get("customer")
    user.subscription_status = "active"
    user.subscription_tier = tier.key

    await _grant_subscription_credits(db, user_id, tier, f"{tier.name} subscription started")


async def handle_invoice_paid(db: AsyncSession, event: Dict[str, Any]) -> None:
    invoice = event["data"]["object"]
    if not invoice.get("subscription") or invoice.get("billing_reason") != "subscription_cycle":
        return

    user = await _get_user_by_customer(db, invoice.get("customer"))
    if user is None or not user.subscription_tier:
        return
    tier = SUBSCRIPTION_TIERS.get(user.subscription_tier)
    if tier is None:
        return

    await _grant_subscription_credits(db, user.id, tier, f"Monthly {tier.name} credit renewal")


async def handle_subscription_updated(db: AsyncSession, event: Dict[str, Any]) -> None:
    subscription = event["data"]["object"]
    user = await _get_user_by_customer(db, subscription.get("customer"))
    if user is None:
        return
    user.subscription_status = subscription.get("status")


async def handle_subscription_deleted(db: AsyncSession, event: Dict[str, Any]) -> None:
    subscription = event["data"]["object"]
    user = await _get_user_by_customer(db, subscription.get("customer"))
    if user is None:
        return
    user.subscription_status = "canceled"
    user.subscription_tier = None


WEBHOOK_HANDLERS: Dict[str, Callable[[AsyncSession, Dict[str, Any]], Awaitable[None]]] = {
    "checkout.session.completed": handle_checkout_session_completed,
    "invoice.paid": handle_invoice_paid,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
}


async def process_webhook_event(db: AsyncSession, event: Dict[str, Any]) -> bool:
    """Apply an event once. Returns False when the event id was already processed.

    Handlers only stage changes; their updates, credit grants and the processed
    event id are committed together.
    """
    event_id = event.get("id")
    event_type = event.get("type", "")
    if event_id and await db.get(StripeWebhookEvent, event_id) is not None:
        logger.info("Skipping duplicate Stripe event %s (%s)", event_id, event_type)
        return False

    handler = WEBHOOK_HANDLERS.get(event_type)
    if handler is None:
        logger.debug("Unhandled Stripe event type %s", event_type)
    else:
        await handler(db, event)

    if event_id:
        db.add(StripeWebhookEvent(id=event_id, event_type=event_type))
    await db.commit()
    return True

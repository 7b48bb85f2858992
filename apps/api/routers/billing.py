"""Billing router: subscription checkout and the Stripe customer portal."""

from __future__ import annotations

import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from database import get_db
from models.user import User
from routers.auth_scope import AuthContext, get_auth_context, require_email
from routers.clients import get_billing
from routers.rate_limit import rate_limit
from services.billing import SUBSCRIPTION_TIERS, StripeBilling
from services.credits import get_or_create_user

router = APIRouter()
logger = logging.getLogger(__name__)


class CheckoutRequest(BaseModel):
    tier: Optional[str] = None


@router.get("/tiers")
async def list_tiers():
    return {
        "tiers": [
            {
                "key": tier.key,
                "name": tier.name,
                "price": tier.price,
                "stories": tier.stories,
                "monthly_credits": tier.monthly_credits,
                "features": list(tier.features),
            }
            for tier in SUBSCRIPTION_TIERS.values()
        ]
    }


@router.post("/checkout")
async def create_checkout_session(
    request: CheckoutRequest,
    _rate_limit: None = Depends(
        rate_limit("billing_checkout", limit=settings.CHECKOUT_RATE_LIMIT_PER_HOUR, window_seconds=3600)
    ),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    billing: StripeBilling = Depends(get_billing),
):
    email = require_email(auth)
    tier = SUBSCRIPTION_TIERS.get(request.tier or "")
    if tier is None:
        raise HTTPException(status_code=400, detail="Invalid subscription tier")
    if not billing.configured or not tier.price_id:
        raise HTTPException(status_code=503, detail="Stripe is not configured.")

    user = await get_or_create_user(auth.external_id, db, email=email, email_verified=auth.email_verified)
    try:
        url = await billing.create_checkout_session(user_id=user.id, tier=tier, customer_email=email)
    except stripe.StripeError as exc:
        logger.error(f"Checkout session creation failed for user {user.id}: {exc}")
        raise HTTPException(status_code=500, detail="Failed to create checkout session") from exc
    return {"url": url}


@router.post("/portal")
async def create_portal_session(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    billing: StripeBilling = Depends(get_billing),
):
    require_email(auth)
    customer_id = await db.scalar(
        select(User.stripe_customer_id).where(User.external_id == auth.external_id)
    )
    if not customer_id:
        raise HTTPException(status_code=404, detail="No subscription found")
    if not billing.configured:
        raise HTTPException(status_code=503, detail="Stripe is not configured.")

    try:
        url = await billing.create_portal_session(customer_id)
    except stripe.StripeError as exc:
        logger.error(f"Portal session creation failed for customer {customer_id}: {exc}")
        raise HTTPException(status_code=500, detail="Failed to create portal session") from exc
    return {"url": url}

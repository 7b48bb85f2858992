"""Inbound webhooks from the payment processor."""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.clients import get_billing
from services.billing import StripeBilling, process_webhook_event

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    billing: StripeBilling = Depends(get_billing),
):
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(status_code=400, detail="No signature")
    if not billing.webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured; rejecting webhook")
        raise HTTPException(status_code=503, detail="Webhook verification not configured")

    try:
        event = billing.construct_event(payload, signature)
    except (ValueError, stripe.SignatureVerificationError) as exc:
        logger.warning(f"Webhook signature verification failed: {exc}")
        raise HTTPException(status_code=400, detail="Invalid signature") from exc

    try:
        processed = await process_webhook_event(db, event)
    except Exception as exc:
        await db.rollback()
        logger.exception(f"Webhook processing failed for event {event.get('id')} ({event.get('type')})")
        raise HTTPException(status_code=500, detail="Webhook processing failed") from exc

    return {"received": True, "duplicate": not processed}

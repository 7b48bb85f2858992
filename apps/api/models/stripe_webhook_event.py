"""StripeWebhookEvent model for webhook idempotency."""

from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func

from database import Base


class StripeWebhookEvent(Base):
    """Stripe event id that has already been processed."""

    __tablename__ = "stripe_webhook_events"

    id = Column(String, primary_key=True)
    event_type = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

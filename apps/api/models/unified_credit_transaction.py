"""UnifiedCreditTransaction model for the cross-product ledger."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class UnifiedCreditTransaction(Base):
    """Immutable unified-pool ledger entry, deduplicated by idempotency key."""

    __tablename__ = "unified_credit_transactions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    unified_user_id = Column(String, ForeignKey("unified_users.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    transaction_type = Column(String, nullable=False)
    source_platform = Column(String, nullable=False)
    description = Column(String, nullable=True)
    idempotency_key = Column(String, unique=True, nullable=True)
    reference_id = Column(String, nullable=True)
    reference_type = Column(String, nullable=True)
    balance_after = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    unified_user = relationship("UnifiedUser", back_populates="transactions")

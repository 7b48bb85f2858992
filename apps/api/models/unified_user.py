"""UnifiedUser model for the cross-product credit identity."""

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class UnifiedUser(Base):
    """One credit identity per email, shared across products.

    ``reserved_credits`` is the part of ``credit_balance`` held by open
    reservations; only ``credit_balance - reserved_credits`` is spendable.
    """

    __tablename__ = "unified_users"
    __table_args__ = (
        CheckConstraint("reserved_credits >= 0", name="ck_unified_users_reserved_nonnegative"),
        CheckConstraint("credit_balance >= reserved_credits", name="ck_unified_users_reserved_covered"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    asm_agent_id = Column(String, nullable=True, index=True)
    storywork_user_id = Column(String, nullable=True, index=True)
    storywork_clerk_id = Column(String, nullable=True, index=True)
    credit_balance = Column(Integer, nullable=False, default=0)
    reserved_credits = Column(Integer, nullable=False, default=0)
    lifetime_credits = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    transactions = relationship("UnifiedCreditTransaction", back_populates="unified_user", cascade="all, delete-orphan")
    reservations = relationship("CreditReservation", back_populates="unified_user", cascade="all, delete-orphan")

    @property
    def available_credits(self) -> int:
        return int(self.credit_balance or 0) - int(self.reserved_credits or 0)

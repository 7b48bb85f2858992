"""User model."""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class User(Base):
    """Storywork account for one authenticated identity."""

    __tablename__ = "storywork_users"
    __table_args__ = (
        CheckConstraint("credit_balance >= 0", name="ck_storywork_users_credit_balance_nonnegative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    external_id = Column(String, unique=True, nullable=True, index=True)
    email = Column(String, nullable=False, index=True)
    credit_balance = Column(Integer, nullable=False, default=0)
    lifetime_credits = Column(Integer, nullable=False, default=0)
    asm_agent_id = Column(String, nullable=True, index=True)
    stripe_customer_id = Column(String, nullable=True, index=True)
    subscription_status = Column(String, nullable=True)
    subscription_tier = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    credit_transactions = relationship("CreditTransaction", back_populates="user", cascade="all, delete-orphan")
    stories = relationship("Story", back_populates="user", cascade="all, delete-orphan")
    brand_kits = relationship("BrandKit", back_populates="user", cascade="all, delete-orphan")

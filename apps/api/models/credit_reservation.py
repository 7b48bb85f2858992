"""CreditReservation model for pending holds on unified credits."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


RESERVATION_RESERVED = "reserved"
RESERVATION_COMMITTED = "committed"
RESERVATION_RELEASED = "released"


class CreditReservation(Base):
    """Hold against a unified balance: reserved -> committed | released."""

    __tablename__ = "credit_reservations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    unified_user_id = Column(String, ForeignKey("unified_users.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    purpose = Column(String, nullable=False)
    reference_id = Column(String, nullable=True)
    reference_type = Column(String, nullable=True)
    status = Column(String, nullable=False, default=RESERVATION_RESERVED, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    unified_user = relationship("UnifiedUser", back_populates="reservations")

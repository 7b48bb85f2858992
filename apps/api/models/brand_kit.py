"""BrandKit model."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class BrandKit(Base):
    """Colors, font, and imagery applied to a user's carousels."""

    __tablename__ = "storywork_brand_kits"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("storywork_users.id"), nullable=False, index=True)
    name = Column(String, nullable=False, default="My Brand")
    primary_color = Column(String, nullable=False, default="#ff4533")
    secondary_color = Column(String, nullable=False, default="#000000")
    font_family = Column(String, nullable=False, default="Inter")
    logo_url = Column(String, nullable=True)
    headshot_url = Column(String, nullable=True)
    is_default = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="brand_kits")

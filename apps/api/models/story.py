"""Story model."""

import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Story(Base):
    """Agent narrative and its generated carousel content."""

    __tablename__ = "storywork_stories"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("storywork_users.id"), nullable=False, index=True)
    title = Column(String, nullable=True)
    story_type = Column(String, nullable=False)
    raw_input = Column(Text, nullable=True)
    answers = Column(JSON, nullable=True)
    generated_content = Column(JSON, nullable=True)
    status = Column(String, nullable=False, default="draft", index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="stories")

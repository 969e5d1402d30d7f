"""Reaction model."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.sql import func

from database import Base


class Reaction(Base):
    """A user's reaction (like, love, ...) on a post or comment."""

    __tablename__ = "reactions"
    __table_args__ = (UniqueConstraint("user_id", "target_type", "target_id", name="uq_reaction_target"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    target_type = Column(String, nullable=False, default="post")
    target_id = Column(String, nullable=False, index=True)
    reaction_type = Column(String, nullable=False, default="like")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

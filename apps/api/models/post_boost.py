"""Paid boost campaign attached to a post."""

import enum
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class BoostStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSE = "pause"
    PENDING_PAYMENT = "pending_payment"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class PostBoost(Base):
    """Location-targeted promotion of a post until `expires_at`."""

    __tablename__ = "post_boosts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    post_id = Column(String, ForeignKey("posts.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    days = Column(Integer, nullable=False, default=1)
    status = Column(String, nullable=False, default=BoostStatus.PENDING_PAYMENT.value, index=True)
    city = Column(String, nullable=True)
    country = Column(String, nullable=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    post = relationship("Post", back_populates="boosts")

"""User location model."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class UserLocation(Base):
    """Resolved city/country reported by one of the user's devices."""

    __tablename__ = "user_locations"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    city = Column(String, nullable=True)
    country = Column(String, nullable=True)
    location_source = Column(String, nullable=False, default="ip")
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="locations")

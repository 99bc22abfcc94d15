import uuid

from sqlalchemy import Column, String, Float, Boolean, DateTime, Index, UniqueConstraint
from sqlalchemy.sql import func

from app.core.db import Base


class LocationShare(Base):
    __tablename__ = "location_shares"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    production_id = Column(String(36), nullable=False, index=True)

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # derived from (latitude, longitude), only written together with them
    grid_reference = Column(String(8), nullable=True)

    is_sharing = Column(Boolean, nullable=False, default=False)
    last_updated = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "production_id", name="location_shares_user_production_key"),
        Index("idx_location_shares_production_updated", "production_id", "last_updated"),
    )

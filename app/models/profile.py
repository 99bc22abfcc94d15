from sqlalchemy import Column, String, DateTime, func
from app.core.db import Base


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True)
    full_name = Column(String, nullable=False, default="")

    created_at = Column(DateTime(timezone=True), server_default=func.now())

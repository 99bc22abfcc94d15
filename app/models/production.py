import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, CheckConstraint, UniqueConstraint
from sqlalchemy.sql import func

from app.core.db import Base


class Production(Base):
    __tablename__ = "productions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    status = Column(
        String,
        CheckConstraint(
            "status IN ('active','completed','paused')",
            name="productions_status_check",
        ),
        nullable=False,
        default="active",
    )
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class UserProduction(Base):
    __tablename__ = "user_productions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    production_id = Column(
        String(36),
        ForeignKey("productions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role = Column(
        String,
        CheckConstraint(
            "role IN ('admin','manager','member')",
            name="user_productions_role_check",
        ),
        nullable=False,
        default="member",
    )
    joined_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("user_id", "production_id", name="user_productions_user_production_key"),
    )

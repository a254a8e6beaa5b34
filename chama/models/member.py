"""Chama membership ORM model."""
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chama.models.base import Base, TimestampMixin


class ChamaMember(TimestampMixin, Base):
    """Links a user to a chama with a role inside that group."""

    __tablename__ = "chama_members"
    __table_args__ = (
        UniqueConstraint("chama_id", "user_id", name="uq_chama_members_chama_user"),
        Index("ix_chama_members_user_id", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    chama_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("chamas.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="USER")
    contribution_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2))
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    chama = relationship("Chama", back_populates="members")
    user = relationship("User", back_populates="memberships")


__all__ = ["ChamaMember"]

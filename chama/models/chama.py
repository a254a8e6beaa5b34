"""Chama (savings group) ORM model."""
from __future__ import annotations

import uuid
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chama.models.base import Base, TimestampMixin


class Chama(TimestampMixin, Base):
    """A member-run savings group with a running contribution balance."""

    __tablename__ = "chamas"
    __table_args__ = (UniqueConstraint("invitation_code", name="uq_chamas_invitation_code"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    chama_type: Mapped[str | None] = mapped_column(String(64))
    invitation_code: Mapped[str] = mapped_column(String(16), nullable=False)
    is_invitation_code_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    monthly_contribution_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2))
    contribution_frequency: Mapped[str | None] = mapped_column(String(32))
    contribution_due_day: Mapped[int | None] = mapped_column(Integer)
    loan_interest_rate: Mapped[Decimal | None] = mapped_column(Numeric(6, 3))
    max_loan_multiplier: Mapped[Decimal | None] = mapped_column(Numeric(6, 2))
    loan_max_term_months: Mapped[int | None] = mapped_column(Integer)
    meeting_frequency: Mapped[str | None] = mapped_column(String(32))
    meeting_day: Mapped[str | None] = mapped_column(String(32))
    created_by: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Running total of applied SUCCESS contributions; only ever changed by atomic increments.
    total_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))

    members = relationship("ChamaMember", back_populates="chama", cascade="all, delete-orphan")
    contributions = relationship("Contribution", back_populates="chama")


__all__ = ["Chama"]

"""Contribution ledger ORM model."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Numeric, String, text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chama.models.base import Base, TimestampMixin


class ContributionStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Contribution(TimestampMixin, Base):
    """Append-only ledger row for one settled M-Pesa contribution."""

    __tablename__ = "contributions"
    __table_args__ = (
        Index("ix_contributions_chama_id", "chama_id"),
        Index("ix_contributions_user_id", "user_id"),
        Index(
            "uq_contributions_checkout_success",
            "checkout_request_id",
            unique=True,
            sqlite_where=text("status = 'SUCCESS'"),
            postgresql_where=text("status = 'SUCCESS'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    chama_id: Mapped[str] = mapped_column(String(36), ForeignKey("chamas.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    contributed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    mpesa_receipt_number: Mapped[str | None] = mapped_column(String(64))
    checkout_request_id: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[ContributionStatus] = mapped_column(
        SAEnum(ContributionStatus, name="contribution_status"),
        nullable=False,
        default=ContributionStatus.SUCCESS,
    )
    # False while the chama balance still owes this amount (see BalanceRepairService).
    balance_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    chama = relationship("Chama", back_populates="contributions")


__all__ = ["Contribution", "ContributionStatus"]

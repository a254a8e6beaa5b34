"""Pending STK push requests awaiting a gateway callback."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from chama.models.base import Base


class PendingContributionRequest(Base):
    """Intent recorded at push time, keyed by the gateway CheckoutRequestID."""

    __tablename__ = "pending_contribution_requests"

    checkout_request_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    merchant_request_id: Mapped[str | None] = mapped_column(String(128))
    chama_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("chamas.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


__all__ = ["PendingContributionRequest"]

"""Raw M-Pesa callback audit log."""
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Integer, JSON, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from chama.models.base import Base


class MpesaCallbackLog(Base):
    """Every callback delivery as received, matched or not."""

    __tablename__ = "mpesa_callbacks"
    __table_args__ = (
        Index("ix_mpesa_callbacks_checkout_request_id", "checkout_request_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    merchant_request_id: Mapped[str | None] = mapped_column(String(128))
    checkout_request_id: Mapped[str | None] = mapped_column(String(128))
    result_code: Mapped[int | None] = mapped_column(Integer)
    result_desc: Mapped[str | None] = mapped_column(Text)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2))
    mpesa_receipt_number: Mapped[str | None] = mapped_column(String(64))
    transaction_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    phone_number: Mapped[str | None] = mapped_column(String(32))
    raw_payload: Mapped[dict | None] = mapped_column(JSON)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


__all__ = ["MpesaCallbackLog"]

"""Declarative base shared by the chama, membership and ledger tables."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Metadata root used by the models and the Alembic environment."""


class TimestampMixin:
    """Database-stamped ``created_at``/``updated_at`` columns.

    Append-only tables such as the callback log and the pending requests
    declare only their own creation timestamp instead.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


__all__ = ["Base", "TimestampMixin"]

"""User ORM model."""
from __future__ import annotations

import enum
import uuid

from sqlalchemy import Enum, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from chama.models.base import Base, TimestampMixin


class UserRole(str, enum.Enum):
    USER = "USER"
    SECRETARY = "SECRETARY"
    CHAIRPERSON = "CHAIRPERSON"


class User(TimestampMixin, Base):
    """A registered account; the phone number is the M-Pesa payer."""

    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    first_name: Mapped[str] = mapped_column(String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(32))
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role"), nullable=False, default=UserRole.USER
    )

    memberships = relationship("ChamaMember", back_populates="user", cascade="all, delete-orphan")


__all__ = ["User", "UserRole"]

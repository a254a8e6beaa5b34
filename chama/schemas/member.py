"""Pydantic schemas for chama membership."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from chama.models import UserRole


class MemberCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    chama_id: str = Field(..., min_length=1, max_length=36)
    user_id: str = Field(..., min_length=1, max_length=36)
    role: UserRole = Field(default=UserRole.USER)
    contribution_amount: Decimal | None = Field(default=None, ge=0)


class MemberUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    role: UserRole | None = None
    contribution_amount: Decimal | None = Field(default=None, ge=0)


class MemberRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    chama_id: str
    user_id: str
    role: str
    contribution_amount: Decimal | None
    joined_at: datetime


__all__ = ["MemberCreate", "MemberRead", "MemberUpdate"]

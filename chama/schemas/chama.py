"""Pydantic schemas for chama resources."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class ChamaCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    chama_type: str | None = Field(default=None, max_length=64)
    monthly_contribution_amount: Decimal | None = Field(default=None, ge=0)
    contribution_frequency: str | None = Field(default=None, max_length=32)
    contribution_due_day: int | None = Field(default=None, ge=1, le=31)
    loan_interest_rate: Decimal | None = Field(default=None, ge=0)
    max_loan_multiplier: Decimal | None = Field(default=None, ge=0)
    loan_max_term_months: int | None = Field(default=None, ge=1)
    meeting_frequency: str | None = Field(default=None, max_length=32)
    meeting_day: str | None = Field(default=None, max_length=32)


class ChamaUpdate(BaseModel):
    """Descriptive fields a chama creator may edit; anything else is rejected."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    chama_type: str | None = Field(default=None, max_length=64)


class ContributionSettingsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    monthly_contribution_amount: Decimal | None = Field(default=None, ge=0)
    contribution_frequency: str | None = Field(default=None, max_length=32)
    contribution_due_day: int | None = Field(default=None, ge=1, le=31)
    loan_interest_rate: Decimal | None = Field(default=None, ge=0)
    max_loan_multiplier: Decimal | None = Field(default=None, ge=0)
    loan_max_term_months: int | None = Field(default=None, ge=1)


class MeetingSettingsUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    meeting_frequency: str | None = Field(default=None, max_length=32)
    meeting_day: str | None = Field(default=None, max_length=32)


class ChamaRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None
    chama_type: str | None
    invitation_code: str
    is_invitation_code_active: bool
    monthly_contribution_amount: Decimal | None
    contribution_frequency: str | None
    contribution_due_day: int | None
    loan_interest_rate: Decimal | None
    max_loan_multiplier: Decimal | None
    loan_max_term_months: int | None
    meeting_frequency: str | None
    meeting_day: str | None
    created_by: str | None
    is_active: bool
    total_balance: Decimal
    created_at: datetime


class ChamaSummary(ChamaRead):
    """A chama listing entry enriched with the caller's own standing."""

    member_count: int
    my_role: str | None
    my_contributions: Decimal
    status: str


__all__ = [
    "ChamaCreate",
    "ChamaRead",
    "ChamaSummary",
    "ChamaUpdate",
    "ContributionSettingsUpdate",
    "MeetingSettingsUpdate",
]

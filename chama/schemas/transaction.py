"""Schemas for contribution collection and ledger queries."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from chama.models import ContributionStatus


class StkPushRequest(BaseModel):
    """Ask the gateway to prompt the caller's phone for a contribution."""

    chama_id: str = Field(..., min_length=1, max_length=36)
    amount: Decimal = Field(..., gt=Decimal("0"), description="Whole shillings")


class StkPushResponse(BaseModel):
    message: str
    checkout_request_id: str
    merchant_request_id: str | None
    customer_message: str | None
    amount: Decimal


class CallbackAcknowledgement(BaseModel):
    """Body the gateway expects back from the callback URL."""

    model_config = ConfigDict(populate_by_name=True)

    result_code: int = Field(default=0, alias="ResultCode")
    result_desc: str = Field(default="Accepted", alias="ResultDesc")


class ContributionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    chama_id: str
    user_id: str
    amount: Decimal
    contributed_at: datetime
    mpesa_receipt_number: str | None
    checkout_request_id: str
    status: ContributionStatus


class ContributionTotalsResponse(BaseModel):
    chama_id: str
    user_id: str | None = None
    total_amount: Decimal
    transaction_count: int


class BalanceRecomputationResponse(BaseModel):
    chama_id: str
    previous_balance: Decimal
    recomputed_balance: Decimal
    drift: Decimal


__all__ = [
    "BalanceRecomputationResponse",
    "CallbackAcknowledgement",
    "ContributionRead",
    "ContributionTotalsResponse",
    "StkPushRequest",
    "StkPushResponse",
]

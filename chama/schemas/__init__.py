"""Pydantic schemas package."""

from .chama import (
    ChamaCreate,
    ChamaRead,
    ChamaSummary,
    ChamaUpdate,
    ContributionSettingsUpdate,
    MeetingSettingsUpdate,
)
from .member import MemberCreate, MemberRead, MemberUpdate
from .transaction import (
    BalanceRecomputationResponse,
    CallbackAcknowledgement,
    ContributionRead,
    ContributionTotalsResponse,
    StkPushRequest,
    StkPushResponse,
)

__all__ = [
    "BalanceRecomputationResponse",
    "CallbackAcknowledgement",
    "ChamaCreate",
    "ChamaRead",
    "ChamaSummary",
    "ChamaUpdate",
    "ContributionRead",
    "ContributionSettingsUpdate",
    "ContributionTotalsResponse",
    "MeetingSettingsUpdate",
    "MemberCreate",
    "MemberRead",
    "MemberUpdate",
    "StkPushRequest",
    "StkPushResponse",
]

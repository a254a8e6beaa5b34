"""ORM models package."""
from .base import Base, TimestampMixin
from .callback_log import MpesaCallbackLog
from .chama import Chama
from .contribution import Contribution, ContributionStatus
from .member import ChamaMember
from .pending_request import PendingContributionRequest
from .user import User, UserRole

__all__ = [
    "Base",
    "Chama",
    "ChamaMember",
    "Contribution",
    "ContributionStatus",
    "MpesaCallbackLog",
    "PendingContributionRequest",
    "TimestampMixin",
    "User",
    "UserRole",
]

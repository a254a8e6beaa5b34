"""Durable mapping from gateway CheckoutRequestID to the contribution it was meant to collect."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chama.models import PendingContributionRequest
from chama.services.exceptions import DuplicateCorrelationError, NotFoundError


class PendingRequestNotFoundError(NotFoundError):
    """Raised when no pending entry exists for a correlation id."""


@dataclass(slots=True, frozen=True)
class PendingContribution:
    """The (chama, user, amount) a push request was created for."""

    checkout_request_id: str
    chama_id: str
    user_id: str
    amount: Decimal


class PendingRequestStore:
    """Reads and writes ``pending_contribution_requests`` within the caller's session.

    The store flushes but never commits; transaction boundaries belong to the
    calling service.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def record(
        self,
        *,
        correlation_id: str,
        chama_id: str,
        user_id: str,
        amount: Decimal,
        merchant_request_id: str | None = None,
    ) -> PendingContribution:
        if self._session.get(PendingContributionRequest, correlation_id) is not None:
            raise DuplicateCorrelationError(f"Pending request '{correlation_id}' already exists")

        entry = PendingContributionRequest(
            checkout_request_id=correlation_id,
            merchant_request_id=merchant_request_id,
            chama_id=chama_id,
            user_id=user_id,
            amount=amount,
        )
        self._session.add(entry)
        try:
            self._session.flush()
        except IntegrityError as exc:
            self._session.rollback()
            raise DuplicateCorrelationError(f"Pending request '{correlation_id}' already exists") from exc
        return _to_value(entry)

    def resolve(self, correlation_id: str, *, lock: bool = False) -> PendingContribution:
        statement = select(PendingContributionRequest).where(
            PendingContributionRequest.checkout_request_id == correlation_id
        )
        if lock:
            statement = statement.with_for_update()
        entry = self._session.scalars(statement).first()
        if entry is None:
            raise PendingRequestNotFoundError(f"No pending request for '{correlation_id}'")
        return _to_value(entry)

    def retire(self, correlation_id: str) -> bool:
        result = self._session.execute(
            delete(PendingContributionRequest).where(
                PendingContributionRequest.checkout_request_id == correlation_id
            )
        )
        return bool(result.rowcount)

    def purge_stale(self, *, older_than: datetime) -> int:
        result = self._session.execute(
            delete(PendingContributionRequest).where(PendingContributionRequest.created_at < older_than)
        )
        return int(result.rowcount or 0)


def _to_value(entry: PendingContributionRequest) -> PendingContribution:
    return PendingContribution(
        checkout_request_id=entry.checkout_request_id,
        chama_id=entry.chama_id,
        user_id=entry.user_id,
        amount=Decimal(entry.amount),
    )


__all__ = ["PendingContribution", "PendingRequestNotFoundError", "PendingRequestStore"]

"""Read-only views over the contribution ledger."""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from chama.models import Contribution, ContributionStatus


@dataclass(slots=True, frozen=True)
class ContributionTotals:
    total_amount: Decimal
    transaction_count: int


class ContributionQueryService:
    """Aggregates and listings built on ``contributions``; never touches balances."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def total_for_user_in_chama(self, *, user_id: str, chama_id: str) -> ContributionTotals:
        return self._totals(Contribution.user_id == user_id, Contribution.chama_id == chama_id)

    def total_for_chama(self, *, chama_id: str) -> ContributionTotals:
        return self._totals(Contribution.chama_id == chama_id)

    def list_for_user(self, *, user_id: str) -> Sequence[Contribution]:
        return self._list(Contribution.user_id == user_id)

    def list_for_user_in_chama(self, *, user_id: str, chama_id: str) -> Sequence[Contribution]:
        return self._list(Contribution.user_id == user_id, Contribution.chama_id == chama_id)

    def list_for_chama(self, *, chama_id: str) -> Sequence[Contribution]:
        return self._list(Contribution.chama_id == chama_id)

    def _totals(self, *criteria) -> ContributionTotals:  # type: ignore[no-untyped-def]
        statement = select(
            func.coalesce(func.sum(Contribution.amount), 0),
            func.count(Contribution.id),
        ).where(Contribution.status == ContributionStatus.SUCCESS, *criteria)
        total, count = self._session.execute(statement).one()
        return ContributionTotals(
            total_amount=Decimal(str(total)).quantize(Decimal("0.01")),
            transaction_count=int(count),
        )

    def _list(self, *criteria) -> Sequence[Contribution]:  # type: ignore[no-untyped-def]
        statement = (
            select(Contribution)
            .where(*criteria)
            .order_by(Contribution.contributed_at.desc(), Contribution.created_at.desc())
        )
        return self._session.scalars(statement).all()


__all__ = ["ContributionQueryService", "ContributionTotals"]

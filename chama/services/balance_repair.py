"""Healing of chama balances from the contribution ledger."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from chama.core.config import Settings, get_settings
from chama.db.transactions import serializable_transaction
from chama.models import Chama, Contribution, ContributionStatus
from chama.services.exceptions import NotFoundError
from chama.services.pending_requests import PendingRequestStore

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class BalanceRecomputation:
    """Result of rebuilding one chama balance from its ledger."""

    chama_id: str
    previous_balance: Decimal
    recomputed_balance: Decimal

    @property
    def drift(self) -> Decimal:
        return self.recomputed_balance - self.previous_balance


@dataclass(slots=True)
class RepairReport:
    """Summary of a repair cycle."""

    repaired_contributions: int
    purged_pending_requests: int


class BalanceRepairService:
    """Applies outstanding balance increments and recomputes balances on demand."""

    def __init__(self, session: Session, *, settings: Settings | None = None) -> None:
        self._session = session
        self._settings = settings or get_settings()

    def run_cycle(self, *, now: datetime | None = None) -> RepairReport:
        repaired = self.apply_pending_repairs()
        purged = self.purge_stale_pending_requests(now=now)
        return RepairReport(repaired_contributions=repaired, purged_pending_requests=purged)

    def apply_pending_repairs(self) -> int:
        """Apply the balance increment for every SUCCESS row still flagged as unapplied."""

        candidate_ids = self._session.scalars(
            select(Contribution.id).where(
                Contribution.status == ContributionStatus.SUCCESS,
                Contribution.balance_applied.is_(False),
            )
        ).all()
        self._session.rollback()

        repaired = 0
        for contribution_id in candidate_ids:
            with serializable_transaction(self._session):
                contribution = self._session.scalars(
                    select(Contribution)
                    .where(Contribution.id == contribution_id, Contribution.balance_applied.is_(False))
                    .with_for_update()
                ).first()
                if contribution is None:
                    continue
                result = self._session.execute(
                    update(Chama)
                    .where(Chama.id == contribution.chama_id)
                    .values(total_balance=Chama.total_balance + contribution.amount)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    logger.error(
                        "cannot repair contribution; chama missing",
                        extra={"contribution_id": contribution_id, "chama_id": contribution.chama_id},
                    )
                    continue
                contribution.balance_applied = True
                repaired += 1
        if repaired:
            logger.info("applied outstanding balance increments", extra={"repaired": repaired})
        return repaired

    def recompute_balance(self, chama_id: str) -> BalanceRecomputation:
        """Rebuild ``total_balance`` as the sum of the chama's SUCCESS ledger rows."""

        with serializable_transaction(self._session):
            chama = self._session.get(Chama, chama_id)
            if chama is None:
                raise NotFoundError("Chama not found")
            previous = Decimal(chama.total_balance or 0).quantize(Decimal("0.01"))
            ledger_total = self._session.execute(
                select(func.coalesce(func.sum(Contribution.amount), 0)).where(
                    Contribution.chama_id == chama_id,
                    Contribution.status == ContributionStatus.SUCCESS,
                )
            ).scalar_one()
            recomputed = Decimal(str(ledger_total)).quantize(Decimal("0.01"))
            chama.total_balance = recomputed
            self._session.execute(
                update(Contribution)
                .where(Contribution.chama_id == chama_id, Contribution.balance_applied.is_(False))
                .values(balance_applied=True)
                .execution_options(synchronize_session=False)
            )

        result = BalanceRecomputation(
            chama_id=chama_id, previous_balance=previous, recomputed_balance=recomputed
        )
        if result.drift:
            logger.warning(
                "chama balance drift corrected",
                extra={"chama_id": chama_id, "drift": str(result.drift)},
            )
        return result

    def purge_stale_pending_requests(self, *, now: datetime | None = None) -> int:
        """Delete pending pushes older than the configured retention window, if one is set."""

        retention_hours = self._settings.pending_request_retention_hours
        if retention_hours is None:
            return 0
        current_time = now or datetime.now(timezone.utc)
        cutoff = current_time - timedelta(hours=retention_hours)
        purged = PendingRequestStore(self._session).purge_stale(older_than=cutoff)
        self._session.commit()
        if purged:
            logger.info("purged stale pending requests", extra={"purged": purged})
        return purged


__all__ = ["BalanceRecomputation", "BalanceRepairService", "RepairReport"]

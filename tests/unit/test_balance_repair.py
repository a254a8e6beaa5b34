from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from prometheus_client import REGISTRY
from sqlalchemy.orm import Session

from chama.core.config import Settings
from chama.models import Chama, Contribution, ContributionStatus, PendingContributionRequest
from chama.services.balance_repair import BalanceRepairService
from chama.services.exceptions import NotFoundError
from workers.balance_repair.main import run_once


def _ledger_row(session: Session, chama_id: str, user_id: str, amount: str, checkout_id: str, *, applied: bool) -> None:
    session.add(
        Contribution(
            chama_id=chama_id,
            user_id=user_id,
            amount=Decimal(amount),
            contributed_at=datetime(2024, 1, 15, 11, 30, tzinfo=UTC),
            mpesa_receipt_number=f"R-{checkout_id}",
            checkout_request_id=checkout_id,
            status=ContributionStatus.SUCCESS,
            balance_applied=applied,
        )
    )


def _balance(session: Session, chama_id: str) -> Decimal:
    session.expire_all()
    return Decimal(session.get(Chama, chama_id).total_balance)


def test_apply_pending_repairs_only_touches_unapplied_rows(db_session: Session, make_user, make_chama) -> None:
    user = make_user()
    chama = make_chama(total_balance=Decimal("500"))
    _ledger_row(db_session, chama.id, user.id, "500", "ws_1", applied=True)
    _ledger_row(db_session, chama.id, user.id, "300", "ws_2", applied=False)
    db_session.commit()

    service = BalanceRepairService(db_session, settings=Settings())

    assert service.apply_pending_repairs() == 1
    assert service.apply_pending_repairs() == 0
    assert _balance(db_session, chama.id) == Decimal("800.00")


def test_recompute_balance_heals_drift(db_session: Session, make_user, make_chama) -> None:
    user = make_user()
    chama = make_chama(total_balance=Decimal("1200"))
    _ledger_row(db_session, chama.id, user.id, "500", "ws_1", applied=True)
    _ledger_row(db_session, chama.id, user.id, "300", "ws_2", applied=False)
    db_session.commit()

    result = BalanceRepairService(db_session, settings=Settings()).recompute_balance(chama.id)

    assert result.previous_balance == Decimal("1200.00")
    assert result.recomputed_balance == Decimal("800.00")
    assert result.drift == Decimal("-400.00")
    assert _balance(db_session, chama.id) == Decimal("800.00")
    # The recomputed balance already includes the unapplied row.
    assert BalanceRepairService(db_session, settings=Settings()).apply_pending_repairs() == 0


def test_recompute_balance_for_missing_chama(db_session: Session) -> None:
    with pytest.raises(NotFoundError):
        BalanceRepairService(db_session, settings=Settings()).recompute_balance("missing")


def _stale_pending(session: Session, chama_id: str, user_id: str, now: datetime) -> None:
    session.add(
        PendingContributionRequest(
            checkout_request_id="ws_old",
            chama_id=chama_id,
            user_id=user_id,
            amount=Decimal("100"),
            created_at=now - timedelta(hours=48),
        )
    )
    session.commit()


def test_pending_requests_are_kept_without_retention_window(db_session: Session, make_user, make_chama) -> None:
    user = make_user()
    chama = make_chama()
    now = datetime.now(tz=UTC)
    _stale_pending(db_session, chama.id, user.id, now)

    purged = BalanceRepairService(db_session, settings=Settings()).purge_stale_pending_requests(now=now)

    assert purged == 0
    assert db_session.get(PendingContributionRequest, "ws_old") is not None


def test_pending_requests_purged_when_retention_configured(db_session: Session, make_user, make_chama) -> None:
    user = make_user()
    chama = make_chama()
    now = datetime.now(tz=UTC)
    _stale_pending(db_session, chama.id, user.id, now)

    service = BalanceRepairService(db_session, settings=Settings(pending_request_retention_hours=24))

    assert service.purge_stale_pending_requests(now=now) == 1
    assert db_session.get(PendingContributionRequest, "ws_old") is None


def test_worker_cycle_reports_repairs(db_session: Session, make_user, make_chama) -> None:
    user = make_user()
    chama = make_chama()
    _ledger_row(db_session, chama.id, user.id, "300", "ws_2", applied=False)
    db_session.commit()
    before = REGISTRY.get_sample_value("chama_balance_repairs_total") or 0.0

    report = asyncio.run(run_once(BalanceRepairService(db_session, settings=Settings())))

    assert report.repaired_contributions == 1
    assert report.purged_pending_requests == 0
    assert REGISTRY.get_sample_value("chama_balance_repairs_total") == before + 1
    assert _balance(db_session, chama.id) == Decimal("300.00")

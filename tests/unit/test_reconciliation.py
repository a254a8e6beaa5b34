from __future__ import annotations

import threading
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from chama.core.config import Settings
from chama.models import (
    Base,
    Chama,
    Contribution,
    ContributionStatus,
    MpesaCallbackLog,
    PendingContributionRequest,
    User,
    UserRole,
)
from chama.services.balance_repair import BalanceRepairService
from chama.services.exceptions import ConsistencyError
from chama.services.pending_requests import PendingRequestStore
from chama.services.reconciliation import CallbackOutcome, ReconciliationService

RECEIVED_AT = datetime(2024, 2, 1, 9, 0, 0, tzinfo=UTC)


def _callback(
    checkout_id: str | None = "ws_1",
    *,
    result_code: int = 0,
    receipt: str | None = "ABC123",
    amount: object = 500,
    transaction_date: object = 20240115143000,
) -> dict:
    body: dict = {
        "MerchantRequestID": "mr_1",
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully." if result_code == 0 else "Request cancelled by user",
    }
    if checkout_id is not None:
        body["CheckoutRequestID"] = checkout_id
    if result_code == 0:
        items = [{"Name": "Amount", "Value": amount}, {"Name": "PhoneNumber", "Value": 254712345678}]
        if receipt is not None:
            items.append({"Name": "MpesaReceiptNumber", "Value": receipt})
        if transaction_date is not None:
            items.append({"Name": "TransactionDate", "Value": transaction_date})
        body["CallbackMetadata"] = {"Item": items}
    return {"Body": {"stkCallback": body}}


@pytest.fixture()
def pending(db_session: Session, make_user, make_chama):
    user = make_user()
    chama = make_chama()

    def _record(checkout_id: str = "ws_1", amount: str = "500") -> tuple[str, str]:
        PendingRequestStore(db_session).record(
            correlation_id=checkout_id, chama_id=chama.id, user_id=user.id, amount=Decimal(amount)
        )
        db_session.commit()
        return chama.id, user.id

    return _record


def _service(db_session: Session, **settings: object) -> ReconciliationService:
    return ReconciliationService(db_session, settings=Settings(**settings), now=lambda: RECEIVED_AT)


def _balance(db_session: Session, chama_id: str) -> Decimal:
    db_session.expire_all()
    chama = db_session.get(Chama, chama_id)
    assert chama is not None
    return Decimal(chama.total_balance)


def _contributions(db_session: Session) -> list[Contribution]:
    return list(db_session.scalars(select(Contribution)).all())


def _outcome_count(outcome: CallbackOutcome) -> float:
    value = REGISTRY.get_sample_value("mpesa_callback_outcomes_total", {"outcome": outcome.value})
    return value or 0.0


def test_successful_callback_settles_contribution(db_session: Session, pending) -> None:
    chama_id, user_id = pending()
    before = _outcome_count(CallbackOutcome.SETTLED)

    result = _service(db_session).handle_callback(_callback())

    assert result.outcome is CallbackOutcome.SETTLED
    assert result.acknowledged
    [contribution] = _contributions(db_session)
    assert result.contribution_id == contribution.id
    assert contribution.chama_id == chama_id
    assert contribution.user_id == user_id
    assert Decimal(contribution.amount) == Decimal("500.00")
    assert contribution.status is ContributionStatus.SUCCESS
    assert contribution.mpesa_receipt_number == "ABC123"
    assert contribution.checkout_request_id == "ws_1"
    assert contribution.balance_applied is True
    # 14:30 at UTC+3 is stored as 11:30 UTC.
    assert contribution.contributed_at.replace(tzinfo=None) == datetime(2024, 1, 15, 11, 30)
    assert _balance(db_session, chama_id) == Decimal("500.00")
    assert db_session.get(PendingContributionRequest, "ws_1") is None
    assert _outcome_count(CallbackOutcome.SETTLED) == before + 1


def test_duplicate_delivery_credits_chama_once(db_session: Session, pending) -> None:
    chama_id, _ = pending()
    service = _service(db_session)

    first = service.handle_callback(_callback())
    second = service.handle_callback(_callback())
    third = service.handle_callback(_callback())

    assert first.outcome is CallbackOutcome.SETTLED
    assert second.outcome is CallbackOutcome.UNKNOWN
    assert third.outcome is CallbackOutcome.UNKNOWN
    assert second.acknowledged
    assert len(_contributions(db_session)) == 1
    assert _balance(db_session, chama_id) == Decimal("500.00")
    assert db_session.scalar(select(func.count(MpesaCallbackLog.id))) == 3


def test_success_row_is_unique_per_correlation_id(db_session: Session, pending) -> None:
    chama_id, user_id = pending()
    _service(db_session).handle_callback(_callback())

    db_session.add(
        Contribution(
            chama_id=chama_id,
            user_id=user_id,
            amount=Decimal("500"),
            contributed_at=RECEIVED_AT,
            checkout_request_id="ws_1",
            status=ContributionStatus.SUCCESS,
        )
    )
    with pytest.raises(IntegrityError):
        db_session.commit()
    db_session.rollback()


def test_rejected_callback_only_writes_audit_row(db_session: Session, pending) -> None:
    chama_id, _ = pending()

    result = _service(db_session).handle_callback(_callback(result_code=1032))

    assert result.outcome is CallbackOutcome.REJECTED
    assert result.acknowledged
    assert _contributions(db_session) == []
    assert _balance(db_session, chama_id) == Decimal("0")
    [log] = db_session.scalars(select(MpesaCallbackLog)).all()
    assert log.result_code == 1032
    assert log.checkout_request_id == "ws_1"
    assert db_session.get(PendingContributionRequest, "ws_1") is not None


def test_unknown_correlation_id_is_acknowledged(db_session: Session) -> None:
    result = _service(db_session).handle_callback(_callback("ws_unknown"))

    assert result.outcome is CallbackOutcome.UNKNOWN
    assert result.acknowledged
    assert _contributions(db_session) == []
    assert db_session.scalar(select(func.count(MpesaCallbackLog.id))) == 1


def test_success_without_receipt_is_invalid(db_session: Session, pending) -> None:
    pending()

    result = _service(db_session).handle_callback(_callback(receipt=None))

    assert result.outcome is CallbackOutcome.INVALID
    assert result.acknowledged
    assert _contributions(db_session) == []
    assert db_session.get(PendingContributionRequest, "ws_1") is not None


def test_undecodable_transaction_date_fails_closed(db_session: Session, pending) -> None:
    pending()

    result = _service(db_session).handle_callback(_callback(transaction_date="2024-01-15 14:30"))

    assert result.outcome is CallbackOutcome.INVALID
    assert _contributions(db_session) == []
    [log] = db_session.scalars(select(MpesaCallbackLog)).all()
    assert log.transaction_date is None
    assert log.mpesa_receipt_number == "ABC123"
    assert db_session.get(PendingContributionRequest, "ws_1") is not None


def test_missing_transaction_date_uses_receipt_time(db_session: Session, pending) -> None:
    pending()

    result = _service(db_session).handle_callback(_callback(transaction_date=None))

    assert result.outcome is CallbackOutcome.SETTLED
    [contribution] = _contributions(db_session)
    assert contribution.contributed_at.replace(tzinfo=None) == RECEIVED_AT.replace(tzinfo=None)


def test_ledger_amount_comes_from_pending_request(db_session: Session, pending) -> None:
    chama_id, _ = pending(amount="500")

    result = _service(db_session).handle_callback(_callback(amount=1))

    assert result.outcome is CallbackOutcome.SETTLED
    [contribution] = _contributions(db_session)
    assert Decimal(contribution.amount) == Decimal("500.00")
    assert _balance(db_session, chama_id) == Decimal("500.00")


@pytest.mark.parametrize(
    "payload",
    [
        {"unexpected": True},
        "not-json-object",
        {"Body": {"stkCallback": {"ResultCode": 0}}},
    ],
)
def test_malformed_callback_is_logged_and_not_acknowledged(db_session: Session, payload: object) -> None:
    result = _service(db_session).handle_callback(payload)

    assert result.outcome is CallbackOutcome.MALFORMED
    assert not result.acknowledged
    [log] = db_session.scalars(select(MpesaCallbackLog)).all()
    assert log.raw_payload is not None


def test_balance_failure_is_retried(db_session: Session, pending, monkeypatch: pytest.MonkeyPatch) -> None:
    chama_id, _ = pending()
    original = ReconciliationService._increment_balance
    calls = {"count": 0}

    def flaky(self, chama_id: str, amount: Decimal) -> None:
        calls["count"] += 1
        if calls["count"] == 1:
            raise ConsistencyError("transient")
        original(self, chama_id, amount)

    monkeypatch.setattr(ReconciliationService, "_increment_balance", flaky)

    result = _service(db_session, reconciliation_max_attempts=3).handle_callback(_callback())

    assert result.outcome is CallbackOutcome.SETTLED
    assert calls["count"] == 2
    assert len(_contributions(db_session)) == 1
    assert _balance(db_session, chama_id) == Decimal("500.00")


def test_persistent_balance_failure_keeps_ledger_row_for_repair(
    db_session: Session, pending, monkeypatch: pytest.MonkeyPatch
) -> None:
    chama_id, _ = pending()
    calls = {"count": 0}

    def broken(self, chama_id: str, amount: Decimal) -> None:
        calls["count"] += 1
        raise ConsistencyError("balance store unavailable")

    monkeypatch.setattr(ReconciliationService, "_increment_balance", broken)

    result = _service(db_session, reconciliation_max_attempts=2).handle_callback(_callback())

    assert result.outcome is CallbackOutcome.REPAIR_REQUIRED
    assert result.acknowledged
    assert calls["count"] == 2
    [contribution] = _contributions(db_session)
    assert contribution.balance_applied is False
    assert _balance(db_session, chama_id) == Decimal("0")
    assert db_session.get(PendingContributionRequest, "ws_1") is None

    monkeypatch.undo()
    repaired = BalanceRepairService(db_session, settings=Settings()).apply_pending_repairs()

    assert repaired == 1
    assert _balance(db_session, chama_id) == Decimal("500.00")
    db_session.expire_all()
    assert db_session.get(Contribution, contribution.id).balance_applied is True


def test_balance_matches_recomputed_ledger_sum(db_session: Session, pending) -> None:
    chama_id, _ = pending("ws_1", "500")
    pending("ws_2", "250")
    pending("ws_3", "100")
    service = _service(db_session)

    service.handle_callback(_callback("ws_1", receipt="R1"))
    service.handle_callback(_callback("ws_2", receipt="R2"))
    service.handle_callback(_callback("ws_3", result_code=1032))
    service.handle_callback(_callback("ws_2", receipt="R2"))

    recomputation = BalanceRepairService(db_session, settings=Settings()).recompute_balance(chama_id)

    assert recomputation.recomputed_balance == Decimal("750.00")
    assert recomputation.previous_balance == Decimal("750.00")
    assert recomputation.drift == Decimal("0")


def test_concurrent_duplicate_deliveries_settle_once(tmp_path: Path) -> None:
    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    session_factory = sessionmaker(bind=engine, autoflush=False)

    with session_factory() as session:
        user = User(
            first_name="Member",
            last_name="1",
            email="member1@example.com",
            phone_number="0712345678",
            hashed_password="not-used",
            role=UserRole.USER,
        )
        chama = Chama(name="Umoja Savings", invitation_code="INV001", total_balance=Decimal("0"))
        session.add_all([user, chama])
        session.commit()
        PendingRequestStore(session).record(
            correlation_id="ws_1", chama_id=chama.id, user_id=user.id, amount=Decimal("500")
        )
        session.commit()
        chama_id = chama.id

    deliveries = 4
    barrier = threading.Barrier(deliveries)
    lock = threading.Lock()
    outcomes: list[str] = []
    errors: list[Exception] = []

    def deliver() -> None:
        with session_factory() as session:
            service = _service(session)
            barrier.wait()
            try:
                result = service.handle_callback(_callback())
            except Exception as exc:
                with lock:
                    errors.append(exc)
                return
            with lock:
                outcomes.append(result.outcome.value)

    threads = [threading.Thread(target=deliver) for _ in range(deliveries)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)

    try:
        assert errors == []
        assert sorted(outcomes) == ["SETTLED"] + ["UNKNOWN"] * (deliveries - 1)
        with session_factory() as session:
            rows = session.scalars(select(Contribution)).all()
            assert len(rows) == 1
            assert rows[0].status == ContributionStatus.SUCCESS
            assert session.get(PendingContributionRequest, "ws_1") is None
            chama = session.get(Chama, chama_id)
            assert chama is not None
            assert Decimal(chama.total_balance) == Decimal("500")
    finally:
        engine.dispose()

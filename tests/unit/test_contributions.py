from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from chama.models import PendingContributionRequest, UserRole
from chama.services.contributions import ContributionService, normalize_phone_number
from chama.services.exceptions import (
    DuplicateCorrelationError,
    GatewayRequestError,
    NotFoundError,
    ValidationError,
)


@pytest.mark.parametrize(
    "raw",
    ["0712345678", "712345678", "254712345678", "+254 712 345 678", "0712-345-678"],
)
def test_normalize_phone_number_accepts_kenyan_formats(raw: str) -> None:
    assert normalize_phone_number(raw) == "254712345678"


@pytest.mark.parametrize("raw", ["12345", "", None, "0812345678", "2547123456789", "255712345678"])
def test_normalize_phone_number_rejects_other_values(raw: object) -> None:
    with pytest.raises(ValidationError):
        normalize_phone_number(raw)


def test_initiate_records_pending_request(db_session: Session, fake_gateway, make_user, make_chama) -> None:
    user = make_user(phone_number="0712345678")
    chama = make_chama(name="Umoja")

    result = ContributionService(db_session, gateway=fake_gateway).initiate(
        user_id=user.id, chama_id=chama.id, amount=Decimal("500")
    )

    assert result.checkout_request_id == "ws_1"
    assert result.amount == Decimal("500.00")
    assert fake_gateway.requests[0]["phone_number"] == "254712345678"
    assert fake_gateway.requests[0]["account_reference"] == "Umoja"

    pending = db_session.get(PendingContributionRequest, "ws_1")
    assert pending is not None
    assert pending.chama_id == chama.id
    assert pending.user_id == user.id
    assert Decimal(pending.amount) == Decimal("500.00")
    assert pending.merchant_request_id == "mr_ws_1"


def test_initiate_requires_existing_user_and_chama(db_session: Session, fake_gateway, make_user, make_chama) -> None:
    user = make_user()
    chama = make_chama()
    service = ContributionService(db_session, gateway=fake_gateway)

    with pytest.raises(NotFoundError, match="User"):
        service.initiate(user_id="missing", chama_id=chama.id, amount=Decimal("100"))
    with pytest.raises(NotFoundError, match="Chama"):
        service.initiate(user_id=user.id, chama_id="missing", amount=Decimal("100"))
    assert fake_gateway.requests == []


def test_initiate_rejects_fractional_amounts(db_session: Session, fake_gateway, make_user, make_chama) -> None:
    user = make_user()
    chama = make_chama()

    with pytest.raises(ValidationError):
        ContributionService(db_session, gateway=fake_gateway).initiate(
            user_id=user.id, chama_id=chama.id, amount=Decimal("10.50")
        )
    assert fake_gateway.requests == []


def test_initiate_rejects_invalid_phone_before_calling_gateway(
    db_session: Session, fake_gateway, make_user, make_chama
) -> None:
    user = make_user(phone_number="12345", role=UserRole.SECRETARY)
    chama = make_chama()

    with pytest.raises(ValidationError, match="2547XXXXXXXX"):
        ContributionService(db_session, gateway=fake_gateway).initiate(
            user_id=user.id, chama_id=chama.id, amount=Decimal("100")
        )
    assert fake_gateway.requests == []


def test_gateway_rejection_leaves_no_pending_entry(
    db_session: Session, fake_gateway, make_user, make_chama
) -> None:
    user = make_user()
    chama = make_chama()
    fake_gateway.error = GatewayRequestError("Invalid PhoneNumber", cause={"errorCode": "400.002.02"})

    with pytest.raises(GatewayRequestError):
        ContributionService(db_session, gateway=fake_gateway).initiate(
            user_id=user.id, chama_id=chama.id, amount=Decimal("100")
        )
    assert db_session.scalars(select(PendingContributionRequest)).all() == []


def test_repeated_correlation_id_is_a_conflict(db_session: Session, fake_gateway, make_user, make_chama) -> None:
    user = make_user()
    chama = make_chama()
    fake_gateway.checkout_ids = ["ws_1", "ws_1"]
    service = ContributionService(db_session, gateway=fake_gateway)

    service.initiate(user_id=user.id, chama_id=chama.id, amount=Decimal("100"))
    with pytest.raises(DuplicateCorrelationError):
        service.initiate(user_id=user.id, chama_id=chama.id, amount=Decimal("200"))

    pending = db_session.get(PendingContributionRequest, "ws_1")
    assert pending is not None
    assert Decimal(pending.amount) == Decimal("100.00")

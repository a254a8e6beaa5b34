"""STK push initiation for member contributions."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from sqlalchemy.orm import Session

from chama.core.logging import mask_phone_number
from chama.models import Chama, User
from chama.obs import STK_PUSH_COUNTER
from chama.services.daraja import StkPushAcceptance
from chama.services.exceptions import GatewayError, NotFoundError, ValidationError
from chama.services.pending_requests import PendingRequestStore

logger = logging.getLogger(__name__)

_MSISDN_PATTERN = re.compile(r"^2547\d{8}$")


class PaymentGateway(Protocol):
    """Anything that can send an STK push prompt."""

    def submit_payment_request(
        self,
        *,
        phone_number: str,
        amount: Decimal,
        account_reference: str,
        description: str,
    ) -> StkPushAcceptance:
        """Submit the push and return the gateway acceptance."""


@dataclass(slots=True, frozen=True)
class StkPushResult:
    """Returned to the member once the gateway accepted the push."""

    checkout_request_id: str
    merchant_request_id: str | None
    customer_message: str | None
    amount: Decimal


def normalize_phone_number(raw: object) -> str:
    """Normalize a Kenyan mobile number to the ``2547XXXXXXXX`` form Daraja requires.

    >>> normalize_phone_number("0712 345 678")
    '254712345678'
    """

    digits = re.sub(r"\D", "", str(raw or "").strip())
    if digits.startswith("0"):
        digits = "254" + digits[1:]
    elif digits.startswith("7") and len(digits) == 9:
        digits = "254" + digits
    if not _MSISDN_PATTERN.match(digits):
        raise ValidationError("Invalid phone number format for M-Pesa (should be 2547XXXXXXXX)")
    return digits


class ContributionService:
    """Starts M-Pesa contributions and records the pending intent."""

    def __init__(self, session: Session, *, gateway: PaymentGateway) -> None:
        self._session = session
        self._gateway = gateway
        self._store = PendingRequestStore(session)

    def initiate(self, *, user_id: str, chama_id: str, amount: Decimal) -> StkPushResult:
        user = self._session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        chama = self._session.get(Chama, chama_id)
        if chama is None:
            raise NotFoundError("Chama not found")

        if amount <= 0 or amount != amount.to_integral_value():
            raise ValidationError("M-Pesa contributions must be a positive whole amount")
        normalized_amount = amount.quantize(Decimal("0.01"))

        try:
            phone_number = normalize_phone_number(user.phone_number)
        except ValidationError:
            logger.warning(
                "rejecting push for invalid phone number",
                extra={"user_id": user_id, "phone_number": mask_phone_number(user.phone_number)},
            )
            STK_PUSH_COUNTER.labels(result="invalid_phone").inc()
            raise

        try:
            acceptance = self._gateway.submit_payment_request(
                phone_number=phone_number,
                amount=normalized_amount,
                account_reference=chama.name,
                description=f"Contribution to {chama.name}",
            )
        except GatewayError:
            STK_PUSH_COUNTER.labels(result="gateway_error").inc()
            raise

        self._store.record(
            correlation_id=acceptance.checkout_request_id,
            merchant_request_id=acceptance.merchant_request_id,
            chama_id=chama.id,
            user_id=user.id,
            amount=normalized_amount,
        )
        self._session.commit()
        STK_PUSH_COUNTER.labels(result="accepted").inc()
        logger.info(
            "stk push accepted",
            extra={"checkout_request_id": acceptance.checkout_request_id, "chama_id": chama.id},
        )

        return StkPushResult(
            checkout_request_id=acceptance.checkout_request_id,
            merchant_request_id=acceptance.merchant_request_id,
            customer_message=acceptance.customer_message,
            amount=normalized_amount,
        )


__all__ = ["ContributionService", "PaymentGateway", "StkPushResult", "normalize_phone_number"]

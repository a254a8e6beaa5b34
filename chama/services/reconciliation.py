"""Settlement of asynchronous M-Pesa STK callbacks into the contribution ledger.

Each callback moves its CheckoutRequestID through a small state machine::

    REQUESTED --ResultCode 0--> SETTLED
    REQUESTED --ResultCode != 0--> REJECTED
    (no pending entry) --> UNKNOWN

Settlement writes the ledger row, increments the chama balance and retires
the pending entry inside one write-locked transaction. A partial unique index
on ``contributions.checkout_request_id`` for SUCCESS rows backs this up, so a
redelivered or concurrent duplicate can never credit a chama twice.
"""
from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from opentelemetry import trace
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from chama.core.config import Settings, get_settings
from chama.core.logging import mask_phone_number
from chama.db.transactions import serializable_transaction
from chama.models import Chama, Contribution, ContributionStatus, MpesaCallbackLog
from chama.obs import CALLBACK_OUTCOME_COUNTER
from chama.services.callbacks import (
    CallbackPayloadError,
    CallbackTimestampError,
    StkCallback,
    decode_transaction_timestamp,
    parse_stk_callback,
)
from chama.services.exceptions import ConsistencyError
from chama.services.pending_requests import (
    PendingContribution,
    PendingRequestNotFoundError,
    PendingRequestStore,
)

logger = logging.getLogger(__name__)


class CallbackOutcome(str, enum.Enum):
    SETTLED = "SETTLED"
    REJECTED = "REJECTED"
    UNKNOWN = "UNKNOWN"
    INVALID = "INVALID"
    REPAIR_REQUIRED = "REPAIR_REQUIRED"
    MALFORMED = "MALFORMED"


@dataclass(slots=True, frozen=True)
class ReconciliationResult:
    """What happened to one callback delivery."""

    outcome: CallbackOutcome
    checkout_request_id: str | None
    contribution_id: str | None = None
    detail: str | None = None

    @property
    def acknowledged(self) -> bool:
        """Whether the gateway should receive a success acknowledgement."""
        return self.outcome is not CallbackOutcome.MALFORMED


class ReconciliationService:
    """Consumes Daraja callbacks and keeps ledger and balances consistent."""

    def __init__(
        self,
        session: Session,
        *,
        settings: Settings | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._store = PendingRequestStore(session)

    def handle_callback(self, payload: Any) -> ReconciliationResult:
        received_at = self._now()
        try:
            callback = parse_stk_callback(payload)
        except CallbackPayloadError as exc:
            self._append_log(None, payload, received_at=received_at, transaction_date=None)
            return self._finish(CallbackOutcome.MALFORMED, None, detail=str(exc))

        transaction_date: datetime | None = None
        timestamp_error: CallbackTimestampError | None = None
        if callback.transaction_date is not None:
            try:
                transaction_date = decode_transaction_timestamp(
                    callback.transaction_date,
                    utc_offset_hours=self._settings.daraja_utc_offset_hours,
                )
            except CallbackTimestampError as exc:
                timestamp_error = exc

        self._append_log(callback, payload, received_at=received_at, transaction_date=transaction_date)

        checkout_id = callback.checkout_request_id
        try:
            callback.validate()
        except CallbackPayloadError as exc:
            return self._finish(CallbackOutcome.MALFORMED, checkout_id, detail=str(exc))

        if not callback.succeeded:
            logger.info(
                "payment rejected by gateway",
                extra={
                    "checkout_request_id": checkout_id,
                    "result_code": callback.result_code,
                    "result_desc": callback.result_desc,
                },
            )
            return self._finish(CallbackOutcome.REJECTED, checkout_id, detail=callback.result_desc)

        if not callback.mpesa_receipt_number:
            logger.error("successful callback without receipt number", extra={"checkout_request_id": checkout_id})
            return self._finish(CallbackOutcome.INVALID, checkout_id, detail="missing MpesaReceiptNumber")

        if timestamp_error is not None:
            logger.error(
                "callback transaction date could not be decoded",
                extra={"checkout_request_id": checkout_id, "error": str(timestamp_error)},
            )
            return self._finish(CallbackOutcome.INVALID, checkout_id, detail=str(timestamp_error))

        return self._settle(callback, checkout_id, contributed_at=transaction_date or received_at)

    def _settle(
        self, callback: StkCallback, checkout_id: str, *, contributed_at: datetime
    ) -> ReconciliationResult:
        attempts = max(1, self._settings.reconciliation_max_attempts)
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._settle_once(callback, checkout_id, contributed_at=contributed_at)
            except ConsistencyError as exc:
                if attempt >= attempts:
                    return self._record_for_repair(
                        callback, checkout_id, contributed_at=contributed_at, error=exc
                    )
                logger.warning(
                    "balance increment failed, retrying settlement",
                    extra={
                        "checkout_request_id": callback.checkout_request_id,
                        "attempt": attempt,
                        "error": str(exc),
                    },
                )

    def _settle_once(
        self, callback: StkCallback, checkout_id: str, *, contributed_at: datetime
    ) -> ReconciliationResult:
        try:
            with serializable_transaction(self._session):
                try:
                    pending = self._store.resolve(checkout_id, lock=True)
                except PendingRequestNotFoundError:
                    return self._unknown(callback)
                contribution = self._insert_contribution(
                    pending, callback, contributed_at=contributed_at, balance_applied=True
                )
                contribution_id = contribution.id
                self._increment_balance(pending.chama_id, pending.amount)
                self._store.retire(checkout_id)
        except IntegrityError:
            if not self._already_settled(checkout_id):
                raise
            return self._unknown(callback)

        logger.info(
            "contribution settled",
            extra={
                "checkout_request_id": checkout_id,
                "chama_id": pending.chama_id,
                "amount": str(pending.amount),
                "mpesa_receipt_number": callback.mpesa_receipt_number,
            },
        )
        return self._finish(CallbackOutcome.SETTLED, checkout_id, contribution_id=contribution_id)

    def _record_for_repair(
        self,
        callback: StkCallback,
        checkout_id: str,
        *,
        contributed_at: datetime,
        error: ConsistencyError,
    ) -> ReconciliationResult:
        try:
            with serializable_transaction(self._session):
                try:
                    pending = self._store.resolve(checkout_id, lock=True)
                except PendingRequestNotFoundError:
                    return self._unknown(callback)
                contribution = self._insert_contribution(
                    pending, callback, contributed_at=contributed_at, balance_applied=False
                )
                contribution_id = contribution.id
                self._store.retire(checkout_id)
        except IntegrityError:
            if not self._already_settled(checkout_id):
                raise
            return self._unknown(callback)

        logger.error(
            "ledger row recorded without balance increment; repair required",
            exc_info=error,
            extra={
                "checkout_request_id": checkout_id,
                "chama_id": pending.chama_id,
                "contribution_id": contribution_id,
            },
        )
        return self._finish(
            CallbackOutcome.REPAIR_REQUIRED,
            checkout_id,
            contribution_id=contribution_id,
            detail=str(error),
        )

    def _insert_contribution(
        self,
        pending: PendingContribution,
        callback: StkCallback,
        *,
        contributed_at: datetime,
        balance_applied: bool,
    ) -> Contribution:
        if callback.amount is not None and callback.amount != pending.amount:
            logger.warning(
                "callback amount differs from requested amount",
                extra={
                    "checkout_request_id": pending.checkout_request_id,
                    "requested": str(pending.amount),
                    "reported": str(callback.amount),
                },
            )
        contribution = Contribution(
            chama_id=pending.chama_id,
            user_id=pending.user_id,
            amount=pending.amount,
            contributed_at=contributed_at.astimezone(timezone.utc),
            mpesa_receipt_number=callback.mpesa_receipt_number,
            checkout_request_id=pending.checkout_request_id,
            status=ContributionStatus.SUCCESS,
            balance_applied=balance_applied,
        )
        self._session.add(contribution)
        self._session.flush()
        return contribution

    def _increment_balance(self, chama_id: str, amount: Decimal) -> None:
        statement = (
            update(Chama)
            .where(Chama.id == chama_id)
            .values(total_balance=Chama.total_balance + amount)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self._session.execute(statement)
        except SQLAlchemyError as exc:
            raise ConsistencyError(f"Balance increment failed for chama '{chama_id}'") from exc
        if result.rowcount != 1:
            raise ConsistencyError(f"Chama '{chama_id}' was not found for balance increment")

    def _already_settled(self, checkout_id: str) -> bool:
        statement = select(Contribution.id).where(
            Contribution.checkout_request_id == checkout_id,
            Contribution.status == ContributionStatus.SUCCESS,
        )
        return self._session.scalars(statement).first() is not None

    def _unknown(self, callback: StkCallback) -> ReconciliationResult:
        logger.warning(
            "callback has no pending request; already settled or never initiated",
            extra={
                "checkout_request_id": callback.checkout_request_id,
                "mpesa_receipt_number": callback.mpesa_receipt_number,
            },
        )
        return self._finish(
            CallbackOutcome.UNKNOWN, callback.checkout_request_id, detail="no pending request"
        )

    def _append_log(
        self,
        callback: StkCallback | None,
        payload: Any,
        *,
        received_at: datetime,
        transaction_date: datetime | None,
    ) -> None:
        entry = MpesaCallbackLog(
            raw_payload=payload if isinstance(payload, (dict, list)) else {"raw": str(payload)},
            received_at=received_at,
            transaction_date=transaction_date,
        )
        if callback is not None:
            entry.merchant_request_id = callback.merchant_request_id
            entry.checkout_request_id = callback.checkout_request_id
            entry.result_code = callback.result_code
            entry.result_desc = callback.result_desc
            entry.amount = callback.amount
            entry.mpesa_receipt_number = callback.mpesa_receipt_number
            entry.phone_number = callback.phone_number
        self._session.add(entry)
        self._session.commit()
        logger.debug(
            "callback logged",
            extra={
                "checkout_request_id": entry.checkout_request_id,
                "phone_number": mask_phone_number(entry.phone_number),
            },
        )

    @staticmethod
    def _finish(
        outcome: CallbackOutcome,
        checkout_request_id: str | None,
        *,
        contribution_id: str | None = None,
        detail: str | None = None,
    ) -> ReconciliationResult:
        CALLBACK_OUTCOME_COUNTER.labels(outcome=outcome.value).inc()
        span = trace.get_current_span()
        span.set_attribute("mpesa.callback_outcome", outcome.value)
        if checkout_request_id is not None:
            span.set_attribute("mpesa.checkout_request_id", checkout_request_id)
        return ReconciliationResult(
            outcome=outcome,
            checkout_request_id=checkout_request_id,
            contribution_id=contribution_id,
            detail=detail,
        )


__all__ = ["CallbackOutcome", "ReconciliationResult", "ReconciliationService"]

"""Parsing of Daraja STK callback payloads."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from chama.services.exceptions import ValidationError

_TIMESTAMP_PATTERN = re.compile(r"^\d{14}$")


class CallbackPayloadError(ValidationError):
    """Raised when a callback body is not a recognisable stkCallback envelope."""


class CallbackTimestampError(ValidationError):
    """Raised when ``TransactionDate`` is not a 14 digit YYYYMMDDHHMMSS value."""


@dataclass(slots=True, frozen=True)
class StkCallback:
    """Fields extracted from ``Body.stkCallback``.

    Metadata fields are ``None`` when the gateway omitted ``CallbackMetadata``,
    which it does for every non-zero result code.
    """

    merchant_request_id: str | None
    checkout_request_id: str | None
    result_code: int | None
    result_desc: str | None
    amount: Decimal | None = None
    mpesa_receipt_number: str | None = None
    transaction_date: str | None = None
    phone_number: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.result_code == 0

    def validate(self) -> None:
        if not self.checkout_request_id:
            raise CallbackPayloadError("stkCallback.CheckoutRequestID is required")
        if self.result_code is None:
            raise CallbackPayloadError("stkCallback.ResultCode must be an integer")


def parse_stk_callback(payload: Any) -> StkCallback:
    """Extract callback fields without assuming any optional section is present.

    Only a body that is not a ``{"Body": {"stkCallback": {...}}}`` object raises;
    missing individual fields come back as ``None`` so the delivery can still
    be written to the audit log before :meth:`StkCallback.validate` runs.
    """

    body = payload.get("Body") if isinstance(payload, dict) else None
    result = body.get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(result, dict):
        raise CallbackPayloadError("Body.stkCallback is missing")

    items: dict[str, Any] = {}
    metadata = result.get("CallbackMetadata")
    if isinstance(metadata, dict) and isinstance(metadata.get("Item"), list):
        for item in metadata["Item"]:
            if isinstance(item, dict) and "Name" in item:
                items[str(item["Name"])] = item.get("Value")

    return StkCallback(
        merchant_request_id=_as_str(result.get("MerchantRequestID")),
        checkout_request_id=_as_str(result.get("CheckoutRequestID")),
        result_code=_as_int(result.get("ResultCode")),
        result_desc=_as_str(result.get("ResultDesc")),
        amount=_as_decimal(items.get("Amount")),
        mpesa_receipt_number=_as_str(items.get("MpesaReceiptNumber")),
        transaction_date=_as_str(items.get("TransactionDate")),
        phone_number=_as_str(items.get("PhoneNumber")),
    )


def decode_transaction_timestamp(value: str | int, *, utc_offset_hours: int = 3) -> datetime:
    """Decode a ``YYYYMMDDHHMMSS`` gateway timestamp at the gateway's fixed offset."""

    text = str(value).strip()
    if not _TIMESTAMP_PATTERN.match(text):
        raise CallbackTimestampError(f"Unexpected TransactionDate encoding: {text!r}")
    try:
        naive = datetime.strptime(text, "%Y%m%d%H%M%S")
    except ValueError as exc:
        raise CallbackTimestampError(f"Invalid TransactionDate value: {text!r}") from exc
    return naive.replace(tzinfo=timezone(timedelta(hours=utc_offset_hours)))


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


def _as_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


__all__ = [
    "CallbackPayloadError",
    "CallbackTimestampError",
    "StkCallback",
    "decode_transaction_timestamp",
    "parse_stk_callback",
]

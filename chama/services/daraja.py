"""HTTP client for the Safaricom Daraja (M-Pesa Express) API."""
from __future__ import annotations

import base64
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import httpx

from chama.core.logging import mask_phone_number
from chama.services.exceptions import GatewayAuthError, GatewayRequestError

logger = logging.getLogger(__name__)

_TOKEN_PATH = "/oauth/v1/generate"
_STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
_ACCOUNT_REFERENCE_MAX = 12
_TRANSACTION_DESC_MAX = 13


@dataclass(slots=True, frozen=True)
class DarajaConfig:
    """Credentials and endpoints for one Daraja paybill/till integration."""

    base_url: str
    consumer_key: str
    consumer_secret: str
    shortcode: str
    passkey: str
    callback_url: str
    timeout_seconds: float = 10.0
    utc_offset_hours: int = 3
    credential_margin_seconds: int = 60

    @property
    def tzinfo(self) -> timezone:
        return timezone(timedelta(hours=self.utc_offset_hours))


@dataclass(slots=True, frozen=True)
class StkPushAcceptance:
    """Gateway acknowledgement that a push prompt was sent to the payer."""

    checkout_request_id: str
    merchant_request_id: str | None
    response_description: str | None
    customer_message: str | None


@dataclass(slots=True)
class _CachedCredential:
    token: str
    expires_at: float


class DarajaClient:
    """Synchronous wrapper around the Daraja token and STK push endpoints.

    Access tokens are cached until shortly before they expire. Concurrent
    callers that find the cache empty wait on a single lock, so only one of
    them performs the outbound token request.
    """

    def __init__(
        self,
        config: DarajaConfig,
        *,
        client: httpx.Client | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._base_url = config.base_url.rstrip("/")
        self._client = client or httpx.Client()
        self._owns_client = client is None
        self._clock = clock
        self._now = now or (lambda: datetime.now(tz=config.tzinfo))
        self._credential: _CachedCredential | None = None
        self._credential_lock = threading.Lock()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "DarajaClient":  # pragma: no cover - convenience
        return self

    def __exit__(self, *_args: object) -> None:  # pragma: no cover - convenience
        self.close()

    def acquire_credential(self) -> str:
        """Return a bearer token, fetching a new one only when the cache is stale."""

        cached = self._credential
        if cached is not None and cached.expires_at > self._clock():
            return cached.token

        with self._credential_lock:
            cached = self._credential
            if cached is not None and cached.expires_at > self._clock():
                return cached.token
            self._credential = self._fetch_credential()
            return self._credential.token

    def invalidate_credential(self) -> None:
        with self._credential_lock:
            self._credential = None

    def submit_payment_request(
        self,
        *,
        phone_number: str,
        amount: Decimal,
        account_reference: str,
        description: str,
    ) -> StkPushAcceptance:
        """Send an STK push prompt; ``phone_number`` must already be in 2547XXXXXXXX form."""

        token = self.acquire_credential()
        timestamp = self._now().astimezone(self._config.tzinfo).strftime("%Y%m%d%H%M%S")
        payload = {
            "BusinessShortCode": self._config.shortcode,
            "Password": self.build_password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(amount),
            "PartyA": phone_number,
            "PartyB": self._config.shortcode,
            "PhoneNumber": phone_number,
            "CallBackURL": self._config.callback_url,
            "AccountReference": account_reference[:_ACCOUNT_REFERENCE_MAX],
            "TransactionDesc": description[:_TRANSACTION_DESC_MAX],
        }
        logger.info(
            "submitting stk push",
            extra={"phone_number": mask_phone_number(phone_number), "amount": str(amount)},
        )

        try:
            response = self._client.post(
                f"{self._base_url}{_STK_PUSH_PATH}",
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._config.timeout_seconds,
            )
        except httpx.HTTPError as exc:
            logger.error("stk push transport failure", extra={"error": str(exc)})
            raise GatewayRequestError("Failed to reach the payment gateway", cause=str(exc)) from exc

        body = _json_or_text(response)
        if response.status_code == httpx.codes.UNAUTHORIZED:
            self.invalidate_credential()
        if response.is_error:
            logger.error("stk push rejected", extra={"status": response.status_code, "body": body})
            raise GatewayRequestError("Payment gateway rejected the request", cause=body)
        if not isinstance(body, dict) or not body.get("CheckoutRequestID"):
            raise GatewayRequestError("Incomplete payment gateway response", cause=body)
        if str(body.get("ResponseCode", "0")) != "0":
            raise GatewayRequestError(
                body.get("ResponseDescription") or "Payment gateway rejected the request",
                cause=body,
            )

        return StkPushAcceptance(
            checkout_request_id=str(body["CheckoutRequestID"]),
            merchant_request_id=body.get("MerchantRequestID"),
            response_description=body.get("ResponseDescription"),
            customer_message=body.get("CustomerMessage"),
        )

    def build_password(self, timestamp: str) -> str:
        raw = f"{self._config.shortcode}{self._config.passkey}{timestamp}"
        return base64.b64encode(raw.encode("utf-8")).decode("ascii")

    def _fetch_credential(self) -> _CachedCredential:
        try:
            response = self._client.get(
                f"{self._base_url}{_TOKEN_PATH}",
                params={"grant_type": "client_credentials"},
                auth=(self._config.consumer_key, self._config.consumer_secret),
                timeout=self._config.timeout_seconds,
            )
        except httpx.HTTPError as exc:
            raise GatewayAuthError("Failed to reach the gateway token endpoint") from exc

        body = _json_or_text(response)
        if response.is_error or not isinstance(body, dict) or not body.get("access_token"):
            logger.error("gateway credential rejected", extra={"status": response.status_code})
            raise GatewayAuthError("Payment gateway rejected the configured credentials")

        try:
            lifetime = int(body.get("expires_in", 3599))
        except (TypeError, ValueError):
            lifetime = 3599
        ttl = max(0, lifetime - self._config.credential_margin_seconds)
        return _CachedCredential(token=str(body["access_token"]), expires_at=self._clock() + ttl)


def _json_or_text(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


__all__ = ["DarajaClient", "DarajaConfig", "StkPushAcceptance"]

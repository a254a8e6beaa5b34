"""Request audit logging middleware."""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

_SENSITIVE_KEYS = {
    "phone",
    "phone_number",
    "phonenumber",
    "partya",
    "msisdn",
    "password",
    "refresh_token",
    "access_token",
}


def _mask_scalar(value: Any) -> str:
    text = str(value)
    return f"***{text[-4:]}" if len(text) > 4 else "***"


def _mask_value(value: Any) -> Any:
    if isinstance(value, dict):
        # Daraja metadata arrives as [{"Name": "PhoneNumber", "Value": 2547...}].
        name = value.get("Name")
        if isinstance(name, str) and name.lower() in _SENSITIVE_KEYS and "Value" in value:
            return {**value, "Value": _mask_scalar(value["Value"])}
        return _mask_mapping(value)
    if isinstance(value, list):
        return [_mask_value(item) for item in value]
    if isinstance(value, str) and "@" in value:
        name, _, domain = value.partition("@")
        hidden = name[0] + "***" if name else "***"
        return f"{hidden}@{domain}" if domain else "***@***"
    return value


def _checkout_request_id(payload: Any) -> str | None:
    """Pull the Daraja correlation id out of a callback body, if present."""

    if not isinstance(payload, dict):
        return None
    body = payload.get("Body")
    callback = body.get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(callback, dict):
        return None
    value = callback.get("CheckoutRequestID")
    return str(value) if value is not None else None


def _mask_mapping(mapping: dict[str, Any]) -> dict[str, Any]:
    sanitized: dict[str, Any] = {}
    for key, value in mapping.items():
        if str(key).lower() in _SENSITIVE_KEYS and value is not None:
            sanitized[key] = _mask_scalar(value)
        else:
            sanitized[key] = _mask_value(value)
    return sanitized


@dataclass(slots=True)
class AuditLogRecord:
    """Structured log entry emitted by the middleware."""

    timestamp: str
    request_id: str
    method: str
    path: str
    status: int
    duration_ms: float
    actor: str | None
    ip_address: str | None
    query: dict[str, Any]
    body: Any
    checkout_request_id: str | None = None

    def to_json(self) -> str:
        payload = {
            "timestamp": self.timestamp,
            "request_id": self.request_id,
            "method": self.method,
            "path": self.path,
            "status": self.status,
            "duration_ms": round(self.duration_ms, 2),
            "actor": self.actor,
            "ip_address": self.ip_address,
            "query": self.query,
            "body": self.body,
            "checkout_request_id": self.checkout_request_id,
        }
        return json.dumps(payload, default=str)

    def to_dict(self) -> dict[str, Any]:
        return json.loads(self.to_json())


class AuditMiddleware(BaseHTTPMiddleware):
    """Writes one masked audit line per request to the ``audit`` logger."""

    def __init__(self, app: ASGIApp, *, logger: logging.Logger | None = None) -> None:
        super().__init__(app)
        self._logger = logger or logging.getLogger("audit")

    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid4().hex
        request.state.request_id = request_id
        start = time.perf_counter()

        body_bytes = await request.body()
        self._set_body(request, body_bytes)

        masked_body = None
        checkout_request_id = None
        if body_bytes:
            try:
                parsed = json.loads(body_bytes)
                masked_body = _mask_value(parsed)
                checkout_request_id = _checkout_request_id(parsed)
            except (json.JSONDecodeError, UnicodeDecodeError):
                masked_body = "<binary>"

        response = await call_next(request)

        record = AuditLogRecord(
            timestamp=datetime.now(timezone.utc).isoformat(),
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=(time.perf_counter() - start) * 1000,
            actor=getattr(request.state, "actor_id", None),
            ip_address=request.client.host if request.client else None,
            query=_mask_mapping(dict(request.query_params.multi_items())),
            body=masked_body,
            checkout_request_id=checkout_request_id,
        )
        self._logger.info(record.to_json())

        response.headers["X-Request-ID"] = request_id
        return response

    @staticmethod
    def _set_body(request: Request, body: bytes) -> None:
        async def receive() -> dict[str, Any]:
            nonlocal consumed
            if consumed:
                return {"type": "http.request", "body": b"", "more_body": False}
            consumed = True
            return {"type": "http.request", "body": body, "more_body": False}

        consumed = False
        request._receive = receive  # type: ignore[attr-defined]


__all__ = ["AuditLogRecord", "AuditMiddleware"]

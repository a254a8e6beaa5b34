"""Observability utilities."""

from .audit import AuditLogRecord, AuditMiddleware
from .metrics import (
    BALANCE_REPAIR_COUNTER,
    CALLBACK_OUTCOME_COUNTER,
    PENDING_PURGE_COUNTER,
    REQUEST_COUNTER,
    REQUEST_ERROR_COUNTER,
    REQUEST_LATENCY_SECONDS,
    STK_PUSH_COUNTER,
    PrometheusMiddleware,
    metrics_router,
)
from .tracing import (
    initialise_tracing,
    inject_traceparent,
    instrument_fastapi_app,
    instrument_sqlalchemy_engine,
    span_from_traceparent,
)

__all__ = [
    "AuditLogRecord",
    "AuditMiddleware",
    "BALANCE_REPAIR_COUNTER",
    "CALLBACK_OUTCOME_COUNTER",
    "PENDING_PURGE_COUNTER",
    "PrometheusMiddleware",
    "REQUEST_COUNTER",
    "REQUEST_ERROR_COUNTER",
    "REQUEST_LATENCY_SECONDS",
    "STK_PUSH_COUNTER",
    "initialise_tracing",
    "inject_traceparent",
    "instrument_fastapi_app",
    "instrument_sqlalchemy_engine",
    "metrics_router",
    "span_from_traceparent",
]

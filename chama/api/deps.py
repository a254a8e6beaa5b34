"""Common dependencies for API routes."""
from __future__ import annotations

from collections.abc import Iterator
from functools import lru_cache

from sqlalchemy.orm import Session

from chama.core.config import get_settings
from chama.db.session import SessionLocal
from chama.services.contributions import PaymentGateway
from chama.services.daraja import DarajaClient


def get_db_session() -> Iterator[Session]:
    """Yield a database session for FastAPI dependencies."""

    session: Session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@lru_cache
def _daraja_client() -> DarajaClient:
    return DarajaClient(get_settings().daraja_config())


def get_payment_gateway() -> PaymentGateway:
    """Return the process-wide Daraja client so its cached credential is shared."""

    return _daraja_client()


__all__ = ["get_db_session", "get_payment_gateway"]

from __future__ import annotations

import os
import sys
from collections.abc import Callable, Iterator
from decimal import Decimal
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")
os.environ.setdefault("ENABLE_TRACING", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from chama.api.deps import get_db_session, get_payment_gateway
from chama.api.routes.auth import hash_password, refresh_token_store
from chama.main import app
from chama.models import Base, Chama, ChamaMember, User, UserRole
from chama.services.daraja import StkPushAcceptance
from chama.services.exceptions import GatewayError

DATABASE_URL = "sqlite+pysqlite://"
TEST_PASSWORD = "correct-horse-battery"

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


class FakeGateway:
    """Stands in for the Daraja client; hands out scripted CheckoutRequestIDs."""

    def __init__(self) -> None:
        self.checkout_ids: list[str] = ["ws_1"]
        self.error: GatewayError | None = None
        self.requests: list[dict[str, object]] = []

    def submit_payment_request(
        self,
        *,
        phone_number: str,
        amount: Decimal,
        account_reference: str,
        description: str,
    ) -> StkPushAcceptance:
        self.requests.append(
            {
                "phone_number": phone_number,
                "amount": amount,
                "account_reference": account_reference,
                "description": description,
            }
        )
        if self.error is not None:
            raise self.error
        checkout_id = self.checkout_ids.pop(0) if self.checkout_ids else f"ws_{len(self.requests)}"
        return StkPushAcceptance(
            checkout_request_id=checkout_id,
            merchant_request_id=f"mr_{checkout_id}",
            response_description="Success. Request accepted for processing",
            customer_message="Success. Request accepted for processing",
        )


@pytest.fixture()
def db_session() -> Iterator[Session]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def reset_refresh_store() -> Iterator[None]:
    refresh_token_store.reset()
    yield
    refresh_token_store.reset()


@pytest.fixture()
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def client(db_session: Session, fake_gateway: FakeGateway) -> Iterator[TestClient]:
    def override_get_db() -> Iterator[Session]:
        try:
            yield db_session
        finally:
            db_session.rollback()

    app.dependency_overrides[get_db_session] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.pop(get_db_session, None)
    app.dependency_overrides.pop(get_payment_gateway, None)


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    counter = iter(range(1, 1000))

    def _make_user(
        *,
        role: UserRole = UserRole.USER,
        phone_number: str | None = "0712345678",
        email: str | None = None,
    ) -> User:
        index = next(counter)
        user = User(
            first_name="Member",
            last_name=str(index),
            email=email or f"member{index}@example.com",
            phone_number=phone_number,
            hashed_password=hash_password(TEST_PASSWORD),
            role=role,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture()
def make_chama(db_session: Session) -> Callable[..., Chama]:
    counter = iter(range(1, 1000))

    def _make_chama(
        *,
        creator: User | None = None,
        name: str = "Umoja Savings",
        total_balance: Decimal = Decimal("0"),
    ) -> Chama:
        index = next(counter)
        chama = Chama(
            name=name,
            invitation_code=f"INV{index:03d}",
            created_by=creator.id if creator else None,
            total_balance=total_balance,
        )
        db_session.add(chama)
        db_session.flush()
        if creator is not None:
            db_session.add(ChamaMember(chama_id=chama.id, user_id=creator.id, role=creator.role.value))
        db_session.commit()
        return chama

    return _make_chama


@pytest.fixture()
def login(client: TestClient) -> Callable[[User], dict[str, str]]:
    def _login(user: User) -> dict[str, str]:
        response = client.post("/api/auth/login", json={"email": user.email, "password": TEST_PASSWORD})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    return _login

"""Account registration and JWT issuance."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from threading import Lock
from typing import Literal
from uuid import uuid4

import bcrypt
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chama.api.deps import get_db_session
from chama.core.config import Settings, get_settings
from chama.models import User, UserRole

router = APIRouter()
security_scheme = HTTPBearer(auto_error=True)


class SignupRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=120)
    last_name: str = Field(..., min_length=1, max_length=120)
    email: str = Field(..., max_length=320)
    phone_number: str = Field(..., min_length=9, max_length=32)
    password: str = Field(..., min_length=8, max_length=128)
    role: UserRole = Field(default=UserRole.USER)


class SignupResponse(BaseModel):
    message: str
    user_id: str


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class UserProfile(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    first_name: str
    last_name: str
    email: str
    phone_number: str | None
    role: UserRole


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class LoginResponse(TokenResponse):
    user: UserProfile


class TokenPayload(BaseModel):
    sub: str
    email: str
    role: UserRole
    type: Literal["access", "refresh"]
    iat: datetime
    exp: datetime
    jti: str


@dataclass(frozen=True)
class AuthenticatedUser:
    user_id: str
    email: str
    role: UserRole
    token_id: str


class RefreshTokenStore:
    """In-memory store tracking the live refresh token per user and revoked ones."""

    def __init__(self) -> None:
        self._active: dict[str, str] = {}
        self._blacklist: set[str] = set()
        self._lock = Lock()

    def mark_active(self, subject: str, token_id: str) -> None:
        with self._lock:
            self._active[subject] = token_id

    def is_active(self, subject: str, token_id: str) -> bool:
        with self._lock:
            if token_id in self._blacklist:
                return False
            return self._active.get(subject) == token_id

    def blacklist(self, token_id: str) -> None:
        with self._lock:
            self._blacklist.add(token_id)

    def reset(self) -> None:
        with self._lock:
            self._active.clear()
            self._blacklist.clear()


refresh_token_store = RefreshTokenStore()


def hash_password(raw_password: str) -> str:
    return bcrypt.hashpw(raw_password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def _verify_password(raw_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(raw_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:  # pragma: no cover - invalid hash format
        return False


def _create_token(
    *,
    user: User,
    settings: Settings,
    expires_delta: timedelta,
    token_type: Literal["access", "refresh"],
) -> tuple[str, str]:
    now = datetime.now(UTC)
    token_id = uuid4().hex
    payload = {
        "sub": user.id,
        "email": user.email,
        "role": user.role.value,
        "iat": int(now.timestamp()),
        "exp": int((now + expires_delta).timestamp()),
        "type": token_type,
        "jti": token_id,
    }
    encoded = jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
    return encoded, token_id


def _issue_tokens(*, user: User, settings: Settings) -> tuple[TokenResponse, str]:
    access_token, _ = _create_token(
        user=user,
        settings=settings,
        expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
        token_type="access",
    )
    refresh_token, refresh_id = _create_token(
        user=user,
        settings=settings,
        expires_delta=timedelta(days=settings.refresh_token_expire_days),
        token_type="refresh",
    )
    response = TokenResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=settings.access_token_expire_minutes * 60,
    )
    return response, refresh_id


def _decode_token(*, token: str, settings: Settings) -> TokenPayload:
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc
    try:
        return TokenPayload(**payload)
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security_scheme),
) -> AuthenticatedUser:
    settings = get_settings()
    payload = _decode_token(token=credentials.credentials, settings=settings)
    if payload.type != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type")
    request.state.actor_id = payload.sub
    return AuthenticatedUser(
        user_id=payload.sub,
        email=payload.email,
        role=payload.role,
        token_id=payload.jti,
    )


def is_elevated(user: AuthenticatedUser) -> bool:
    return user.role.value in get_settings().elevated_roles


def require_elevated_role(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    """Allow only the group officials named in ``Settings.elevated_roles``."""

    if not is_elevated(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    return user


@router.post(
    "/signup",
    response_model=SignupResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new account",
)
def signup(payload: SignupRequest, session: Session = Depends(get_db_session)) -> SignupResponse:
    email = payload.email.strip().lower()
    if "@" not in email:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Invalid email address")

    user = User(
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=email,
        phone_number=payload.phone_number,
        hashed_password=hash_password(payload.password),
        role=payload.role,
    )
    session.add(user)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email is already registered") from exc
    return SignupResponse(message="Account created", user_id=user.id)


@router.post("/login", response_model=LoginResponse, summary="Issue JWT access tokens")
def login(payload: LoginRequest, session: Session = Depends(get_db_session)) -> LoginResponse:
    settings = get_settings()
    user = session.scalars(select(User).where(User.email == payload.email.strip().lower())).first()
    if user is None or not _verify_password(payload.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    tokens, refresh_id = _issue_tokens(user=user, settings=settings)
    refresh_token_store.mark_active(user.id, refresh_id)
    return LoginResponse(**tokens.model_dump(), user=UserProfile.model_validate(user))


@router.post("/refresh", response_model=TokenResponse, summary="Rotate JWT refresh tokens")
def refresh_token(payload: RefreshRequest, session: Session = Depends(get_db_session)) -> TokenResponse:
    settings = get_settings()
    claims = _decode_token(token=payload.refresh_token, settings=settings)
    if claims.type != "refresh":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid token type")
    if not refresh_token_store.is_active(claims.sub, claims.jti):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh token revoked")

    user = session.get(User, claims.sub)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account no longer exists")

    refresh_token_store.blacklist(claims.jti)
    tokens, refresh_id = _issue_tokens(user=user, settings=settings)
    refresh_token_store.mark_active(user.id, refresh_id)
    return tokens


@router.get("/me", response_model=UserProfile, summary="Profile of the authenticated caller")
def read_profile(
    session: Session = Depends(get_db_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> UserProfile:
    account = session.get(User, user.user_id)
    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return UserProfile.model_validate(account)


__all__ = [
    "AuthenticatedUser",
    "get_current_user",
    "hash_password",
    "is_elevated",
    "refresh_token_store",
    "require_elevated_role",
    "router",
]

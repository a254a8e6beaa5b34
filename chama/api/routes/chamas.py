"""Chama CRUD and settings endpoints."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from chama.api.deps import get_db_session
from chama.api.routes.auth import AuthenticatedUser, get_current_user, require_elevated_role
from chama.models import Chama
from chama.schemas.chama import (
    ChamaCreate,
    ChamaRead,
    ChamaSummary,
    ChamaUpdate,
    ContributionSettingsUpdate,
    MeetingSettingsUpdate,
)
from chama.services.chamas import ChamaService
from chama.services.exceptions import ConflictError, ForbiddenError, NotFoundError

router = APIRouter()


def _translate(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ForbiddenError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


def _apply_changes(
    session: Session, chama_id: str, user: AuthenticatedUser, changes: dict[str, Any]
) -> ChamaRead:
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    try:
        chama = ChamaService(session).update(chama_id, actor_id=user.user_id, changes=changes)
    except (NotFoundError, ForbiddenError) as exc:
        raise _translate(exc) from exc
    return ChamaRead.model_validate(chama)


@router.post("/", response_model=ChamaRead, status_code=status.HTTP_201_CREATED)
def create_chama(
    payload: ChamaCreate,
    session: Session = Depends(get_db_session),
    user: AuthenticatedUser = Depends(require_elevated_role),
) -> ChamaRead:
    try:
        chama = ChamaService(session).create(creator_id=user.user_id, fields=payload.model_dump())
    except (NotFoundError, ConflictError) as exc:
        raise _translate(exc) from exc
    return ChamaRead.model_validate(chama)


@router.get("/", response_model=list[ChamaSummary])
def list_chamas(
    session: Session = Depends(get_db_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> list[ChamaSummary]:
    overviews = ChamaService(session).overview_for(user_id=user.user_id)
    return [
        ChamaSummary(
            **ChamaRead.model_validate(item.chama).model_dump(),
            member_count=len(item.chama.members),
            my_role=item.my_role,
            my_contributions=item.my_contributions,
            status=_status_label(item.chama),
        )
        for item in overviews
    ]


@router.get("/{chama_id}", response_model=ChamaRead)
def get_chama(
    chama_id: str,
    session: Session = Depends(get_db_session),
    _: AuthenticatedUser = Depends(get_current_user),
) -> ChamaRead:
    try:
        chama = ChamaService(session).get(chama_id)
    except NotFoundError as exc:
        raise _translate(exc) from exc
    return ChamaRead.model_validate(chama)


@router.patch("/{chama_id}", response_model=ChamaRead)
def update_chama(
    chama_id: str,
    payload: ChamaUpdate,
    session: Session = Depends(get_db_session),
    user: AuthenticatedUser = Depends(require_elevated_role),
) -> ChamaRead:
    return _apply_changes(session, chama_id, user, payload.model_dump(exclude_unset=True))


@router.delete("/{chama_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_chama(
    chama_id: str,
    session: Session = Depends(get_db_session),
    user: AuthenticatedUser = Depends(require_elevated_role),
) -> None:
    try:
        ChamaService(session).delete(chama_id, actor_id=user.user_id)
    except (NotFoundError, ForbiddenError, ConflictError) as exc:
        raise _translate(exc) from exc


@router.post("/{chama_id}/invitation-code", response_model=ChamaRead)
def regenerate_invitation_code(
    chama_id: str,
    session: Session = Depends(get_db_session),
    user: AuthenticatedUser = Depends(require_elevated_role),
) -> ChamaRead:
    try:
        chama = ChamaService(session).regenerate_invitation(chama_id, actor_id=user.user_id)
    except (NotFoundError, ForbiddenError, ConflictError) as exc:
        raise _translate(exc) from exc
    return ChamaRead.model_validate(chama)


@router.post("/{chama_id}/invitation-code/toggle", response_model=ChamaRead)
def toggle_invitation_code(
    chama_id: str,
    session: Session = Depends(get_db_session),
    user: AuthenticatedUser = Depends(require_elevated_role),
) -> ChamaRead:
    try:
        chama = ChamaService(session).toggle_invitation(chama_id, actor_id=user.user_id)
    except (NotFoundError, ForbiddenError) as exc:
        raise _translate(exc) from exc
    return ChamaRead.model_validate(chama)


@router.put("/{chama_id}/contribution-settings", response_model=ChamaRead)
def update_contribution_settings(
    chama_id: str,
    payload: ContributionSettingsUpdate,
    session: Session = Depends(get_db_session),
    user: AuthenticatedUser = Depends(require_elevated_role),
) -> ChamaRead:
    return _apply_changes(session, chama_id, user, payload.model_dump(exclude_unset=True))


@router.put("/{chama_id}/meeting-settings", response_model=ChamaRead)
def update_meeting_settings(
    chama_id: str,
    payload: MeetingSettingsUpdate,
    session: Session = Depends(get_db_session),
    user: AuthenticatedUser = Depends(require_elevated_role),
) -> ChamaRead:
    return _apply_changes(session, chama_id, user, payload.model_dump(exclude_unset=True))


@router.post("/{chama_id}/toggle-active", response_model=ChamaRead)
def toggle_chama_active(
    chama_id: str,
    session: Session = Depends(get_db_session),
    user: AuthenticatedUser = Depends(require_elevated_role),
) -> ChamaRead:
    try:
        chama = ChamaService(session).toggle_active(chama_id, actor_id=user.user_id)
    except (NotFoundError, ForbiddenError) as exc:
        raise _translate(exc) from exc
    return ChamaRead.model_validate(chama)


def _status_label(chama: Chama) -> str:
    return "active" if chama.is_active else "inactive"


__all__ = [
    "create_chama",
    "delete_chama",
    "get_chama",
    "list_chamas",
    "regenerate_invitation_code",
    "router",
    "toggle_chama_active",
    "toggle_invitation_code",
    "update_chama",
    "update_contribution_settings",
    "update_meeting_settings",
]

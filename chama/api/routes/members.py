"""Chama membership endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from chama.api.deps import get_db_session
from chama.api.routes.auth import AuthenticatedUser, get_current_user, require_elevated_role
from chama.schemas.member import MemberCreate, MemberRead, MemberUpdate
from chama.services.exceptions import ConflictError, NotFoundError
from chama.services.memberships import MembershipService

router = APIRouter()


@router.get("/chama/{chama_id}", response_model=list[MemberRead])
def list_members(
    chama_id: str,
    session: Session = Depends(get_db_session),
    _: AuthenticatedUser = Depends(get_current_user),
) -> list[MemberRead]:
    members = MembershipService(session).list_for_chama(chama_id)
    return [MemberRead.model_validate(member) for member in members]


@router.get("/chama/{chama_id}/me", response_model=MemberRead)
def read_my_membership(
    chama_id: str,
    session: Session = Depends(get_db_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> MemberRead:
    try:
        member = MembershipService(session).get_membership(chama_id=chama_id, user_id=user.user_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return MemberRead.model_validate(member)


@router.post("/", response_model=MemberRead, status_code=status.HTTP_201_CREATED)
def add_member(
    payload: MemberCreate,
    session: Session = Depends(get_db_session),
    _: AuthenticatedUser = Depends(require_elevated_role),
) -> MemberRead:
    try:
        member = MembershipService(session).add(
            chama_id=payload.chama_id,
            user_id=payload.user_id,
            role=payload.role.value,
            contribution_amount=payload.contribution_amount,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return MemberRead.model_validate(member)


@router.patch("/{member_id}", response_model=MemberRead)
def update_member(
    member_id: str,
    payload: MemberUpdate,
    session: Session = Depends(get_db_session),
    _: AuthenticatedUser = Depends(require_elevated_role),
) -> MemberRead:
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    if payload.role is None:
        changes.pop("role", None)
    else:
        changes["role"] = payload.role.value
    try:
        member = MembershipService(session).update(member_id, changes=changes)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return MemberRead.model_validate(member)


@router.delete("/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(
    member_id: str,
    session: Session = Depends(get_db_session),
    _: AuthenticatedUser = Depends(require_elevated_role),
) -> None:
    try:
        MembershipService(session).remove(member_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


__all__ = ["add_member", "list_members", "read_my_membership", "remove_member", "router", "update_member"]

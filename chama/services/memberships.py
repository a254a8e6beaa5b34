"""Chama membership records."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from chama.models import Chama, ChamaMember, User
from chama.services.exceptions import ConflictError, NotFoundError


class MembershipService:
    def __init__(self, session: Session) -> None:
        self._session = session

    def list_for_chama(self, chama_id: str) -> Sequence[ChamaMember]:
        return self._session.scalars(
            select(ChamaMember).where(ChamaMember.chama_id == chama_id).order_by(ChamaMember.joined_at)
        ).all()

    def get_membership(self, *, chama_id: str, user_id: str) -> ChamaMember:
        member = self._session.scalars(
            select(ChamaMember).where(ChamaMember.chama_id == chama_id, ChamaMember.user_id == user_id)
        ).first()
        if member is None:
            raise NotFoundError("Membership not found")
        return member

    def add(
        self,
        *,
        chama_id: str,
        user_id: str,
        role: str,
        contribution_amount: Decimal | None,
    ) -> ChamaMember:
        if self._session.get(Chama, chama_id) is None:
            raise NotFoundError("Chama not found")
        if self._session.get(User, user_id) is None:
            raise NotFoundError("User not found")

        member = ChamaMember(
            chama_id=chama_id,
            user_id=user_id,
            role=role,
            contribution_amount=contribution_amount,
        )
        self._session.add(member)
        try:
            self._session.commit()
        except IntegrityError as exc:
            self._session.rollback()
            raise ConflictError("User is already a member of this chama") from exc
        self._session.refresh(member)
        return member

    def update(self, member_id: str, *, changes: Mapping[str, Any]) -> ChamaMember:
        member = self._get(member_id)
        for field_name, value in changes.items():
            setattr(member, field_name, value)
        self._session.commit()
        self._session.refresh(member)
        return member

    def remove(self, member_id: str) -> None:
        member = self._get(member_id)
        self._session.delete(member)
        self._session.commit()

    def _get(self, member_id: str) -> ChamaMember:
        member = self._session.get(ChamaMember, member_id)
        if member is None:
            raise NotFoundError("Member not found")
        return member


__all__ = ["MembershipService"]

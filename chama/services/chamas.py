"""Chama lifecycle management: creation, settings and invitation codes."""
from __future__ import annotations

import secrets
import string
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from chama.models import Chama, ChamaMember, User
from chama.services.exceptions import ConflictError, ForbiddenError, NotFoundError
from chama.services.queries import ContributionQueryService

_INVITE_ALPHABET = string.ascii_uppercase + string.digits
_INVITE_LENGTH = 6
_INVITE_ATTEMPTS = 5


def generate_invitation_code() -> str:
    return "".join(secrets.choice(_INVITE_ALPHABET) for _ in range(_INVITE_LENGTH))


@dataclass(slots=True, frozen=True)
class ChamaOverview:
    """A chama as seen by one caller."""

    chama: Chama
    my_role: str | None
    my_contributions: Decimal


class ChamaService:
    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, *, creator_id: str, fields: Mapping[str, Any]) -> Chama:
        creator = self._session.get(User, creator_id)
        if creator is None:
            raise NotFoundError("User not found")

        for _ in range(_INVITE_ATTEMPTS):
            chama = Chama(
                **fields,
                invitation_code=generate_invitation_code(),
                is_invitation_code_active=True,
                created_by=creator.id,
                is_active=True,
                total_balance=Decimal("0"),
            )
            self._session.add(chama)
            try:
                self._session.flush()
            except IntegrityError:
                self._session.rollback()
                continue
            break
        else:
            raise ConflictError("Could not allocate a unique invitation code")

        self._session.add(
            ChamaMember(
                chama_id=chama.id,
                user_id=creator.id,
                role=creator.role.value,
                contribution_amount=fields.get("monthly_contribution_amount"),
            )
        )
        self._session.commit()
        self._session.refresh(chama)
        return chama

    def get(self, chama_id: str) -> Chama:
        chama = self._session.scalars(
            select(Chama).where(Chama.id == chama_id).options(selectinload(Chama.members))
        ).first()
        if chama is None:
            raise NotFoundError("Chama not found")
        return chama

    def overview_for(self, *, user_id: str) -> list[ChamaOverview]:
        chamas: Sequence[Chama] = self._session.scalars(
            select(Chama).options(selectinload(Chama.members)).order_by(Chama.created_at.desc())
        ).all()
        queries = ContributionQueryService(self._session)
        overviews: list[ChamaOverview] = []
        for chama in chamas:
            role = next((member.role for member in chama.members if member.user_id == user_id), None)
            totals = queries.total_for_user_in_chama(user_id=user_id, chama_id=chama.id)
            overviews.append(ChamaOverview(chama=chama, my_role=role, my_contributions=totals.total_amount))
        return overviews

    def update(self, chama_id: str, *, actor_id: str, changes: Mapping[str, Any]) -> Chama:
        """Apply an already allow-listed set of field changes."""

        chama = self._owned(chama_id, actor_id)
        for field_name, value in changes.items():
            setattr(chama, field_name, value)
        self._session.commit()
        self._session.refresh(chama)
        return chama

    def delete(self, chama_id: str, *, actor_id: str) -> None:
        chama = self._owned(chama_id, actor_id)
        self._session.delete(chama)
        try:
            self._session.commit()
        except IntegrityError as exc:
            self._session.rollback()
            raise ConflictError("Chama has recorded contributions and cannot be deleted") from exc

    def regenerate_invitation(self, chama_id: str, *, actor_id: str) -> Chama:
        chama = self._owned(chama_id, actor_id)
        for _ in range(_INVITE_ATTEMPTS):
            chama.invitation_code = generate_invitation_code()
            chama.is_invitation_code_active = True
            try:
                self._session.commit()
            except IntegrityError:
                self._session.rollback()
                chama = self._owned(chama_id, actor_id)
                continue
            self._session.refresh(chama)
            return chama
        raise ConflictError("Could not allocate a unique invitation code")

    def toggle_invitation(self, chama_id: str, *, actor_id: str) -> Chama:
        chama = self._owned(chama_id, actor_id)
        chama.is_invitation_code_active = not chama.is_invitation_code_active
        self._session.commit()
        self._session.refresh(chama)
        return chama

    def toggle_active(self, chama_id: str, *, actor_id: str) -> Chama:
        chama = self._owned(chama_id, actor_id)
        chama.is_active = not chama.is_active
        self._session.commit()
        self._session.refresh(chama)
        return chama

    def _owned(self, chama_id: str, actor_id: str) -> Chama:
        chama = self._session.get(Chama, chama_id)
        if chama is None:
            raise NotFoundError("Chama not found")
        if chama.created_by != actor_id:
            raise ForbiddenError("Only the chama creator can change it")
        return chama


__all__ = ["ChamaOverview", "ChamaService", "generate_invitation_code"]

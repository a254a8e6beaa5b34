"""M-Pesa contribution endpoints: STK push, gateway callback and ledger queries."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from chama.api.deps import get_db_session, get_payment_gateway
from chama.api.routes.auth import (
    AuthenticatedUser,
    get_current_user,
    is_elevated,
    require_elevated_role,
)
from chama.schemas.transaction import (
    BalanceRecomputationResponse,
    CallbackAcknowledgement,
    ContributionRead,
    ContributionTotalsResponse,
    StkPushRequest,
    StkPushResponse,
)
from chama.services.balance_repair import BalanceRepairService
from chama.services.contributions import ContributionService, PaymentGateway
from chama.services.exceptions import (
    DuplicateCorrelationError,
    GatewayAuthError,
    GatewayRequestError,
    NotFoundError,
    ValidationError,
)
from chama.services.queries import ContributionQueryService
from chama.services.reconciliation import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/transactions")


def _ensure_self_or_elevated(user: AuthenticatedUser, user_id: str) -> None:
    if user.user_id != user_id and not is_elevated(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")


@router.post("/stk-push", response_model=StkPushResponse)
def initiate_stk_push(
    payload: StkPushRequest,
    session: Session = Depends(get_db_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    user: AuthenticatedUser = Depends(get_current_user),
) -> StkPushResponse:
    service = ContributionService(session, gateway=gateway)
    try:
        result = service.initiate(user_id=user.user_id, chama_id=payload.chama_id, amount=payload.amount)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except DuplicateCorrelationError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except GatewayAuthError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except GatewayRequestError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return StkPushResponse(
        message="STK push sent. Complete the payment on your phone.",
        checkout_request_id=result.checkout_request_id,
        merchant_request_id=result.merchant_request_id,
        customer_message=result.customer_message,
        amount=result.amount,
    )


@router.post("/daraja-callback", response_model=CallbackAcknowledgement)
def receive_daraja_callback(
    payload: Any = Body(default=None),
    session: Session = Depends(get_db_session),
) -> JSONResponse:
    """Settle a gateway callback.

    Business outcomes (rejected payments, unknown or already settled
    requests) are acknowledged so the gateway stops redelivering. Only an
    envelope that cannot be read at all is answered with 400.
    """

    result = ReconciliationService(session).handle_callback(payload)
    if not result.acknowledged:
        logger.warning("malformed gateway callback", extra={"detail": result.detail})
        body = CallbackAcknowledgement(result_code=1, result_desc=result.detail or "Malformed callback")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body.model_dump(by_alias=True))
    return JSONResponse(content=CallbackAcknowledgement().model_dump(by_alias=True))


@router.get("/user/{user_id}", response_model=list[ContributionRead])
def list_user_contributions(
    user_id: str,
    session: Session = Depends(get_db_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> list[ContributionRead]:
    if user.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
    records = ContributionQueryService(session).list_for_user(user_id=user_id)
    return [ContributionRead.model_validate(record) for record in records]


@router.get("/user/{user_id}/chama/{chama_id}", response_model=list[ContributionRead])
def list_user_contributions_in_chama(
    user_id: str,
    chama_id: str,
    session: Session = Depends(get_db_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> list[ContributionRead]:
    _ensure_self_or_elevated(user, user_id)
    records = ContributionQueryService(session).list_for_user_in_chama(user_id=user_id, chama_id=chama_id)
    return [ContributionRead.model_validate(record) for record in records]


@router.get("/user/{user_id}/chama/{chama_id}/total", response_model=ContributionTotalsResponse)
def total_user_contributions_in_chama(
    user_id: str,
    chama_id: str,
    session: Session = Depends(get_db_session),
    user: AuthenticatedUser = Depends(get_current_user),
) -> ContributionTotalsResponse:
    _ensure_self_or_elevated(user, user_id)
    totals = ContributionQueryService(session).total_for_user_in_chama(user_id=user_id, chama_id=chama_id)
    return ContributionTotalsResponse(
        chama_id=chama_id,
        user_id=user_id,
        total_amount=totals.total_amount,
        transaction_count=totals.transaction_count,
    )


@router.get("/chama/{chama_id}", response_model=list[ContributionRead])
def list_chama_contributions(
    chama_id: str,
    session: Session = Depends(get_db_session),
    _: AuthenticatedUser = Depends(require_elevated_role),
) -> list[ContributionRead]:
    records = ContributionQueryService(session).list_for_chama(chama_id=chama_id)
    return [ContributionRead.model_validate(record) for record in records]


@router.get("/chama/{chama_id}/total", response_model=ContributionTotalsResponse)
def total_chama_contributions(
    chama_id: str,
    session: Session = Depends(get_db_session),
) -> ContributionTotalsResponse:
    totals = ContributionQueryService(session).total_for_chama(chama_id=chama_id)
    return ContributionTotalsResponse(
        chama_id=chama_id,
        total_amount=totals.total_amount,
        transaction_count=totals.transaction_count,
    )


@router.post("/chama/{chama_id}/reconcile-balance", response_model=BalanceRecomputationResponse)
def reconcile_chama_balance(
    chama_id: str,
    session: Session = Depends(get_db_session),
    user: AuthenticatedUser = Depends(require_elevated_role),
) -> BalanceRecomputationResponse:
    try:
        result = BalanceRepairService(session).recompute_balance(chama_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    logger.info("balance recomputed on request", extra={"chama_id": chama_id, "actor_id": user.user_id})
    return BalanceRecomputationResponse(
        chama_id=result.chama_id,
        previous_balance=result.previous_balance,
        recomputed_balance=result.recomputed_balance,
        drift=result.drift,
    )


__all__ = [
    "initiate_stk_push",
    "list_chama_contributions",
    "list_user_contributions",
    "list_user_contributions_in_chama",
    "receive_daraja_callback",
    "reconcile_chama_balance",
    "router",
    "total_chama_contributions",
    "total_user_contributions_in_chama",
]

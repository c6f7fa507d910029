from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_gateway_registry, get_notification_dispatcher
from app.schemas.common import ListResponse, MessageResponse
from app.schemas.security_deposit import (
    DepositApply,
    DepositApplyResponse,
    DepositReview,
    SecurityDepositRead,
)
from app.services import security_deposits as security_deposits_service
from app.services.errors import NotFoundError
from app.services.gateways import GatewayRegistry
from app.services.response import list_response

router = APIRouter(prefix="/security-deposits", tags=["security-deposits"])


@router.post("", response_model=DepositApplyResponse, status_code=status.HTTP_201_CREATED)
def apply_security_deposit(
    payload: DepositApply,
    db: Session = Depends(get_db),
    registry: GatewayRegistry = Depends(get_gateway_registry),
):
    result = security_deposits_service.security_deposits.apply(
        db, registry, payload.user_id, payload.gateway, return_url=payload.return_url
    )
    return DepositApplyResponse(
        deposit_id=result.deposit.id,
        payment_id=result.payment.id,
        redirect_target=result.redirect_target,
    )


@router.post("/{deposit_id}/review", response_model=MessageResponse)
def review_security_deposit(
    deposit_id: str,
    payload: DepositReview,
    db: Session = Depends(get_db),
    notifier=Depends(get_notification_dispatcher),
):
    return security_deposits_service.security_deposits.review(
        db, notifier, payload.admin_id, deposit_id, payload.outcome, payload.reason
    )


@router.get("/pending", response_model=ListResponse[SecurityDepositRead])
def list_pending_security_deposits(
    admin_id: UUID,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    items = security_deposits_service.security_deposits.list_pending(db, admin_id, limit, offset)
    return list_response(items, limit, offset)


@router.get("/users/{user_id}", response_model=SecurityDepositRead)
def get_user_security_deposit(user_id: str, db: Session = Depends(get_db)):
    deposit = security_deposits_service.security_deposits.get_for_user(db, user_id)
    if deposit is None:
        raise NotFoundError("No security deposit found")
    return deposit


@router.get("/{deposit_id}", response_model=SecurityDepositRead)
def get_security_deposit(deposit_id: str, db: Session = Depends(get_db)):
    return security_deposits_service.security_deposits.get(db, deposit_id)

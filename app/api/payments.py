from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_gateway_registry, get_notification_dispatcher, get_reconciler
from app.schemas.billing import ChargeCreate, ChargeResponse, PaymentRead, RefundRequest
from app.schemas.common import ListResponse, MessageResponse
from app.services import billing as billing_service
from app.services import payment_callbacks as payment_callbacks_service
from app.services import users as users_service
from app.services.billing.reconciler import WebhookReconciler
from app.services.gateways import CallbackPayload, GatewayRegistry

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/charge", response_model=ChargeResponse, status_code=status.HTTP_201_CREATED)
def create_charge(
    payload: ChargeCreate,
    db: Session = Depends(get_db),
    registry: GatewayRegistry = Depends(get_gateway_registry),
):
    result = billing_service.payments.create_charge(
        db,
        registry,
        user_id=payload.user_id,
        amount=payload.amount,
        gateway=payload.gateway,
        currency=payload.currency,
        description=payload.description,
        plan_tier=payload.plan_tier,
        billing_period=payload.billing_period,
        return_url=payload.return_url,
    )
    return ChargeResponse(
        payment_id=result.payment.id,
        provider_reference=result.payment.provider_reference,
        redirect_target=result.redirect_target,
    )


@router.api_route("/callbacks/{gateway}", methods=["GET", "POST"], include_in_schema=False)
def gateway_callback(
    gateway: str,
    payload: CallbackPayload = Depends(payment_callbacks_service.read_callback),
    db: Session = Depends(get_db),
    reconciler: WebhookReconciler = Depends(get_reconciler),
) -> JSONResponse:
    return payment_callbacks_service.process_callback(
        db=db, reconciler=reconciler, gateway=gateway, payload=payload
    )


@router.get("", response_model=ListResponse[PaymentRead])
def list_payments(
    admin_id: UUID,
    status: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    users_service.require_admin(db, admin_id)
    return billing_service.payment_ledger.list_response(
        db, None, status, order_by, order_dir, limit, offset
    )


@router.get("/users/{user_id}", response_model=ListResponse[PaymentRead])
def list_user_payments(
    user_id: str,
    status: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return billing_service.payment_ledger.list_response(
        db, user_id, status, order_by, order_dir, limit, offset
    )


@router.get("/{payment_id}", response_model=PaymentRead)
def get_payment(payment_id: str, db: Session = Depends(get_db)):
    return billing_service.payment_ledger.get(db, payment_id)


@router.post("/{payment_id}/refund", response_model=MessageResponse)
def refund_payment(
    payment_id: str,
    payload: RefundRequest,
    db: Session = Depends(get_db),
    notifier=Depends(get_notification_dispatcher),
):
    billing_service.payments.refund(
        db,
        notifier,
        admin_id=payload.admin_id,
        payment_id=payment_id,
        amount=payload.amount,
        reason=payload.reason,
    )
    return MessageResponse(message="Payment refunded")

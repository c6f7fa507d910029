"""Payment ledger: the authoritative record of charge attempts.

State machine::

    PENDING -> COMPLETED -> REFUNDED
    PENDING -> FAILED

Every transition is a conditional UPDATE on the expected source status, so
it applies at most once no matter how many workers race on the same row.
Callers own the surrounding transaction.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.metrics import PAYMENT_TRANSITIONS
from app.models.billing import Payment, PaymentGateway, PaymentStatus
from app.services.common import (
    apply_ordering,
    apply_pagination,
    coerce_uuid,
    get_or_404,
    utcnow,
    validate_enum,
)
from app.services.errors import ConflictError, ValidationError
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {PaymentStatus.completed, PaymentStatus.failed, PaymentStatus.refunded}


class PaymentLedger(ListResponseMixin):
    @staticmethod
    def create(
        db: Session,
        *,
        user_id,
        amount: int,
        currency: str,
        gateway: PaymentGateway,
        description: str | None = None,
    ) -> Payment:
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        payment = Payment(
            user_id=coerce_uuid(user_id),
            amount=amount,
            currency=currency.upper(),
            gateway=gateway,
            description=description,
            status=PaymentStatus.pending,
        )
        db.add(payment)
        db.flush()
        return payment

    @staticmethod
    def get(db: Session, payment_id) -> Payment:
        return get_or_404(db, Payment, payment_id, detail="Payment not found")

    @staticmethod
    def find_by_reference(
        db: Session, gateway: PaymentGateway, reference: str, *, for_update: bool = False
    ) -> Payment | None:
        query = (
            db.query(Payment)
            .filter(Payment.gateway == gateway)
            .filter(Payment.provider_reference == reference)
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def list(
        db: Session,
        user_id: str | None,
        status: str | None,
        order_by: str,
        order_dir: str,
        limit: int,
        offset: int,
    ):
        query = db.query(Payment)
        if user_id:
            query = query.filter(Payment.user_id == coerce_uuid(user_id))
        if status:
            query = query.filter(
                Payment.status == validate_enum(status, PaymentStatus, "status")
            )
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": Payment.created_at, "amount": Payment.amount},
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def attach_reference(db: Session, payment: Payment, reference: str) -> None:
        """Record the gateway's reference; once set it never changes."""
        if payment.provider_reference == reference:
            return
        if payment.provider_reference is not None:
            raise ConflictError("Payment already has a provider reference")
        updated = (
            db.query(Payment)
            .filter(Payment.id == payment.id)
            .filter(Payment.provider_reference.is_(None))
            .update({"provider_reference": reference}, synchronize_session=False)
        )
        if updated != 1:
            raise ConflictError("Payment already has a provider reference")
        db.refresh(payment)

    @staticmethod
    def _transition(
        db: Session,
        payment: Payment,
        from_status: PaymentStatus,
        to_status: PaymentStatus,
        values: dict,
    ) -> bool:
        db.flush()
        now = utcnow()
        updated = (
            db.query(Payment)
            .filter(Payment.id == payment.id)
            .filter(Payment.status == from_status)
            .update(
                {"status": to_status, "updated_at": now, **values},
                synchronize_session=False,
            )
        )
        db.refresh(payment)
        if updated != 1:
            logger.info(
                "payment_transition_skipped payment_id=%s from=%s to=%s current=%s",
                payment.id,
                from_status.value,
                to_status.value,
                payment.status.value,
            )
            return False
        PAYMENT_TRANSITIONS.labels(
            gateway=payment.gateway.value, to_status=to_status.value
        ).inc()
        logger.info(
            "payment_transition payment_id=%s from=%s to=%s",
            payment.id,
            from_status.value,
            to_status.value,
        )
        return True

    @staticmethod
    def mark_completed(
        db: Session, payment: Payment, provider_transaction_id: str | None = None
    ) -> bool:
        values = {"processed_at": utcnow(), "failure_reason": None}
        if provider_transaction_id:
            values["provider_transaction_id"] = provider_transaction_id
        return PaymentLedger._transition(
            db, payment, PaymentStatus.pending, PaymentStatus.completed, values
        )

    @staticmethod
    def mark_failed(
        db: Session,
        payment: Payment,
        reason: str,
        provider_transaction_id: str | None = None,
    ) -> bool:
        if not reason or not reason.strip():
            raise ValidationError("A failure reason is required")
        values = {"processed_at": utcnow(), "failure_reason": reason.strip()}
        if provider_transaction_id:
            values["provider_transaction_id"] = provider_transaction_id
        return PaymentLedger._transition(
            db, payment, PaymentStatus.pending, PaymentStatus.failed, values
        )

    @staticmethod
    def mark_refunded(
        db: Session, payment: Payment, amount: int, reason: str, refunded_by=None
    ) -> bool:
        return PaymentLedger._transition(
            db,
            payment,
            PaymentStatus.completed,
            PaymentStatus.refunded,
            {
                "refund_amount": amount,
                "refund_reason": reason,
                "refunded_at": utcnow(),
                "refunded_by": coerce_uuid(refunded_by),
            },
        )


payment_ledger = PaymentLedger()

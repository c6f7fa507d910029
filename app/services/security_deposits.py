"""Security deposit workflow.

A deposit is a fixed one-time payment that, once an admin approves it, grants
the premium license flags. Applications are serialized per user by locking
the user row; the partial unique index on open deposits backs this up at the
store level.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.billing import Payment, PaymentStatus
from app.models.security_deposit import (
    OPEN_DEPOSIT_STATUSES,
    SecurityDeposit,
    SecurityDepositStatus,
)
from app.models.user import User
from app.services.billing import purposes
from app.services.billing.ledger import PaymentLedger
from app.services.billing.payments import Payments
from app.services.billing.purposes import DepositPurchase
from app.services.common import apply_pagination, coerce_uuid, get_or_404, utcnow, validate_enum
from app.services.errors import ConflictError, NotFoundError, ValidationError
from app.services.gateways import GatewayRegistry
from app.services.users import require_admin

logger = logging.getLogger(__name__)

REVIEW_OUTCOMES = (SecurityDepositStatus.approved, SecurityDepositStatus.rejected)


@dataclass(frozen=True)
class DepositApplication:
    deposit: SecurityDeposit
    payment: Payment
    redirect_target: str


def _open_deposit(db: Session, user_id) -> SecurityDeposit | None:
    return (
        db.query(SecurityDeposit)
        .filter(SecurityDeposit.user_id == user_id)
        .filter(SecurityDeposit.status.in_(OPEN_DEPOSIT_STATUSES))
        .first()
    )


class SecurityDeposits:
    @staticmethod
    def get(db: Session, deposit_id) -> SecurityDeposit:
        return get_or_404(db, SecurityDeposit, deposit_id, detail="Security deposit not found")

    @staticmethod
    def get_for_user(db: Session, user_id) -> SecurityDeposit | None:
        """Most recent deposit for the user, if any."""
        return (
            db.query(SecurityDeposit)
            .filter(SecurityDeposit.user_id == coerce_uuid(user_id))
            .order_by(SecurityDeposit.created_at.desc())
            .first()
        )

    @staticmethod
    def list_pending(
        db: Session, admin_id, limit: int = 50, offset: int = 0
    ) -> list[SecurityDeposit]:
        """Review queue: deposits awaiting an admin decision, oldest first."""
        require_admin(db, admin_id)
        query = (
            db.query(SecurityDeposit)
            .filter(SecurityDeposit.status == SecurityDepositStatus.pending)
            .order_by(SecurityDeposit.created_at.asc())
        )
        return apply_pagination(query, limit, offset).all()

    @staticmethod
    def apply(
        db: Session,
        registry: GatewayRegistry,
        user_id,
        gateway,
        *,
        return_url: str | None = None,
    ) -> DepositApplication:
        adapter = registry.get(gateway)
        user = (
            db.query(User)
            .filter(User.id == coerce_uuid(user_id))
            .with_for_update()
            .first()
        )
        if not user:
            raise NotFoundError("User not found")
        existing = _open_deposit(db, user.id)
        if existing:
            raise ConflictError(
                f"You already have a {existing.status.value.lower()} security deposit"
            )

        deposit = SecurityDeposit(
            user_id=user.id,
            amount=settings.security_deposit_amount,
            currency=settings.default_currency,
            status=SecurityDepositStatus.pending,
        )
        db.add(deposit)
        try:
            db.flush()
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError("You already have an open security deposit") from exc

        payment = PaymentLedger.create(
            db,
            user_id=user.id,
            amount=deposit.amount,
            currency=deposit.currency,
            gateway=adapter.gateway,
            description="Security deposit",
        )
        purposes.assign(payment, DepositPurchase(deposit.id))
        deposit.payment_id = payment.id
        db.commit()
        db.refresh(deposit)
        db.refresh(payment)
        logger.info(
            "deposit_applied deposit_id=%s payment_id=%s user_id=%s gateway=%s",
            deposit.id,
            payment.id,
            user.id,
            adapter.gateway.value,
        )

        # A failed initiation rejects the deposit before GatewayError surfaces
        result = Payments.initiate(db, adapter, payment, user, return_url=return_url)
        return DepositApplication(
            deposit=deposit, payment=payment, redirect_target=result.redirect_target
        )

    @staticmethod
    def review(
        db: Session,
        notifier,
        admin_id,
        deposit_id,
        outcome,
        reason: str | None = None,
    ) -> dict:
        admin = require_admin(db, admin_id)
        decision = validate_enum(outcome, SecurityDepositStatus, "outcome")
        if decision not in REVIEW_OUTCOMES:
            raise ValidationError("Outcome must be APPROVED or REJECTED")
        reason = (reason or "").strip() or None
        if decision == SecurityDepositStatus.rejected and not reason:
            raise ValidationError("A rejection reason is required")

        deposit = (
            db.query(SecurityDeposit)
            .filter(SecurityDeposit.id == coerce_uuid(deposit_id))
            .with_for_update()
            .first()
        )
        if not deposit:
            raise NotFoundError("Security deposit not found")
        if deposit.status != SecurityDepositStatus.pending:
            raise ConflictError(
                f"Security deposit has already been reviewed ({deposit.status.value})"
            )

        now = utcnow()
        if decision == SecurityDepositStatus.approved:
            payment = db.get(Payment, deposit.payment_id) if deposit.payment_id else None
            if payment is None or payment.status != PaymentStatus.completed:
                raise ConflictError("Security deposit payment has not completed")
            deposit.status = SecurityDepositStatus.approved
            deposit.approved_at = now
            deposit.approved_by = admin.id
            user = db.get(User, deposit.user_id)
            user.is_premium_license = True
            user.premium_tick = True
            agent_name = user.first_name
            message = "Security deposit approved"
        else:
            deposit.status = SecurityDepositStatus.rejected
            deposit.rejected_at = now
            deposit.rejection_reason = reason
            message = "Security deposit rejected"
        db.commit()
        db.refresh(deposit)
        logger.info(
            "deposit_reviewed deposit_id=%s outcome=%s admin_id=%s",
            deposit.id,
            deposit.status.value,
            admin.id,
        )

        payload = {
            "deposit_id": str(deposit.id),
            "amount": deposit.amount,
            "currency": deposit.currency,
        }
        try:
            if decision == SecurityDepositStatus.approved:
                notifier.notify_deposit_approval(db, deposit.user_id, payload)
                notifier.notify_premium_license_approval(
                    db, deposit.user_id, {"agent_name": agent_name}
                )
            else:
                notifier.notify_deposit_rejection(
                    db, deposit.user_id, {**payload, "reason": reason}
                )
        except Exception:
            logger.exception("deposit_notification_failed deposit_id=%s", deposit.id)
        return {"message": message}


security_deposits = SecurityDeposits()

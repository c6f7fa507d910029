"""What a payment pays for, and the side effects of its transitions."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.models.billing import Payment, PaymentPurposeType
from app.models.security_deposit import SecurityDeposit, SecurityDepositStatus
from app.models.subscription import BillingPeriod, PlanTier
from app.services.common import utcnow
from app.services.subscriptions import Subscriptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanPurchase:
    tier: PlanTier
    billing_period: BillingPeriod


@dataclass(frozen=True)
class DepositPurchase:
    deposit_id: uuid.UUID


@dataclass(frozen=True)
class GenericPurchase:
    pass


PaymentPurpose = PlanPurchase | DepositPurchase | GenericPurchase


def assign(payment: Payment, purpose: PaymentPurpose) -> None:
    if isinstance(purpose, PlanPurchase):
        payment.purpose = PaymentPurposeType.plan_purchase
        payment.plan_tier = purpose.tier
        payment.billing_period = purpose.billing_period
    elif isinstance(purpose, DepositPurchase):
        payment.purpose = PaymentPurposeType.security_deposit
        payment.deposit_id = purpose.deposit_id
    else:
        payment.purpose = PaymentPurposeType.generic


def purpose_of(payment: Payment) -> PaymentPurpose:
    if payment.purpose == PaymentPurposeType.plan_purchase:
        return PlanPurchase(payment.plan_tier, payment.billing_period or BillingPeriod.monthly)
    if payment.purpose == PaymentPurposeType.security_deposit:
        return DepositPurchase(payment.deposit_id)
    return GenericPurchase()


def _locked_deposit(db: Session, deposit_id) -> SecurityDeposit | None:
    return (
        db.query(SecurityDeposit)
        .filter(SecurityDeposit.id == deposit_id)
        .with_for_update()
        .first()
    )


def fulfill(db: Session, payment: Payment, reference: str) -> None:
    """Apply the effect of a COMPLETED payment inside the caller's transaction."""
    purpose = purpose_of(payment)
    if isinstance(purpose, PlanPurchase):
        Subscriptions.activate(
            db, payment.user_id, purpose.tier, purpose.billing_period, commit=False
        )
    elif isinstance(purpose, DepositPurchase):
        deposit = _locked_deposit(db, purpose.deposit_id)
        if deposit is None:
            logger.warning(
                "deposit_missing_for_payment payment_id=%s deposit_id=%s",
                payment.id,
                purpose.deposit_id,
            )
        else:
            # Admin review stays a separate gate
            deposit.transaction_reference = reference
    payment.fulfilled_at = utcnow()
    db.flush()


def fail(db: Session, payment: Payment, reason: str) -> None:
    """Apply the effect of a FAILED payment inside the caller's transaction."""
    purpose = purpose_of(payment)
    if not isinstance(purpose, DepositPurchase):
        return
    deposit = _locked_deposit(db, purpose.deposit_id)
    if deposit is None or deposit.status != SecurityDepositStatus.pending:
        return
    deposit.status = SecurityDepositStatus.rejected
    deposit.rejected_at = utcnow()
    deposit.rejection_reason = f"Payment failed: {reason}"
    db.flush()


def refund(db: Session, payment: Payment, amount: int, reason: str) -> SecurityDeposit | None:
    """Mirror a refund onto the funded deposit, if any.

    User trust flags granted on approval are left as they are.
    """
    purpose = purpose_of(payment)
    if not isinstance(purpose, DepositPurchase):
        return None
    deposit = _locked_deposit(db, purpose.deposit_id)
    if deposit is None:
        return None
    deposit.status = SecurityDepositStatus.refunded
    deposit.refunded_at = utcnow()
    deposit.refund_amount = amount
    deposit.refund_reason = reason
    db.flush()
    return deposit

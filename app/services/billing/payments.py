"""Charge creation, gateway initiation and admin refunds."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import NoReturn

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.metrics import GATEWAY_INITIATIONS
from app.models.billing import Payment, PaymentStatus
from app.models.subscription import BillingPeriod, PlanTier
from app.models.user import User
from app.services.billing import purposes
from app.services.billing.ledger import PaymentLedger
from app.services.billing.purposes import GenericPurchase, PaymentPurpose, PlanPurchase
from app.services.common import coerce_uuid, validate_enum
from app.services.errors import ConflictError, GatewayError, NotFoundError, ValidationError
from app.services.gateways import GatewayFailure, GatewayRegistry, InitiateResult
from app.services.gateways.base import FailureKind, PaymentGatewayAdapter
from app.services.subscriptions import Plans
from app.services.users import get_user, require_admin

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChargeResult:
    payment: Payment
    redirect_target: str


def _customer_metadata(payment: Payment, user: User) -> dict:
    return {
        "payment_id": str(payment.id),
        "user_id": str(user.id),
        "email": user.email,
        "name": user.display_name,
        "phone": user.phone_number,
    }


class Payments:
    @staticmethod
    def _fail_initiation(db: Session, payment: Payment, reason: str) -> NoReturn:
        """Record a PENDING payment that never got a payable instrument as FAILED."""
        GATEWAY_INITIATIONS.labels(gateway=payment.gateway.value, outcome="failure").inc()
        PaymentLedger.mark_failed(db, payment, reason)
        purposes.fail(db, payment, reason)
        db.commit()
        raise GatewayError("Payment could not be initiated with the selected gateway")

    @staticmethod
    def initiate(
        db: Session,
        adapter: PaymentGatewayAdapter,
        payment: Payment,
        user: User,
        *,
        return_url: str | None = None,
    ) -> InitiateResult:
        """Ask the gateway for a payable instrument for a committed PENDING payment.

        Runs outside any open transaction. A failed initiation is recorded as a
        FAILED payment (and its purpose side effects) before GatewayError is
        raised with an opaque message.
        """
        try:
            result = adapter.initiate(
                amount=payment.amount,
                currency=payment.currency,
                description=payment.description or "Payment",
                return_url=return_url or settings.payment_return_url,
                metadata=_customer_metadata(payment, user),
            )
        except Exception:
            logger.exception(
                "gateway_initiation_error payment_id=%s gateway=%s",
                payment.id,
                payment.gateway.value,
            )
            result = GatewayFailure(FailureKind.transport_failure, "Unexpected gateway error")

        if isinstance(result, GatewayFailure):
            logger.warning(
                "gateway_initiation_failed payment_id=%s gateway=%s kind=%s detail=%s",
                payment.id,
                payment.gateway.value,
                result.kind.value,
                result.detail,
            )
            Payments._fail_initiation(db, payment, result.reason)

        try:
            PaymentLedger.attach_reference(db, payment, result.reference)
            db.commit()
        except (IntegrityError, ConflictError):
            db.rollback()
            logger.warning(
                "gateway_reference_rejected payment_id=%s gateway=%s reference=%s",
                payment.id,
                payment.gateway.value,
                result.reference,
            )
            Payments._fail_initiation(
                db, payment, f"reference_conflict: {result.reference} is already in use"
            )
        GATEWAY_INITIATIONS.labels(gateway=payment.gateway.value, outcome="success").inc()
        logger.info(
            "gateway_initiated payment_id=%s gateway=%s reference=%s",
            payment.id,
            payment.gateway.value,
            result.reference,
        )
        return result

    @staticmethod
    def create_charge(
        db: Session,
        registry: GatewayRegistry,
        *,
        user_id,
        amount: int,
        gateway,
        currency: str | None = None,
        description: str | None = None,
        plan_tier=None,
        billing_period=None,
        return_url: str | None = None,
    ) -> ChargeResult:
        adapter = registry.get(gateway)
        user = get_user(db, user_id)
        currency = (currency or settings.default_currency).upper()
        if len(currency) != 3 or not currency.isalpha():
            raise ValidationError("Currency must be a 3-letter ISO code")
        if amount is None or amount <= 0:
            raise ValidationError("Amount must be greater than zero")

        purpose: PaymentPurpose = GenericPurchase()
        if plan_tier is not None:
            tier = validate_enum(plan_tier, PlanTier, "plan tier")
            period = validate_enum(billing_period, BillingPeriod, "billing period") or BillingPeriod.monthly
            if tier == PlanTier.free:
                raise ValidationError("The free plan cannot be purchased")
            plan = Plans.get(db, tier)
            expected = plan.price_for(period)
            if amount != expected or currency != plan.currency:
                raise ValidationError(
                    f"Amount does not match the {plan.name} {period.value.lower()} price "
                    f"of {expected} {plan.currency}"
                )
            purpose = PlanPurchase(tier, period)
            description = description or f"{plan.name} plan ({period.value.lower()})"
        elif billing_period is not None:
            raise ValidationError("billing_period requires plan_tier")

        payment = PaymentLedger.create(
            db,
            user_id=user.id,
            amount=amount,
            currency=currency,
            gateway=adapter.gateway,
            description=description or "Payment",
        )
        purposes.assign(payment, purpose)
        db.commit()
        db.refresh(payment)

        result = Payments.initiate(db, adapter, payment, user, return_url=return_url)
        return ChargeResult(payment=payment, redirect_target=result.redirect_target)

    @staticmethod
    def refund(
        db: Session,
        notifier,
        *,
        admin_id,
        payment_id,
        amount: int | None,
        reason: str,
    ) -> Payment:
        """Refund a COMPLETED payment; a funded deposit is refunded with it."""
        admin = require_admin(db, admin_id)
        if not reason or not reason.strip():
            raise ValidationError("A refund reason is required")
        payment = (
            db.query(Payment)
            .filter(Payment.id == coerce_uuid(payment_id))
            .with_for_update()
            .first()
        )
        if not payment:
            raise NotFoundError("Payment not found")
        if payment.status != PaymentStatus.completed:
            raise ConflictError(
                f"Only completed payments can be refunded (current status {payment.status.value})"
            )
        amount = payment.amount if amount is None else amount
        if amount <= 0 or amount > payment.amount:
            raise ValidationError("Refund amount must be between 1 and the payment amount")

        if not PaymentLedger.mark_refunded(db, payment, amount, reason.strip(), admin.id):
            raise ConflictError("Payment was modified concurrently; refund not applied")
        deposit = purposes.refund(db, payment, amount, reason.strip())
        db.commit()
        db.refresh(payment)
        logger.info(
            "payment_refunded payment_id=%s amount=%s admin_id=%s deposit_id=%s",
            payment.id,
            amount,
            admin.id,
            deposit.id if deposit else None,
        )

        try:
            notifier.notify_payment_refunded(
                db,
                payment.user_id,
                {
                    "payment_id": str(payment.id),
                    "amount": amount,
                    "currency": payment.currency,
                    "reason": reason.strip(),
                },
            )
        except Exception:
            logger.exception("refund_notification_failed payment_id=%s", payment.id)
        return payment


payments = Payments()

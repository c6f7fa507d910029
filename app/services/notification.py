"""User notifications for billing and subscription events.

Each notification is stored as an in-app record first, then pushed over
email and SMS. A failing channel is recorded on the record and never raised
to the caller: ledger and subscription state must not depend on delivery.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol

from sqlalchemy.orm import Session

from app.models.notification import NotificationChannel, NotificationType, UserNotification
from app.models.user import User
from app.services.common import coerce_uuid
from app.services.email import send_email
from app.services.sms import send_sms

logger = logging.getLogger(__name__)

SMS_MAX_LENGTH = 160


@dataclass(frozen=True)
class NotificationResult:
    success: bool
    email_sent: bool = False
    sms_sent: bool = False
    skipped: bool = False
    error: str | None = None


class NotificationDispatcher(Protocol):
    """Collaborator notified of billing events."""

    def notify_payment_success(self, db: Session, user_id, payload: dict) -> NotificationResult: ...
    def notify_payment_failure(self, db: Session, user_id, payload: dict) -> NotificationResult: ...
    def notify_plan_expiry(self, db: Session, user_id, payload: dict) -> NotificationResult: ...
    def notify_subscription_renewal(self, db: Session, user_id, payload: dict) -> NotificationResult: ...
    def notify_deposit_approval(self, db: Session, user_id, payload: dict) -> NotificationResult: ...
    def notify_deposit_rejection(self, db: Session, user_id, payload: dict) -> NotificationResult: ...
    def notify_payment_refunded(self, db: Session, user_id, payload: dict) -> NotificationResult: ...
    def notify_premium_license_approval(
        self, db: Session, user_id, payload: dict
    ) -> NotificationResult: ...
    def notify_subscription_cancellation(
        self, db: Session, user_id, payload: dict
    ) -> NotificationResult: ...


def format_amount(amount: int | None, currency: str | None) -> str:
    """Render minor units as ``PKR 25,000`` (decimals only when non-zero)."""
    if amount is None:
        return ""
    major = Decimal(amount) / 100
    text = f"{major:,.0f}" if major == major.to_integral_value() else f"{major:,.2f}"
    return f"{currency or ''} {text}".strip()


class NotificationService:
    def __init__(
        self,
        email_sender: Callable[..., bool] = send_email,
        sms_sender: Callable[..., Any] = send_sms,
    ) -> None:
        self.email_sender = email_sender
        self.sms_sender = sms_sender

    def notify(
        self,
        db: Session,
        user_id,
        notification_type: NotificationType,
        title: str,
        message: str,
        channels: tuple[NotificationChannel, ...],
        data: dict | None = None,
        dedupe_key: str | None = None,
    ) -> NotificationResult:
        user = db.get(User, coerce_uuid(user_id))
        if not user:
            return NotificationResult(success=False, error="User not found")

        if dedupe_key:
            already_sent = (
                db.query(UserNotification.id)
                .filter(UserNotification.user_id == user.id)
                .filter(UserNotification.notification_type == notification_type)
                .filter(UserNotification.dedupe_key == dedupe_key)
                .first()
            )
            if already_sent:
                logger.info(
                    "notification_deduplicated user_id=%s type=%s",
                    user.id,
                    notification_type.value,
                )
                return NotificationResult(success=True, skipped=True)

        record = UserNotification(
            user_id=user.id,
            notification_type=notification_type,
            title=title,
            message=message,
            data=data,
            dedupe_key=dedupe_key,
        )
        db.add(record)
        db.commit()

        errors: list[str] = []
        if NotificationChannel.email in channels and user.email_notifications and user.email:
            try:
                record.email_sent = bool(
                    self.email_sender(user.email, title, f"<p>{message}</p>", message)
                )
                if not record.email_sent:
                    errors.append("email delivery failed")
            except Exception as exc:
                logger.exception("notification_email_failed user_id=%s", user.id)
                errors.append(f"email: {exc}")

        if NotificationChannel.sms in channels and user.sms_notifications and user.phone_number:
            try:
                result = self.sms_sender(
                    user.phone_number, f"{title}: {message}"[:SMS_MAX_LENGTH]
                )
                record.sms_sent = bool(result.success)
                if not result.success:
                    errors.append(f"sms: {result.error}")
            except Exception as exc:
                logger.exception("notification_sms_failed user_id=%s", user.id)
                errors.append(f"sms: {exc}")

        record.last_error = "; ".join(errors) or None
        db.commit()
        logger.info(
            "notification_dispatched user_id=%s type=%s email_sent=%s sms_sent=%s",
            user.id,
            notification_type.value,
            record.email_sent,
            record.sms_sent,
        )
        return NotificationResult(
            success=True,
            email_sent=record.email_sent,
            sms_sent=record.sms_sent,
            error=record.last_error,
        )

    def notify_payment_success(self, db: Session, user_id, payload: dict) -> NotificationResult:
        amount = format_amount(payload.get("amount"), payload.get("currency"))
        return self.notify(
            db,
            user_id,
            NotificationType.payment_success,
            "Payment Successful",
            f"{amount} has been processed successfully",
            (NotificationChannel.email, NotificationChannel.sms),
            data=payload,
        )

    def notify_payment_failure(self, db: Session, user_id, payload: dict) -> NotificationResult:
        amount = format_amount(payload.get("amount"), payload.get("currency"))
        return self.notify(
            db,
            user_id,
            NotificationType.payment_failure,
            "Payment Failed",
            f"Payment of {amount} could not be processed",
            (NotificationChannel.email, NotificationChannel.sms),
            data=payload,
        )

    def notify_plan_expiry(self, db: Session, user_id, payload: dict) -> NotificationResult:
        plan_name = payload.get("plan_name", "")
        return self.notify(
            db,
            user_id,
            NotificationType.plan_expiry,
            f"Your {plan_name} plan expires soon",
            f"Your plan will expire in {payload.get('days_remaining')} days. "
            "Renew now to avoid interruption",
            (NotificationChannel.email,),
            data=payload,
            dedupe_key=f"plan_expiry:{plan_name}:{payload.get('end_date')}",
        )

    def notify_subscription_renewal(self, db: Session, user_id, payload: dict) -> NotificationResult:
        plan_name = payload.get("plan_name", "")
        return self.notify(
            db,
            user_id,
            NotificationType.subscription_renewal,
            f"{plan_name} subscription renewed",
            f"Your subscription has been renewed. Valid until {payload.get('end_date')}",
            (NotificationChannel.email,),
            data=payload,
        )

    def notify_deposit_approval(self, db: Session, user_id, payload: dict) -> NotificationResult:
        amount = format_amount(payload.get("amount"), payload.get("currency"))
        return self.notify(
            db,
            user_id,
            NotificationType.deposit_approval,
            "Security Deposit Approved",
            f"Your security deposit of {amount} has been approved. "
            "Your premium license is now active.",
            (NotificationChannel.email, NotificationChannel.sms),
            data=payload,
        )

    def notify_deposit_rejection(self, db: Session, user_id, payload: dict) -> NotificationResult:
        return self.notify(
            db,
            user_id,
            NotificationType.deposit_rejection,
            "Security Deposit Rejected",
            f"Your security deposit was rejected: {payload.get('reason')}",
            (NotificationChannel.email,),
            data=payload,
        )

    def notify_payment_refunded(self, db: Session, user_id, payload: dict) -> NotificationResult:
        amount = format_amount(payload.get("amount"), payload.get("currency"))
        return self.notify(
            db,
            user_id,
            NotificationType.payment_refunded,
            "Payment Refunded",
            f"{amount} has been refunded to you",
            (NotificationChannel.email,),
            data=payload,
        )

    def notify_premium_license_approval(
        self, db: Session, user_id, payload: dict
    ) -> NotificationResult:
        return self.notify(
            db,
            user_id,
            NotificationType.premium_license_approval,
            "Premium License Approved",
            f"Congratulations {payload.get('agent_name') or 'Agent'}! Your premium license "
            "has been approved. You now have a blue tick.",
            (NotificationChannel.email, NotificationChannel.sms),
            data=payload,
        )

    def notify_subscription_cancellation(
        self, db: Session, user_id, payload: dict
    ) -> NotificationResult:
        return self.notify(
            db,
            user_id,
            NotificationType.subscription_cancellation,
            "Subscription Cancelled",
            "Your subscription has been cancelled. Enjoy your free plan.",
            (NotificationChannel.email,),
            data=payload,
        )


notification_service = NotificationService()

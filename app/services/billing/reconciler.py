"""Inbound gateway callback reconciliation.

A callback is verified against the gateway's signing secret before its body
is trusted, matched to a payment by (gateway, reference) under a row lock,
and applied at most once. Replays of an outcome already recorded are
acknowledged as duplicates; callbacks contradicting a recorded outcome are
kept as anomalies and never change ledger state.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.metrics import WEBHOOK_CALLBACKS
from app.models.billing import (
    CallbackResult,
    Payment,
    PaymentCallback,
    PaymentGateway,
    PaymentStatus,
)
from app.services.billing import purposes
from app.services.billing.ledger import TERMINAL_STATUSES, PaymentLedger
from app.services.errors import AuthenticationError
from app.services.gateways import CallbackPayload, GatewayRegistry, NormalizedEvent

logger = logging.getLogger(__name__)

_REDACTED_KEYS = ("password", "secret")


def _audit_params(payload: CallbackPayload) -> dict:
    return {
        key: value
        for key, value in payload.params.items()
        if not any(marker in key.lower() for marker in _REDACTED_KEYS)
    }


def _matches_recorded(payment: Payment, event: NormalizedEvent) -> bool:
    if event.succeeded:
        return payment.status in (PaymentStatus.completed, PaymentStatus.refunded)
    return payment.status == PaymentStatus.failed


class WebhookReconciler:
    def __init__(self, registry: GatewayRegistry, notifier) -> None:
        self.registry = registry
        self.notifier = notifier

    def handle(self, db: Session, gateway, payload: CallbackPayload) -> CallbackResult:
        adapter = self.registry.get(gateway)
        gateway_key = adapter.gateway
        if not adapter.verify(payload):
            WEBHOOK_CALLBACKS.labels(gateway=gateway_key.value, result="rejected").inc()
            logger.warning("webhook_signature_invalid gateway=%s", gateway_key.value)
            raise AuthenticationError("Invalid callback signature")

        event = adapter.normalize(payload)
        if event is None:
            logger.info("webhook_ignored gateway=%s", gateway_key.value)
            self._record(db, gateway_key, None, None, CallbackResult.ignored, payload)
            db.commit()
            WEBHOOK_CALLBACKS.labels(gateway=gateway_key.value, result="ignored").inc()
            return CallbackResult.ignored

        payment = None
        applied_status = None
        detail = None
        try:
            payment = PaymentLedger.find_by_reference(
                db, gateway_key, event.reference, for_update=True
            )
            if payment is None:
                result = CallbackResult.unmatched
                logger.warning(
                    "webhook_unmatched gateway=%s reference=%s",
                    gateway_key.value,
                    event.reference,
                )
            elif payment.status in TERMINAL_STATUSES:
                result, detail = self._classify_repeat(payment, event)
            else:
                result, detail, applied_status = self._apply(db, payment, event)
            self._record(db, gateway_key, payment, event, result, payload, detail)
            db.commit()
        except Exception:
            db.rollback()
            raise

        WEBHOOK_CALLBACKS.labels(gateway=gateway_key.value, result=result.value).inc()
        if applied_status is not None:
            self._notify(db, payment, applied_status)
        return result

    @staticmethod
    def _classify_repeat(
        payment: Payment, event: NormalizedEvent
    ) -> tuple[CallbackResult, str | None]:
        if _matches_recorded(payment, event):
            logger.info(
                "webhook_duplicate payment_id=%s status=%s",
                payment.id,
                payment.status.value,
            )
            return CallbackResult.duplicate, None
        detail = (
            f"Callback reported {event.outcome.value} but payment is {payment.status.value}"
        )
        logger.warning(
            "webhook_anomaly payment_id=%s recorded=%s reported=%s",
            payment.id,
            payment.status.value,
            event.outcome.value,
        )
        return CallbackResult.anomaly, detail

    @staticmethod
    def _apply(
        db: Session, payment: Payment, event: NormalizedEvent
    ) -> tuple[CallbackResult, str | None, PaymentStatus | None]:
        if event.succeeded and event.provider_amount is not None and (
            event.provider_amount != payment.amount
        ):
            reason = (
                f"Amount mismatch: expected {payment.amount}, "
                f"gateway reported {event.provider_amount}"
            )
            logger.warning(
                "webhook_amount_mismatch payment_id=%s expected=%s reported=%s",
                payment.id,
                payment.amount,
                event.provider_amount,
            )
            if not PaymentLedger.mark_failed(
                db, payment, reason, event.provider_transaction_id
            ):
                return CallbackResult.duplicate, None, None
            purposes.fail(db, payment, reason)
            return CallbackResult.processed, reason, PaymentStatus.failed

        if event.succeeded:
            if not PaymentLedger.mark_completed(db, payment, event.provider_transaction_id):
                return CallbackResult.duplicate, None, None
            purposes.fulfill(db, payment, event.reference)
            return CallbackResult.processed, None, PaymentStatus.completed

        reason = event.failure_detail or "Payment declined"
        if not PaymentLedger.mark_failed(db, payment, reason, event.provider_transaction_id):
            return CallbackResult.duplicate, None, None
        purposes.fail(db, payment, reason)
        return CallbackResult.processed, reason, PaymentStatus.failed

    @staticmethod
    def _record(
        db: Session,
        gateway: PaymentGateway,
        payment: Payment | None,
        event: NormalizedEvent | None,
        result: CallbackResult,
        payload: CallbackPayload,
        detail: str | None = None,
    ) -> PaymentCallback:
        callback = PaymentCallback(
            payment_id=payment.id if payment else None,
            gateway=gateway,
            provider_reference=event.reference if event else None,
            outcome=event.outcome if event else None,
            result=result,
            provider_amount=event.provider_amount if event else None,
            detail=detail,
            payload=_audit_params(payload) or None,
        )
        db.add(callback)
        db.flush()
        return callback

    def _notify(self, db: Session, payment: Payment, status: PaymentStatus) -> None:
        data = {
            "payment_id": str(payment.id),
            "amount": payment.amount,
            "currency": payment.currency,
            "purpose": payment.purpose.value,
        }
        try:
            if status == PaymentStatus.completed:
                self.notifier.notify_payment_success(db, payment.user_id, data)
            else:
                data["reason"] = payment.failure_reason
                self.notifier.notify_payment_failure(db, payment.user_id, data)
        except Exception:
            logger.exception("payment_notification_failed payment_id=%s", payment.id)

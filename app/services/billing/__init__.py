"""Billing services package.

    from app.services import billing as billing_service
    billing_service.payments.create_charge(db, registry, ...)
"""

from app.services.billing.ledger import TERMINAL_STATUSES, PaymentLedger, payment_ledger
from app.services.billing.payments import ChargeResult, Payments, payments
from app.services.billing.purposes import (
    DepositPurchase,
    GenericPurchase,
    PaymentPurpose,
    PlanPurchase,
)
from app.services.billing.reconciler import WebhookReconciler

__all__ = [
    # Classes
    "ChargeResult",
    "DepositPurchase",
    "GenericPurchase",
    "PaymentLedger",
    "PaymentPurpose",
    "Payments",
    "PlanPurchase",
    "WebhookReconciler",
    "TERMINAL_STATUSES",
    # Singleton instances
    "payment_ledger",
    "payments",
]

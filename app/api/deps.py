from fastapi import Depends

from app.db import get_db
from app.services.billing.reconciler import WebhookReconciler
from app.services.gateways import GatewayRegistry, get_gateway_registry
from app.services.notification import NotificationDispatcher, notification_service


def get_notification_dispatcher() -> NotificationDispatcher:
    """Notification collaborator used by billing handlers.

    Overridden in tests with a recording fake.
    """
    return notification_service


def get_reconciler(
    registry: GatewayRegistry = Depends(get_gateway_registry),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> WebhookReconciler:
    return WebhookReconciler(registry, notifier)


__all__ = [
    "get_db",
    "get_gateway_registry",
    "get_notification_dispatcher",
    "get_reconciler",
]

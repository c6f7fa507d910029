from app.tasks.subscriptions import (
    expire_subscriptions,
    renew_subscriptions,
    send_expiry_reminders,
)

__all__ = [
    "expire_subscriptions",
    "renew_subscriptions",
    "send_expiry_reminders",
]

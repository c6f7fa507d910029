import logging
import time

from app.celery_app import celery_app
from app.db import SessionLocal
from app.metrics import observe_job
from app.services import subscriptions as subscriptions_service
from app.services.notification import notification_service

logger = logging.getLogger(__name__)


def _run_sweep(task_name: str, sweep) -> int:
    start = time.monotonic()
    status = "success"
    session = SessionLocal()
    try:
        count = sweep(session)
        logger.info("%s processed=%s", task_name, count)
        return count
    except Exception:
        status = "error"
        session.rollback()
        logger.exception("%s failed", task_name)
        raise
    finally:
        session.close()
        observe_job(task_name, status, time.monotonic() - start)


@celery_app.task(name="app.tasks.subscriptions.expire_subscriptions")
def expire_subscriptions():
    return _run_sweep(
        "expire_subscriptions", subscriptions_service.subscriptions.expire_due
    )


@celery_app.task(name="app.tasks.subscriptions.send_expiry_reminders")
def send_expiry_reminders():
    return _run_sweep(
        "send_expiry_reminders",
        lambda session: subscriptions_service.subscriptions.send_expiry_reminders(
            session, notification_service
        ),
    )


@celery_app.task(name="app.tasks.subscriptions.renew_subscriptions")
def renew_subscriptions():
    return _run_sweep(
        "renew_subscriptions",
        lambda session: subscriptions_service.subscriptions.renew_due(
            session, notification_service
        ),
    )

import logging
import os
from datetime import timedelta

from app.config import settings

logger = logging.getLogger(__name__)

_DEFAULT_INTERVALS = {
    "expire_subscriptions": 3600,
    "send_expiry_reminders": 86400,
    "renew_subscriptions": 3600,
}


def _env_value(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value


def _env_int(name: str) -> int | None:
    raw = _env_value(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer value for %s", name)
        return None


def get_celery_config() -> dict:
    config = {
        "broker_url": settings.celery_broker_url,
        "result_backend": settings.celery_result_backend,
        "timezone": _env_value("CELERY_TIMEZONE") or "UTC",
        "task_acks_late": True,
        "worker_prefetch_multiplier": 1,
    }
    return config


def build_beat_schedule() -> dict:
    """Sweep cadence; each interval can be overridden with <NAME>_INTERVAL_SECONDS."""
    schedule = {}
    for name, default in _DEFAULT_INTERVALS.items():
        seconds = _env_int(f"{name.upper()}_INTERVAL_SECONDS")
        if seconds is None:
            seconds = default
        if seconds <= 0:
            logger.info("Beat entry %s disabled", name)
            continue
        schedule[name] = {
            "task": f"app.tasks.subscriptions.{name}",
            "schedule": timedelta(seconds=seconds),
        }
    return schedule

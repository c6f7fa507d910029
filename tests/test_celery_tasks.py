"""Tests for Celery tasks."""

from unittest.mock import MagicMock, patch

import pytest

from app.services.notification import notification_service


class TestExpireSubscriptionsTask:
    """Tests for subscriptions.expire_subscriptions task."""

    def test_success_closes_session(self):
        mock_session = MagicMock()

        with patch("app.tasks.subscriptions.SessionLocal", return_value=mock_session):
            with patch(
                "app.tasks.subscriptions.subscriptions_service.subscriptions.expire_due",
                return_value=3,
            ) as mock_run:
                from app.tasks.subscriptions import expire_subscriptions

                assert expire_subscriptions() == 3

                mock_run.assert_called_once_with(mock_session)
                mock_session.close.assert_called_once()
                mock_session.rollback.assert_not_called()

    def test_exception_rolls_back(self):
        mock_session = MagicMock()

        with patch("app.tasks.subscriptions.SessionLocal", return_value=mock_session):
            with patch(
                "app.tasks.subscriptions.subscriptions_service.subscriptions.expire_due",
                side_effect=RuntimeError("database gone"),
            ):
                from app.tasks.subscriptions import expire_subscriptions

                with pytest.raises(RuntimeError, match="database gone"):
                    expire_subscriptions()

                mock_session.rollback.assert_called_once()
                mock_session.close.assert_called_once()


class TestReminderAndRenewalTasks:
    def test_reminders_use_notification_service(self):
        mock_session = MagicMock()

        with patch("app.tasks.subscriptions.SessionLocal", return_value=mock_session):
            with patch(
                "app.tasks.subscriptions.subscriptions_service.subscriptions.send_expiry_reminders",
                return_value=2,
            ) as mock_run:
                from app.tasks.subscriptions import send_expiry_reminders

                assert send_expiry_reminders() == 2

                mock_run.assert_called_once_with(mock_session, notification_service)

    def test_renewals_use_notification_service(self):
        mock_session = MagicMock()

        with patch("app.tasks.subscriptions.SessionLocal", return_value=mock_session):
            with patch(
                "app.tasks.subscriptions.subscriptions_service.subscriptions.renew_due",
                return_value=0,
            ) as mock_run:
                from app.tasks.subscriptions import renew_subscriptions

                assert renew_subscriptions() == 0

                mock_run.assert_called_once_with(mock_session, notification_service)
                mock_session.close.assert_called_once()


def test_beat_schedule_registered_on_app():
    from app.celery_app import celery_app

    assert set(celery_app.conf.beat_schedule) >= {
        "expire_subscriptions",
        "send_expiry_reminders",
        "renew_subscriptions",
    }

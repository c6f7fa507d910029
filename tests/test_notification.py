"""Tests for notification dispatch and its email/SMS transports."""

from unittest.mock import patch

import httpx

from app.config import Settings
from app.models.notification import NotificationType, UserNotification
from app.services import email as email_service
from app.services import sms as sms_service
from app.services.notification import NotificationService, format_amount
from app.services.sms import SmsResult
from tests.conftest import make_user
from tests.mocks import FakeSMTP


class RecordingSender:
    def __init__(self, result=True, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls = []

    def __call__(self, *args):
        self.calls.append(args)
        if self.error:
            raise self.error
        return self.result


def _records(db_session, user, notification_type):
    return (
        db_session.query(UserNotification)
        .filter(UserNotification.user_id == user.id)
        .filter(UserNotification.notification_type == notification_type)
        .all()
    )


def test_format_amount():
    assert format_amount(2500000, "PKR") == "PKR 25,000"
    assert format_amount(150, "PKR") == "PKR 1.50"
    assert format_amount(None, "PKR") == ""


def test_payment_success_uses_email_and_sms(db_session, agent):
    email = RecordingSender()
    sms = RecordingSender(SmsResult(True, external_id="m1"))
    service = NotificationService(email_sender=email, sms_sender=sms)

    result = service.notify_payment_success(
        db_session, agent.id, {"amount": 299900, "currency": "PKR", "payment_id": "p1"}
    )

    assert result.success and result.email_sent and result.sms_sent
    assert email.calls[0][0] == agent.email
    assert "PKR 2,999" in email.calls[0][3]
    assert sms.calls[0][0] == agent.phone_number
    [record] = _records(db_session, agent, NotificationType.payment_success)
    assert record.email_sent is True
    assert record.last_error is None


def test_failing_channel_is_recorded_not_raised(db_session, agent):
    email = RecordingSender(error=OSError("smtp down"))
    sms = RecordingSender(SmsResult(True))
    service = NotificationService(email_sender=email, sms_sender=sms)

    result = service.notify_deposit_approval(
        db_session, agent.id, {"amount": 2500000, "currency": "PKR"}
    )

    assert result.success is True
    assert result.email_sent is False
    assert result.sms_sent is True
    assert "smtp down" in result.error
    [record] = _records(db_session, agent, NotificationType.deposit_approval)
    assert "email" in record.last_error


def test_plan_expiry_is_deduplicated(db_session, agent):
    email = RecordingSender()
    service = NotificationService(email_sender=email, sms_sender=RecordingSender())
    payload = {"plan_name": "STARTER", "days_remaining": 3, "end_date": "2026-01-31T00:00:00"}

    first = service.notify_plan_expiry(db_session, agent.id, payload)
    second = service.notify_plan_expiry(db_session, agent.id, payload)

    assert first.skipped is False
    assert second.skipped is True
    assert len(email.calls) == 1
    assert len(_records(db_session, agent, NotificationType.plan_expiry)) == 1


def test_premium_license_notice_greets_agent(db_session, agent):
    email = RecordingSender()
    sms = RecordingSender(SmsResult(True))
    service = NotificationService(email_sender=email, sms_sender=sms)

    result = service.notify_premium_license_approval(
        db_session, agent.id, {"agent_name": "Ayesha"}
    )

    assert result.email_sent and result.sms_sent
    assert "Congratulations Ayesha!" in email.calls[0][3]
    [record] = _records(db_session, agent, NotificationType.premium_license_approval)
    assert record.title == "Premium License Approved"


def test_cancellation_notice_is_email_only(db_session, agent):
    sms = RecordingSender(SmsResult(True))
    service = NotificationService(email_sender=RecordingSender(), sms_sender=sms)

    result = service.notify_subscription_cancellation(db_session, agent.id, {"reason": None})

    assert result.email_sent is True
    assert sms.calls == []


def test_channel_preferences_are_respected(db_session):
    user = make_user(db_session, sms_notifications=False)
    sms = RecordingSender(SmsResult(True))
    service = NotificationService(email_sender=RecordingSender(), sms_sender=sms)

    result = service.notify_payment_failure(
        db_session, user.id, {"amount": 1000, "currency": "PKR", "reason": "Declined"}
    )

    assert result.sms_sent is False
    assert sms.calls == []


def test_unknown_user_is_reported(db_session):
    service = NotificationService(email_sender=RecordingSender(), sms_sender=RecordingSender())

    result = service.notify_payment_refunded(
        db_session, "00000000-0000-0000-0000-000000000003", {"amount": 1}
    )

    assert result.success is False
    assert result.error == "User not found"


def test_send_email_over_smtp():
    config = Settings(
        smtp_host="smtp.test",
        smtp_port=587,
        smtp_username="mailer",
        smtp_password="secret",
        smtp_use_tls=True,
    )
    server = FakeSMTP()

    with patch.object(email_service, "_create_smtp_client", return_value=server):
        sent = email_service.send_email(
            "agent@example.com", "Payment Successful", "<p>Hi</p>", "Hi", config=config
        )

    assert sent is True
    assert server.started_tls and server.logged_in
    assert server.messages[0][1] == "agent@example.com"


def test_send_email_skipped_without_host():
    config = Settings(smtp_host=None)

    assert email_service.send_email("a@example.com", "s", "<p>b</p>", config=config) is False


def test_send_sms_via_webhook():
    config = Settings(sms_provider="webhook", sms_webhook_url="https://93.184.216.34/sms")
    response = httpx.Response(
        202,
        request=httpx.Request("POST", "https://93.184.216.34/sms"),
        json={"message_id": "msg-1"},
    )

    with patch("httpx.post", return_value=response) as mock_post:
        result = sms_service.send_sms("0300 123-4567", "Hello", config=config)

    assert result == SmsResult(True, external_id="msg-1")
    assert mock_post.call_args.kwargs["json"] == {"to": "+923001234567", "message": "Hello"}


def test_send_sms_webhook_rejects_private_target():
    config = Settings(sms_provider="webhook", sms_webhook_url="http://127.0.0.1/sms")

    with patch("httpx.post") as mock_post:
        result = sms_service.send_sms("+923001234567", "Hello", config=config)

    assert result.success is False
    assert result.error == "SSRF blocked"
    mock_post.assert_not_called()


def test_send_sms_twilio_auth_failure_logs(caplog):
    response = httpx.Response(
        401,
        request=httpx.Request("POST", "https://api.twilio.com/2010-04-01/Accounts/acct/Messages.json"),
        json={"message": "Authentication failed"},
    )

    with patch("httpx.post", return_value=response):
        with caplog.at_level("ERROR"):
            result = sms_service._send_via_twilio(
                "acct", "secret", "+15550001111", "+15550002222", "Hello", 5
            )

    assert result.success is False
    assert "Authentication failed" in result.error
    assert "sms_auth_failed provider=twilio" in caplog.text


def test_send_sms_timeout():
    config = Settings(sms_provider="webhook", sms_webhook_url="https://93.184.216.34/sms")

    with patch("httpx.post", side_effect=httpx.ConnectTimeout("slow")):
        result = sms_service.send_sms("+923001234567", "Hello", config=config)

    assert result.error == "SMS provider timed out"

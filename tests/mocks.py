"""Mock utilities for testing external dependencies."""

from typing import Any

import httpx

from app.services.notification import NotificationResult


class FakeSMTP:
    """Mock SMTP server for email tests."""

    def __init__(self, host: str = "", port: int = 25, **kwargs):
        self.host = host
        self.port = port
        self.messages: list[tuple[str, list[str], str]] = []
        self.connected = False
        self.logged_in = False
        self.started_tls = False

    def __enter__(self):
        self.connected = True
        return self

    def __exit__(self, *args):
        self.connected = False

    def starttls(self):
        self.started_tls = True

    def login(self, user: str, password: str):
        self.logged_in = True

    def sendmail(self, from_addr: str, to_addrs: list[str], msg: str):
        self.messages.append((from_addr, to_addrs, msg))

    def send_message(self, message, from_addr=None, to_addrs=None):
        self.messages.append((from_addr or message["From"], [message["To"]], message.as_string()))

    def quit(self):
        self.connected = False


class FakeHTTPXResponse:
    """Mock httpx response for API tests."""

    def __init__(self, json_data: Any = None, status_code: int = 200):
        self._json_data = json_data if json_data is not None else {}
        self.status_code = status_code
        self.text = str(self._json_data)

    def json(self) -> Any:
        if isinstance(self._json_data, Exception):
            raise self._json_data
        return self._json_data

    def raise_for_status(self):
        if self.status_code >= 400:
            request = httpx.Request("POST", "https://fake.test")
            response = httpx.Response(self.status_code, request=request)
            raise httpx.HTTPStatusError(
                f"HTTP Error: {self.status_code}", request=request, response=response
            )


class FakeNotificationDispatcher:
    """Records every dispatch; optionally raises to exercise failure isolation."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[tuple[str, Any, dict]] = []

    def _record(self, name: str, user_id, payload: dict) -> NotificationResult:
        self.calls.append((name, user_id, dict(payload)))
        if self.fail:
            raise RuntimeError("notification transport down")
        return NotificationResult(success=True, email_sent=True)

    def names(self) -> list[str]:
        return [name for name, _, _ in self.calls]

    def notify_payment_success(self, db, user_id, payload):
        return self._record("payment_success", user_id, payload)

    def notify_payment_failure(self, db, user_id, payload):
        return self._record("payment_failure", user_id, payload)

    def notify_plan_expiry(self, db, user_id, payload):
        return self._record("plan_expiry", user_id, payload)

    def notify_subscription_renewal(self, db, user_id, payload):
        return self._record("subscription_renewal", user_id, payload)

    def notify_deposit_approval(self, db, user_id, payload):
        return self._record("deposit_approval", user_id, payload)

    def notify_deposit_rejection(self, db, user_id, payload):
        return self._record("deposit_rejection", user_id, payload)

    def notify_payment_refunded(self, db, user_id, payload):
        return self._record("payment_refunded", user_id, payload)

    def notify_premium_license_approval(self, db, user_id, payload):
        return self._record("premium_license_approval", user_id, payload)

    def notify_subscription_cancellation(self, db, user_id, payload):
        return self._record("subscription_cancellation", user_id, payload)

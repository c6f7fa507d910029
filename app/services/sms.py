"""SMS transport with Twilio and generic HTTP webhook providers.

Configuration via environment variables (see app.config):
- SMS_PROVIDER: twilio | webhook
- SMS_API_KEY, SMS_API_SECRET
- SMS_FROM_NUMBER
- SMS_WEBHOOK_URL (for webhook provider)
"""

from __future__ import annotations

import ipaddress
import logging
import socket
import urllib.parse
from dataclasses import dataclass

import httpx

from app.config import Settings, settings
from app.metrics import NOTIFICATION_DELIVERIES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SmsResult:
    success: bool
    external_id: str | None = None
    error: str | None = None


def _validate_webhook_target(webhook_url: str) -> None:
    """Reject private/internal webhook targets to prevent SSRF."""
    parsed_url = urllib.parse.urlparse(webhook_url)
    hostname = parsed_url.hostname
    if not hostname:
        raise ValueError("SMS webhook URL is missing hostname")

    resolved_ips: list[str] = []
    try:
        resolved_ips.append(str(ipaddress.ip_address(hostname)))
    except ValueError:
        try:
            resolved = socket.getaddrinfo(hostname, None)
        except socket.gaierror as exc:
            raise ValueError(f"SMS webhook hostname resolution failed: {hostname}") from exc
        resolved_ips.extend(item[4][0] for item in resolved)

    for ip in resolved_ips:
        resolved_ip = ipaddress.ip_address(ip)
        if resolved_ip.is_private or resolved_ip.is_loopback or resolved_ip.is_link_local:
            raise ValueError("SSRF blocked")


def normalize_phone(phone: str) -> str:
    """Normalize phone number to E.164 format."""
    normalized = phone.replace(" ", "").replace("-", "").replace("(", "").replace(")", "")
    if not normalized.startswith("+"):
        # Local numbers default to Pakistan
        if normalized.startswith("0"):
            normalized = "+92" + normalized[1:]
        else:
            normalized = "+" + normalized
    return normalized


def _send_via_twilio(
    api_key: str,
    api_secret: str,
    from_number: str,
    to_phone: str,
    body: str,
    timeout: float,
) -> SmsResult:
    # Twilio uses account_sid as api_key and auth_token as api_secret
    url = f"https://api.twilio.com/2010-04-01/Accounts/{api_key}/Messages.json"
    try:
        response = httpx.post(
            url,
            auth=(api_key, api_secret),
            data={"From": from_number, "To": to_phone, "Body": body},
            timeout=timeout,
        )
    except httpx.TimeoutException:
        return SmsResult(False, error="SMS provider timed out")
    except httpx.HTTPError as exc:
        logger.warning("sms_transport_error provider=twilio error=%s", type(exc).__name__)
        return SmsResult(False, error="SMS provider unreachable")

    if response.status_code in (200, 201):
        return SmsResult(True, external_id=response.json().get("sid"))
    error_data = response.json() if response.content else {}
    error_msg = error_data.get("message", f"HTTP {response.status_code}")
    if response.status_code in (401, 403):
        logger.error(
            "sms_auth_failed provider=twilio status=%s message=%s",
            response.status_code,
            error_msg,
        )
    return SmsResult(False, error=error_msg)


def _send_via_webhook(
    webhook_url: str,
    api_key: str | None,
    to_phone: str,
    body: str,
    timeout: float,
) -> SmsResult:
    try:
        _validate_webhook_target(webhook_url)
    except ValueError as exc:
        logger.error("sms_webhook_rejected error=%s", exc)
        return SmsResult(False, error=str(exc))

    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    try:
        response = httpx.post(
            webhook_url,
            headers=headers,
            json={"to": to_phone, "message": body},
            timeout=timeout,
        )
    except httpx.TimeoutException:
        return SmsResult(False, error="SMS provider timed out")
    except httpx.HTTPError as exc:
        logger.warning("sms_transport_error provider=webhook error=%s", type(exc).__name__)
        return SmsResult(False, error="SMS provider unreachable")

    if response.status_code in (200, 201, 202):
        try:
            data = response.json()
        except ValueError:
            return SmsResult(True)
        return SmsResult(True, external_id=data.get("message_id") or data.get("id"))
    if response.status_code in (401, 403):
        logger.error(
            "sms_auth_failed provider=webhook status=%s", response.status_code
        )
    return SmsResult(False, error=f"HTTP {response.status_code}")


def send_sms(to_phone: str, body: str, config: Settings = settings) -> SmsResult:
    """Send an SMS message through the configured provider."""
    provider = config.sms_provider
    phone = normalize_phone(to_phone)
    timeout = config.notification_timeout_seconds

    if provider == "twilio":
        if not (config.sms_api_key and config.sms_api_secret and config.sms_from_number):
            result = SmsResult(False, error="Twilio configuration incomplete")
        else:
            result = _send_via_twilio(
                config.sms_api_key,
                config.sms_api_secret,
                config.sms_from_number,
                phone,
                body,
                timeout,
            )
    elif provider == "webhook":
        if not config.sms_webhook_url:
            result = SmsResult(False, error="SMS webhook URL not configured")
        else:
            result = _send_via_webhook(
                config.sms_webhook_url, config.sms_api_key, phone, body, timeout
            )
    else:
        result = SmsResult(False, error=f"Unknown SMS provider: {provider}")

    NOTIFICATION_DELIVERIES.labels(
        channel="sms", status="sent" if result.success else "failed"
    ).inc()
    if not result.success:
        logger.warning("sms_send_failed provider=%s error=%s", provider, result.error)
    return result

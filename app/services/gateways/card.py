"""Card gateway adapter (payment-intent API with signed webhook envelopes).

Webhooks carry a ``stripe-signature`` header of the form
``t=<unix ts>,v1=<hex hmac>``; the HMAC-SHA256 is computed over
``"<t>." + raw body`` with the endpoint secret. The body is only parsed after
the signature checks out.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode

import httpx

from app.models.billing import CallbackOutcome, PaymentGateway
from app.services.gateways.base import (
    CallbackPayload,
    FailureKind,
    GatewayFailure,
    InitiateResult,
    NormalizedEvent,
)

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"
SUCCEEDED_EVENT = "payment_intent.succeeded"
FAILED_EVENT = "payment_intent.payment_failed"


def parse_signature_header(header: str) -> tuple[int | None, list[str]]:
    timestamp = None
    signatures: list[str] = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t" and value.isdigit():
            timestamp = int(value)
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def compute_signature(secret: str, timestamp: int, raw_body: bytes) -> str:
    signed = f"{timestamp}.".encode("utf-8") + raw_body
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def _minor_amount(value) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


class CardAdapter:
    gateway = PaymentGateway.card

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        api_base: str,
        timeout: float,
        tolerance_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.tolerance_seconds = tolerance_seconds
        self.clock = clock

    def initiate(
        self,
        *,
        amount: int,
        currency: str,
        description: str,
        return_url: str,
        metadata: dict[str, Any] | None = None,
    ) -> InitiateResult | GatewayFailure:
        if not self.secret_key:
            return GatewayFailure(
                FailureKind.configuration_missing, "Card gateway secret key is not configured"
            )
        form: dict[str, Any] = {
            "amount": amount,
            "currency": currency.lower(),
            "description": description,
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in (metadata or {}).items():
            if value is not None:
                form[f"metadata[{key}]"] = str(value)
        try:
            resp = httpx.post(
                f"{self.api_base}/v1/payment_intents",
                data=form,
                headers={"Authorization": f"Bearer {self.secret_key}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException:
            logger.warning("card_initiate_timeout timeout=%s", self.timeout)
            return GatewayFailure(FailureKind.transport_failure, "Card gateway timed out")
        except httpx.HTTPStatusError as exc:
            logger.warning("card_initiate_rejected status=%s", exc.response.status_code)
            return GatewayFailure(
                FailureKind.rejected,
                f"Card gateway returned HTTP {exc.response.status_code}",
            )
        except httpx.HTTPError as exc:
            logger.warning("card_initiate_transport_error error=%s", type(exc).__name__)
            return GatewayFailure(FailureKind.transport_failure, "Card gateway unreachable")
        except ValueError:
            return GatewayFailure(FailureKind.rejected, "Card gateway returned invalid JSON")

        intent_id = data.get("id")
        if not intent_id:
            return GatewayFailure(FailureKind.rejected, "Card gateway response missing id")
        query = {"payment_intent": intent_id}
        if data.get("client_secret"):
            query["client_secret"] = data["client_secret"]
        separator = "&" if "?" in return_url else "?"
        return InitiateResult(
            reference=intent_id,
            redirect_target=f"{return_url}{separator}{urlencode(query)}",
        )

    def verify(self, payload: CallbackPayload) -> bool:
        header = payload.headers.get(SIGNATURE_HEADER)
        if not header or not self.webhook_secret or not payload.raw_body:
            return False
        timestamp, signatures = parse_signature_header(header)
        if timestamp is None or not signatures:
            return False
        if abs(self.clock() - timestamp) > self.tolerance_seconds:
            logger.warning("card_webhook_stale timestamp=%s", timestamp)
            return False
        expected = compute_signature(self.webhook_secret, timestamp, payload.raw_body)
        return any(
            hmac.compare_digest(expected.encode(), candidate.encode("utf-8"))
            for candidate in signatures
        )

    def normalize(self, payload: CallbackPayload) -> NormalizedEvent | None:
        try:
            event = json.loads(payload.raw_body)
        except ValueError:
            return None
        if not isinstance(event, dict):
            return None
        event_type = event.get("type")
        data = event.get("data")
        obj = data.get("object") if isinstance(data, dict) else None
        if not isinstance(obj, dict):
            return None
        reference = obj.get("id")
        if not reference or not isinstance(reference, str):
            return None
        if event_type not in (SUCCEEDED_EVENT, FAILED_EVENT):
            return None
        amount = _minor_amount(obj.get("amount_received") or obj.get("amount"))
        if event_type == SUCCEEDED_EVENT:
            return NormalizedEvent(
                reference=reference,
                outcome=CallbackOutcome.success,
                provider_amount=amount,
                provider_transaction_id=obj.get("latest_charge"),
            )
        error = obj.get("last_payment_error")
        message = error.get("message") if isinstance(error, dict) else None
        return NormalizedEvent(
            reference=reference,
            outcome=CallbackOutcome.failure,
            provider_amount=amount,
            failure_detail=message or "Card payment failed",
            provider_transaction_id=obj.get("latest_charge"),
        )

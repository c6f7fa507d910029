"""Easypaisa mobile-wallet gateway adapter.

The checksum is a SHA-256 digest of ``key=value`` pairs sorted by key, joined
with ``&`` and suffixed with the store hash key. Amounts travel in major
units with two decimals.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import urlencode

from app.models.billing import CallbackOutcome, PaymentGateway
from app.services.gateways.base import (
    CallbackPayload,
    FailureKind,
    GatewayFailure,
    InitiateResult,
    NormalizedEvent,
    generate_reference,
)

logger = logging.getLogger(__name__)

SIGNATURE_FIELD = "checksum"
SUCCESS_STATUS = "SUCCESS"


def minor_to_major(amount: int) -> str:
    return str((Decimal(amount) / 100).quantize(Decimal("0.01")))


def major_to_minor(value: str | None) -> int | None:
    if not value:
        return None
    try:
        amount = Decimal(value)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return int((amount * 100).to_integral_value())


class EasypaisaAdapter:
    gateway = PaymentGateway.easypaisa

    def __init__(
        self,
        store_id: str,
        hash_key: str,
        api_url: str,
        notify_url: str,
    ) -> None:
        self.store_id = store_id
        self.hash_key = hash_key
        self.api_url = api_url
        self.notify_url = notify_url

    def checksum(self, params: dict[str, str]) -> str:
        canonical = "&".join(
            f"{key}={params[key]}" for key in sorted(params) if key != SIGNATURE_FIELD
        )
        return hashlib.sha256((canonical + self.hash_key).encode("utf-8")).hexdigest()

    def initiate(
        self,
        *,
        amount: int,
        currency: str,
        description: str,
        return_url: str,
        metadata: dict[str, Any] | None = None,
    ) -> InitiateResult | GatewayFailure:
        if not (self.store_id and self.hash_key):
            return GatewayFailure(
                FailureKind.configuration_missing, "Easypaisa credentials are not configured"
            )
        metadata = metadata or {}
        reference = generate_reference("EP")
        params = {
            "storeId": self.store_id,
            "transactionId": reference,
            "transactionAmount": minor_to_major(amount),
            "currency": currency,
            "transactionDescription": description,
            "customerEmail": str(metadata.get("email") or ""),
            "customerPhoneNumber": str(metadata.get("phone") or ""),
            "customerName": str(metadata.get("name") or "Customer"),
            "returnUrl": return_url,
            "notificationUrl": self.notify_url,
        }
        params[SIGNATURE_FIELD] = self.checksum(params)
        logger.info("easypaisa_initiated reference=%s amount=%s", reference, amount)
        return InitiateResult(
            reference=reference,
            redirect_target=f"{self.api_url}?{urlencode(params)}",
        )

    def verify(self, payload: CallbackPayload) -> bool:
        received = payload.params.get(SIGNATURE_FIELD)
        if not received or not self.hash_key:
            return False
        expected = self.checksum(payload.params)
        return hmac.compare_digest(expected.encode(), received.lower().encode("utf-8"))

    def normalize(self, payload: CallbackPayload) -> NormalizedEvent | None:
        params = payload.params
        reference = params.get("transactionId")
        if not reference:
            return None
        succeeded = params.get("transactionStatus") == SUCCESS_STATUS
        return NormalizedEvent(
            reference=reference,
            outcome=CallbackOutcome.success if succeeded else CallbackOutcome.failure,
            provider_amount=major_to_minor(params.get("transactionAmount")),
            failure_detail=None
            if succeeded
            else (params.get("transactionFailureReason") or "Payment declined"),
            provider_transaction_id=params.get("transactionRefNumber"),
        )

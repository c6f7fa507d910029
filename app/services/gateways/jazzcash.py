"""JazzCash mobile-wallet gateway adapter.

Requests and callbacks are signed with a SHA-256 digest over the parameter
values sorted by parameter name, wrapped by the merchant integrity salt:

    sha256(salt & v1 & v2 & ... & vn & salt)
"""

from __future__ import annotations

import hashlib
import hmac
import logging
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

SIGNATURE_FIELD = "pp_secure_hash"
SUCCESS_STATUS = "1"


class JazzCashAdapter:
    gateway = PaymentGateway.jazzcash

    def __init__(
        self,
        merchant_id: str,
        password: str,
        integrity_salt: str,
        api_url: str,
        notify_url: str,
    ) -> None:
        self.merchant_id = merchant_id
        self.password = password
        self.integrity_salt = integrity_salt
        self.api_url = api_url
        self.notify_url = notify_url

    def secure_hash(self, params: dict[str, str]) -> str:
        values = [
            str(params[key]) for key in sorted(params) if key != SIGNATURE_FIELD
        ]
        payload = "&".join([self.integrity_salt, *values, self.integrity_salt])
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def initiate(
        self,
        *,
        amount: int,
        currency: str,
        description: str,
        return_url: str,
        metadata: dict[str, Any] | None = None,
    ) -> InitiateResult | GatewayFailure:
        if not (self.merchant_id and self.password and self.integrity_salt):
            return GatewayFailure(
                FailureKind.configuration_missing, "JazzCash credentials are not configured"
            )
        reference = generate_reference("JC")
        params = {
            "pp_version": "1.1",
            "pp_txn_type": "MWALLET",
            "pp_language": "en",
            "pp_merchant_id": self.merchant_id,
            "pp_password": self.password,
            "pp_merchant_ref": reference,
            "pp_amount": str(amount),
            "pp_currency": currency,
            "pp_bill_reference": reference,
            "pp_description": description,
            "pp_notify_url": self.notify_url,
            "pp_return_url": return_url,
        }
        params[SIGNATURE_FIELD] = self.secure_hash(params)
        logger.info("jazzcash_initiated reference=%s amount=%s", reference, amount)
        return InitiateResult(
            reference=reference,
            redirect_target=f"{self.api_url}?{urlencode(params)}",
        )

    def verify(self, payload: CallbackPayload) -> bool:
        received = payload.params.get(SIGNATURE_FIELD)
        if not received or not self.integrity_salt:
            return False
        expected = self.secure_hash(payload.params)
        return hmac.compare_digest(expected.encode(), received.lower().encode("utf-8"))

    def normalize(self, payload: CallbackPayload) -> NormalizedEvent | None:
        params = payload.params
        reference = params.get("pp_merchant_ref")
        if not reference:
            return None
        succeeded = params.get("pp_status") == SUCCESS_STATUS
        amount = params.get("pp_amount")
        return NormalizedEvent(
            reference=reference,
            outcome=CallbackOutcome.success if succeeded else CallbackOutcome.failure,
            provider_amount=int(amount) if amount and amount.isdigit() else None,
            failure_detail=None
            if succeeded
            else (params.get("pp_status_description") or "Payment declined"),
            provider_transaction_id=params.get("pp_transaction_id"),
        )

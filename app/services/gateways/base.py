"""Uniform contract shared by every payment gateway adapter."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

from app.models.billing import CallbackOutcome, PaymentGateway


class FailureKind(enum.Enum):
    configuration_missing = "configuration_missing"
    transport_failure = "transport_failure"
    rejected = "rejected"


@dataclass(frozen=True)
class InitiateResult:
    reference: str
    redirect_target: str


@dataclass(frozen=True)
class GatewayFailure:
    """Typed initiation failure; adapters return this instead of raising."""

    kind: FailureKind
    detail: str

    @property
    def reason(self) -> str:
        return f"{self.kind.value}: {self.detail}"


@dataclass(frozen=True)
class CallbackPayload:
    """Raw inbound callback exactly as received.

    `params` holds the flat key/value pairs of a form, JSON or query-string
    delivery; `raw_body` is the untouched request body; header names are
    lower-cased.
    """

    params: dict[str, str] = field(default_factory=dict)
    raw_body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class NormalizedEvent:
    reference: str
    outcome: CallbackOutcome
    provider_amount: int | None = None  # minor units
    failure_detail: str | None = None
    provider_transaction_id: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == CallbackOutcome.success


class PaymentGatewayAdapter(Protocol):
    """Gateway adapter interface."""

    gateway: PaymentGateway

    def initiate(
        self,
        *,
        amount: int,
        currency: str,
        description: str,
        return_url: str,
        metadata: dict[str, Any] | None = None,
    ) -> InitiateResult | GatewayFailure: ...

    def verify(self, payload: CallbackPayload) -> bool: ...

    def normalize(self, payload: CallbackPayload) -> NormalizedEvent | None: ...


def generate_reference(prefix: str) -> str:
    """Generate a unique merchant reference, e.g. ``MP3F9A0C2B71D4E815``."""
    return f"{prefix}{uuid.uuid4().hex[:16].upper()}"

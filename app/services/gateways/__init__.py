from app.services.gateways.base import (
    CallbackPayload,
    FailureKind,
    GatewayFailure,
    InitiateResult,
    NormalizedEvent,
    PaymentGatewayAdapter,
)
from app.services.gateways.registry import GatewayRegistry, get_gateway_registry

__all__ = [
    "CallbackPayload",
    "FailureKind",
    "GatewayFailure",
    "GatewayRegistry",
    "InitiateResult",
    "NormalizedEvent",
    "PaymentGatewayAdapter",
    "get_gateway_registry",
]

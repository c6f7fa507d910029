"""Domain exceptions raised by the billing and entitlement services.

Each exception carries the HTTP status and a stable machine code so the API
layer can translate it without inspecting the message.
"""


class BillingError(Exception):
    """Base exception for billing and entitlement failures."""

    status_code = 400
    code = "billing_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BillingError):
    """Malformed or missing input."""

    status_code = 400
    code = "validation_error"


class AuthenticationError(BillingError):
    """Callback signature or verification failure."""

    status_code = 401
    code = "authentication_failed"


class PermissionDenied(BillingError):
    """Caller lacks the role required for the operation."""

    status_code = 403
    code = "permission_denied"


class NotFoundError(BillingError):
    status_code = 404
    code = "not_found"


class ConflictError(BillingError):
    """Operation conflicts with the current state of a record."""

    status_code = 409
    code = "conflict"


class EntitlementDenied(BillingError):
    """Plan quota or plan feature does not allow the operation."""

    status_code = 403
    code = "entitlement_denied"

    def __init__(self, message: str, limit: int | None = None):
        super().__init__(message)
        self.limit = limit


class GatewayError(BillingError):
    """Charge initiation failed at the gateway."""

    status_code = 502
    code = "gateway_error"

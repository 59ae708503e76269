"""
Error kinds raised by the order engine.

Every kind carries a stable ``code`` so API clients can tell a wrong actor
from a wrong order state without parsing messages.
"""


class OrderError(Exception):
    code = "order_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(OrderError):
    code = "validation_error"
    status_code = 422


class NotFound(OrderError):
    code = "not_found"
    status_code = 404


class InvalidTransition(OrderError):
    """The requested status is not reachable from the current one."""
    code = "invalid_transition"
    status_code = 409


class InvalidStateError(OrderError):
    """The operation is not permitted in the order's current status."""
    code = "invalid_state"
    status_code = 409


class Unauthorized(OrderError):
    """The caller's role or party does not permit the operation."""
    code = "unauthorized"
    status_code = 403


class Conflict(OrderError):
    """Another request changed the order first; re-read and retry."""
    code = "conflict"
    status_code = 409


class AlreadyFinalized(OrderError):
    code = "already_finalized"
    status_code = 409


class PaymentDeclined(OrderError):
    code = "payment_declined"
    status_code = 402


class UpstreamUnavailable(OrderError):
    """Catalog or payment gateway timed out or failed."""
    code = "upstream_unavailable"
    status_code = 503

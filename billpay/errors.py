"""Error taxonomy for the payment flow.

Every error carries the HTTP status it maps to and a message that is safe to
show to the caller. Diagnostic detail that must stay server-side is logged
where the error is raised, never attached to the message.
"""
from typing import Optional


class BillPayError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(BillPayError):
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(BillPayError):
    status_code = 404
    default_message = "Not found"


class StateConflictError(BillPayError):
    status_code = 400
    default_message = "Invalid state"


class InvalidTransition(StateConflictError):
    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move payment record from {current.value} to {target.value}")


class ConfigurationError(BillPayError):
    status_code = 400
    default_message = "Payment gateway not configured"


class EligibilityError(BillPayError):
    status_code = 400
    default_message = "No payment channels available for this order"


class GatewayError(BillPayError):
    status_code = 500
    default_message = "Failed to create payment link"

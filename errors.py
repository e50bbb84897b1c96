"""Error taxonomy shared by the services and mapped to HTTP in main.py."""


class StoreError(Exception):
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(StoreError):
    status_code = 422
    default_message = "Invalid input"


class EmptyCartError(ValidationError):
    default_message = "Cart is empty"


class GatewayCommunicationError(StoreError):
    status_code = 502
    default_message = "Service unavailable, try again"


class PaymentFailedError(StoreError):
    status_code = 402
    default_message = "Payment was not processed, try again"


class AuthorizationError(StoreError):
    status_code = 403
    default_message = "Not allowed"


class NotFoundError(StoreError):
    status_code = 404
    default_message = "Not found"


class ConflictError(StoreError):
    status_code = 409
    default_message = "Conflicting state"


class CheckoutConflictError(ConflictError):
    default_message = "Checkout is not waiting for a phone number"

"""Custom exceptions for the payment service."""


class PaymentServiceError(Exception):
    """Base exception for all payment service errors."""

    status_code = 500
    retryable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(PaymentServiceError):
    """Raised when a request carries bad or missing input. No state is changed."""

    status_code = 400


class AuthenticationError(PaymentServiceError):
    """Raised when a request has no valid session."""

    status_code = 401

    def __init__(self, message: str = "You must be logged in to access this resource"):
        super().__init__(message)


class AuthorizationError(PaymentServiceError):
    """Raised when the actor does not own the order."""

    status_code = 403

    def __init__(self, order_id: str | None = None):
        self.order_id = order_id
        super().__init__("Access denied")


class NotFoundError(PaymentServiceError):
    """Raised when an order ID doesn't exist."""

    status_code = 404

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__("Order not found")


class InvalidMethodError(PaymentServiceError):
    """Raised when the stored payment method doesn't match the verification path."""

    status_code = 400

    def __init__(self, order_id: str, expected: str, found: str):
        self.order_id = order_id
        self.expected = expected
        self.found = found
        super().__init__("Invalid payment method for this order")


class InvalidStateError(PaymentServiceError):
    """Raised when an operation is not allowed in the order's current state."""

    status_code = 409

    def __init__(self, order_id: str, payment_status: str):
        self.order_id = order_id
        self.payment_status = payment_status
        super().__init__(f"Order is already {payment_status}")


class SignatureMismatchError(PaymentServiceError):
    """Raised when a webhook delivery fails signature verification."""

    status_code = 400

    def __init__(self, message: str = "Webhook signature verification failed"):
        super().__init__(message)


class GatewayUnavailableError(PaymentServiceError):
    """Raised when a call to the payment gateway fails or times out."""

    status_code = 503
    retryable = True

    def __init__(self, reason: str, order_id: str | None = None):
        self.reason = reason
        self.order_id = order_id
        super().__init__(f"Payment gateway unavailable: {reason}")


class PersistenceError(PaymentServiceError):
    """Raised when the order store cannot be read or written."""

    status_code = 503
    retryable = True

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Order store unavailable: {reason}")


class AuthServiceUnavailableError(PaymentServiceError):
    """Raised when the session lookup cannot reach the auth service."""

    status_code = 503
    retryable = True

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Auth service unavailable: {reason}")

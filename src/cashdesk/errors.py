"""Custom exceptions for cashdesk.

Every exception carries a stable ``code`` that API clients can match on;
the message is meant for humans.
"""

from decimal import Decimal


class CashdeskError(Exception):
    """Base exception for all cashdesk errors."""

    code = "CashdeskError"


class ValidationError(CashdeskError):
    """Raised when a request is malformed (empty cart, bad enum value, ...)."""

    code = "ValidationError"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        if field:
            message = f"{field}: {message}"
        super().__init__(message)


class ProductNotFoundError(CashdeskError):
    """Raised when a product ID doesn't exist."""

    code = "ProductNotFound"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product with ID {product_id} not found")


class CartProductNotFoundError(ProductNotFoundError):
    """Raised when a cart line references a product that doesn't exist."""


class ProductInactiveError(CashdeskError):
    """Raised when a cart line references a deactivated product."""

    code = "ProductInactive"

    def __init__(self, product_id: str, name: str):
        self.product_id = product_id
        self.name = name
        super().__init__(f'Product "{name}" is not available')


class InsufficientStockError(CashdeskError):
    """Raised when a stock decrement would drive a product below zero."""

    code = "InsufficientStock"

    def __init__(self, product_id: str, name: str, available: int, requested: int):
        self.product_id = product_id
        self.name = name
        self.available = available
        self.requested = requested
        super().__init__(
            f'Insufficient stock for "{name}". '
            f"Available: {available}, Requested: {requested}"
        )


class DuplicateProductError(CashdeskError):
    """Raised when a SKU or barcode is already used by another product."""

    code = "DuplicateProduct"

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f"{field.upper()} already exists: {value}")


class OrderNotFoundError(CashdeskError):
    """Raised when an order ID doesn't exist."""

    code = "OrderNotFound"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class AlreadyRefundedError(CashdeskError):
    """Raised when refunding an order that was already refunded."""

    code = "AlreadyRefunded"

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Order {order_number} has already been refunded")


class InvalidStateError(CashdeskError):
    """Raised when an order status transition is not allowed."""

    code = "InvalidState"

    def __init__(self, order_number: str, status: str, target: str):
        self.order_number = order_number
        self.status = status
        self.target = target
        super().__init__(
            f"Order {order_number} cannot move from '{status}' to '{target}'"
        )


class InvalidRefundAmountError(CashdeskError):
    """Raised when a refund amount is not positive or exceeds the order total."""

    code = "InvalidRefundAmount"

    def __init__(self, amount: Decimal, total: Decimal):
        self.amount = amount
        self.total = total
        if amount <= 0:
            msg = f"Refund amount must be positive, got {amount}"
        else:
            msg = f"Refund amount {amount} cannot exceed order total {total}"
        super().__init__(msg)


class UserExistsError(CashdeskError):
    """Raised when registering an email that is already taken."""

    code = "UserExists"

    def __init__(self, email: str):
        self.email = email
        super().__init__(f"User with email {email} already exists")


class UserNotFoundError(CashdeskError):
    """Raised when a user ID doesn't exist."""

    code = "UserNotFound"

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class AuthenticationError(CashdeskError):
    """Raised when credentials or a session token are missing or invalid."""

    code = "AuthenticationFailed"

    def __init__(self, reason: str = "Authentication failed"):
        super().__init__(reason)


class PermissionDeniedError(CashdeskError):
    """Raised when an authenticated user lacks the required role."""

    code = "PermissionDenied"

    def __init__(self, required: tuple[str, ...]):
        self.required = required
        super().__init__(f"Access denied. Required role: {' or '.join(required)}")


class StorageError(CashdeskError):
    """Raised when the persistence backend fails or is unreachable."""

    code = "StorageError"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Storage failure during {operation}: {reason}")

"""
Custom exceptions for the GreenTap storefront backend
"""


class StorefrontException(Exception):
    """Base exception for all storefront errors"""
    status_code = 500

    def __init__(self, message: str, code: str = "STOREFRONT_ERROR", status_code: int = None):
        self.message = message
        self.code = code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationException(StorefrontException):
    """Exception raised for malformed or missing input"""
    status_code = 400

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(
            message=message,
            code="VALIDATION_ERROR"
        )


class NotFoundException(StorefrontException):
    """Exception raised when an entity does not exist"""
    status_code = 404

    def __init__(self, entity: str, identifier=None):
        self.entity = entity
        self.identifier = identifier
        message = f"{entity} not found" if identifier is None else f"{entity} {identifier} not found"
        super().__init__(message=message, code="NOT_FOUND")


class UnauthorizedException(StorefrontException):
    """Exception raised when a request carries no valid credentials"""
    status_code = 401

    def __init__(self, message: str = "Access token required"):
        super().__init__(message=message, code="UNAUTHORIZED")


class ForbiddenException(StorefrontException):
    """Exception raised when the caller may not perform the action"""
    status_code = 403

    def __init__(self, message: str = "Admin access required"):
        super().__init__(message=message, code="FORBIDDEN")


class InsufficientStockException(StorefrontException):
    """Exception raised when an order asks for more units than are in stock"""
    status_code = 400

    def __init__(self, product_name: str, requested: int, available: int):
        self.product_name = product_name
        self.requested = requested
        self.available = available
        super().__init__(
            message=f"Insufficient stock for {product_name}",
            code="INSUFFICIENT_STOCK"
        )


class InvalidTransitionException(StorefrontException):
    """Exception raised when an order status change is not a legal edge"""
    status_code = 409

    def __init__(self, current: str, requested: str, message: str = None):
        self.current = current
        self.requested = requested
        super().__init__(
            message=message or f"Order cannot move from '{current}' to '{requested}'",
            code="INVALID_TRANSITION"
        )


class PaymentProviderException(StorefrontException):
    """Exception raised when the payment gateway call fails"""
    status_code = 502

    def __init__(self, message: str, operation: str = "unknown"):
        self.operation = operation
        super().__init__(
            message=f"Payment provider error during {operation}: {message}",
            code="PAYMENT_PROVIDER_ERROR"
        )


class PaymentVerificationException(StorefrontException):
    """Exception raised when a payment signature does not match"""
    status_code = 400

    def __init__(self, message: str = "Payment verification failed"):
        super().__init__(message=message, code="PAYMENT_VERIFICATION_FAILED")


class ShippingProviderException(StorefrontException):
    """Exception raised inside the shipping adapter; converted to a failed result at its boundary"""
    status_code = 502

    def __init__(self, message: str, operation: str = "unknown", http_status: int = None):
        self.operation = operation
        self.http_status = http_status
        super().__init__(
            message=f"Shipping provider error during {operation}: {message}",
            code="SHIPPING_PROVIDER_ERROR"
        )


class InternalException(StorefrontException):
    """Exception raised for unexpected internal failures"""
    status_code = 500

    def __init__(self, message: str = "An unexpected error occurred"):
        super().__init__(message=message, code="INTERNAL_ERROR")

from enum import Enum

from fastapi import status


class ErrorKind(str, Enum):
    VALIDATION = "VALIDATION_ERROR"
    NOT_FOUND = "RESOURCE_NOT_FOUND"
    AUTHORIZATION = "ACCESS_DENIED"
    CONFLICT = "CONFLICT"
    SERVICE_UNAVAILABLE = "PAYMENT_SERVICE_UNAVAILABLE"
    PAYMENT_PROCESSING = "PAYMENT_PROCESSING_ERROR"
    TRANSIENT_PERSISTENCE = "TRANSIENT_PERSISTENCE_ERROR"
    INTEGRITY_VIOLATION = "INTEGRITY_VIOLATION"


class ServiceError(Exception):
    """Base class for every error the checkout services raise on purpose."""

    kind: ErrorKind = ErrorKind.VALIDATION
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequestError(ServiceError):
    kind = ErrorKind.VALIDATION
    status_code = status.HTTP_400_BAD_REQUEST


class InsufficientStockError(InvalidRequestError):
    def __init__(self, product_id: int, title: str | None = None):
        label = title or f"#{product_id}"
        super().__init__(f"Insufficient stock for product: {label}")
        self.product_id = product_id


class AmountInvalidError(InvalidRequestError):
    pass


class AlreadyProcessedError(InvalidRequestError):
    def __init__(self, message: str = "Order already processed"):
        super().__init__(message)


class ResourceNotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND
    status_code = status.HTTP_404_NOT_FOUND


class ProductNotFoundError(ResourceNotFoundError):
    def __init__(self, product_id: int):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class OrderNotFoundError(ResourceNotFoundError):
    def __init__(self, message: str = "Order not found"):
        super().__init__(message)


class AccessDeniedError(ServiceError):
    kind = ErrorKind.AUTHORIZATION
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class ConflictError(ServiceError):
    kind = ErrorKind.CONFLICT
    status_code = status.HTTP_409_CONFLICT


class PaymentInProgressError(ConflictError):
    pass


class PaymentServiceUnavailableError(ServiceError):
    kind = ErrorKind.SERVICE_UNAVAILABLE
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "Payment service not configured"):
        super().__init__(message)


class PaymentProcessingError(ServiceError):
    kind = ErrorKind.PAYMENT_PROCESSING
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class TransientPersistenceError(ServiceError):
    kind = ErrorKind.TRANSIENT_PERSISTENCE
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class IntegrityViolationError(ServiceError):
    kind = ErrorKind.INTEGRITY_VIOLATION
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

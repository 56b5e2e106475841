"""Business errors raised by the marketplace core.

Every error carries a stable message, an HTTP status code and, where it
applies, a list of field level errors. The FastAPI app turns them into the
response envelope in ``main.py``.
"""
from typing import Any, Dict, List, Optional


class MarketplaceError(Exception):
    """Base exception for all marketplace errors."""

    status_code = 500
    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, Any]]] = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class ValidationFailed(MarketplaceError):
    status_code = 400
    default_message = "Validation failed"


class NotFound(MarketplaceError):
    status_code = 404
    default_message = "Not found"


class ProductNotFound(NotFound):
    """Raised on the order creation path, where a missing product is a bad request."""

    status_code = 400

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product with ID {product_id} not found")


class Unavailable(MarketplaceError):
    status_code = 400
    default_message = "Product is not available"


class ProductUnavailable(Unavailable):
    def __init__(self, product_name: str):
        self.product_name = product_name
        super().__init__(f'Product "{product_name}" is not available')


class InsufficientStock(MarketplaceError):
    status_code = 400
    default_message = "Insufficient stock"

    def __init__(self, message: Optional[str] = None, available: Optional[int] = None):
        self.available = available
        super().__init__(message)


class LimitExceeded(MarketplaceError):
    status_code = 400
    default_message = "Quantity limit exceeded"


class Unauthorized(MarketplaceError):
    status_code = 401
    default_message = "Could not validate credentials"


class Forbidden(MarketplaceError):
    status_code = 403
    default_message = "You do not have permission to perform this action"


class InvalidState(MarketplaceError):
    status_code = 400
    default_message = "Operation not allowed in the current state"


class ServiceUnavailable(MarketplaceError):
    status_code = 503
    default_message = "Upstream service is unavailable"

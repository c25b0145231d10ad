# supply_hub/exceptions.py
"""
Typed errors raised by the Supply Hub services.

Every error carries a machine-readable ``code`` and the HTTP status the API
layer renders it with, so routers never translate messages by hand:

    SupplyHubError
    +-- ValidationError            400 VALIDATION_ERROR
    |   +-- InvalidQuantityError   400 INVALID_QUANTITY
    |   +-- ProductUnavailableError 400 PRODUCT_UNAVAILABLE
    +-- NotFoundError              404 NOT_FOUND
    +-- ConflictError              409 CONFLICT
    |   +-- OrderLockedError       409 ORDER_LOCKED
    |   +-- InsufficientStockError 409 STOCK_INSUFFICIENT
    |   +-- DuplicateError         409 DUPLICATE_NAME
    |   +-- ReferencedError        409 HAS_REFERENCES
    +-- AuthenticationError        401 AUTH_MISSING / AUTH_INVALID
    +-- PermissionDeniedError      403 AUTH_FORBIDDEN
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional


class SupplyHubError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    code: str = "ERR_INTERNAL"

    def __init__(self, message: str, code: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


# ============================================================================
# 400
# ============================================================================

class ValidationError(SupplyHubError):
    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    code = "INVALID_QUANTITY"


class ProductUnavailableError(ValidationError):
    code = "PRODUCT_UNAVAILABLE"


# ============================================================================
# 404
# ============================================================================

class NotFoundError(SupplyHubError):
    status_code = 404
    code = "NOT_FOUND"

    @classmethod
    def for_entity(cls, entity: str, entity_id: Any) -> "NotFoundError":
        return cls(f"{entity} not found: {entity_id}", details={"entity": entity, "id": entity_id})


# ============================================================================
# 409
# ============================================================================

class ConflictError(SupplyHubError):
    status_code = 409
    code = "CONFLICT"


class OrderLockedError(ConflictError):
    """Direct edit of a shipped/completed/cancelled order."""

    code = "ORDER_LOCKED"

    def __init__(self, order_id: int, status: str):
        super().__init__(
            f"Order #{order_id} is {status} and can no longer be edited; create a follow-up order instead",
            details={"orderId": order_id, "status": status},
        )
        self.order_id = order_id
        self.status = status


class InsufficientStockError(ConflictError):
    """Carries every short product, not just the first one found."""

    code = "STOCK_INSUFFICIENT"

    def __init__(self, shortages: List[Dict[str, Any]]):
        parts = [
            f"{s.get('name') or s['productId']} (stock {s['stock']}, required {s['required']})"
            for s in shortages
        ]
        super().__init__("Insufficient stock: " + ", ".join(parts), details={"shortages": shortages})
        self.shortages = shortages


class DuplicateError(ConflictError):
    code = "DUPLICATE_NAME"


class ReferencedError(ConflictError):
    code = "HAS_REFERENCES"


# ============================================================================
# 401 / 403
# ============================================================================

class AuthenticationError(SupplyHubError):
    status_code = 401
    code = "AUTH_INVALID"


class PermissionDeniedError(SupplyHubError):
    status_code = 403
    code = "AUTH_FORBIDDEN"

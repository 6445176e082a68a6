# =============================================================================
# app/exceptions.py - Custom Exception Handlers
# =============================================================================
# Centralized exception handling for the API.
# Errors carry a machine-readable code and a suggestion on how to recover,
# so callers can tell "retry later" apart from "fix the request".
# =============================================================================

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class MarketplaceException(Exception):
    """
    Base exception for the delivery API.

    All custom exceptions inherit from this class.
    Provides structured error responses with actionable suggestions.
    """

    def __init__(
        self,
        message: str,
        code: str = "MARKETPLACE_ERROR",
        status_code: int = 500,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.suggestion = suggestion
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response dict."""
        result = {
            "detail": self.message,
            "code": self.code,
        }
        if self.suggestion:
            result["suggestion"] = self.suggestion
        if self.details:
            result["details"] = self.details
        return result


# =============================================================================
# Assignment Exceptions
# =============================================================================

class NoPartnerAvailableError(MarketplaceException):
    """Raised when no delivery partner can take another order right now."""

    def __init__(self, order_id: str):
        super().__init__(
            message="No delivery partners available at the moment",
            code="NO_PARTNER_AVAILABLE",
            status_code=503,
            suggestion="Retry the assignment shortly or queue the order for later",
            details={"order_id": order_id, "delivery": None}
        )


class DeliveryAlreadyAssignedError(MarketplaceException):
    """Raised when an order already has a delivery."""

    def __init__(self, order_id: str):
        super().__init__(
            message=f"Order already has a delivery: {order_id}",
            code="DELIVERY_ALREADY_ASSIGNED",
            status_code=409,
            suggestion="Look up the existing delivery instead of creating a new one",
            details={"order_id": order_id}
        )


class PartnerNotFoundError(MarketplaceException):
    """Raised when a delivery partner ID doesn't exist."""

    def __init__(self, partner_id: str):
        super().__init__(
            message=f"Delivery partner not found: {partner_id}",
            code="PARTNER_NOT_FOUND",
            status_code=404,
            suggestion="Check that the partner_id is correct",
            details={"partner_id": partner_id}
        )


# =============================================================================
# Delivery Exceptions
# =============================================================================

class DeliveryNotFoundError(MarketplaceException):
    """Raised when a delivery ID doesn't exist."""

    def __init__(self, delivery_id: str):
        super().__init__(
            message=f"Delivery not found: {delivery_id}",
            code="DELIVERY_NOT_FOUND",
            status_code=404,
            suggestion="Check that the delivery_id is correct",
            details={"delivery_id": delivery_id}
        )


class InvalidStatusValueError(MarketplaceException):
    """Raised when a status update carries an unknown status."""

    def __init__(self, status: Any, allowed: list[str]):
        super().__init__(
            message=f"Invalid delivery status: {status}",
            code="INVALID_STATUS_VALUE",
            status_code=400,
            suggestion=f"Use one of: {', '.join(allowed)}",
            details={"status": str(status), "allowed": allowed}
        )


class InvalidStatusTransitionError(MarketplaceException):
    """Raised when a status change would move a delivery backwards."""

    def __init__(self, delivery_id: str, current: str, requested: str):
        super().__init__(
            message=f"Cannot move delivery {delivery_id} from {current} to {requested}",
            code="INVALID_STATUS_TRANSITION",
            status_code=409,
            suggestion="Fetch the delivery to see its current status before updating",
            details={
                "delivery_id": delivery_id,
                "current_status": current,
                "requested_status": requested,
            }
        )


# =============================================================================
# Storage Exceptions
# =============================================================================

class StorageFailureError(MarketplaceException):
    """Raised when the persistence layer is unavailable."""

    def __init__(self, operation: str, error: str):
        super().__init__(
            message=f"Storage failure during {operation}: {error}",
            code="STORAGE_FAILURE",
            status_code=503,
            suggestion="Try again later or contact support if the issue persists",
            details={"operation": operation, "error": error}
        )


# =============================================================================
# Exception Handlers
# =============================================================================

async def marketplace_exception_handler(
    request: Request,
    exc: MarketplaceException
) -> JSONResponse:
    """
    Convert MarketplaceException to JSON response.

    Returns structured error with:
    - detail: Human-readable message
    - code: Machine-readable error code
    - suggestion: How to fix (if available)
    - details: Additional context
    """
    headers = {"Retry-After": "30"} if exc.status_code == 503 else None
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers,
    )


async def validation_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """
    Handle Pydantic validation errors.

    Converts validation errors to user-friendly messages.
    """
    return JSONResponse(
        status_code=422,
        content={
            "detail": "Validation error",
            "code": "VALIDATION_ERROR",
            "errors": str(exc)
        }
    )

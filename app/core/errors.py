"""
Domain error taxonomy.

Every rejection the workflow produces carries a machine-readable code and a
human-readable message. Routes turn these into HTTPException payloads via
to_http_exception(); services never build HTTP responses themselves.
"""
from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class MarketplaceError(Exception):
    """Base class for expected workflow rejections."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "BAD_REQUEST"

    def __init__(self, message: str, code: Optional[str] = None, **extra: Any):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.code, "detail": self.message}
        payload.update(self.extra)
        return payload

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_dict())


class NotFoundError(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"


class ForbiddenError(MarketplaceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"


class BillingRequiredError(MarketplaceError):
    """NO_ACTIVE_SUBSCRIPTION / QUOTA_EXHAUSTED; the UI redirects to billing."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED
    code = "NO_ACTIVE_SUBSCRIPTION"


class ConflictError(MarketplaceError):
    status_code = status.HTTP_409_CONFLICT
    code = "CONFLICT"


class GigFullError(ConflictError):
    code = "GIG_FULL"


class InvalidTransitionError(ConflictError):
    code = "INVALID_TRANSITION"


class PaymentVerificationError(MarketplaceError):
    """INVALID_SIGNATURE / ORDER_NOT_FOUND / PAYMENT_FAILED."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "PAYMENT_FAILED"


class GatewayUnavailableError(MarketplaceError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "PAYMENT_GATEWAY_UNAVAILABLE"

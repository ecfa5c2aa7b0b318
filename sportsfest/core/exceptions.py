"""
SportsFest Exception Hierarchy

Structured exception classes for the registration checkout subsystems.
All exceptions include code, message, and details for audit trail and
debugging.

Reservation and confirmation primitives never raise these for ordinary
admission failures; they return result objects instead. The exceptions
below cover lookups and request-level failures surfaced to HTTP callers.

Exception Hierarchy:
    SportsFestError
    ├── NotFoundError
    ├── CartError
    ├── CouponError
    ├── PaymentError
    │   ├── PaymentVerificationError
    │   └── PaymentMismatchError
    └── WebhookError
        └── WebhookSignatureError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class SportsFestError(Exception):
    """
    Base exception for all SportsFest custom errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
        status_code: HTTP status used when surfaced by a router
    """

    default_code: str = "SPORTSFEST_ERROR"
    default_severity: str = "P2"
    status_code: int = 400

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class NotFoundError(SportsFestError):
    """Organization, product, order or cart session does not exist."""
    default_code = "NOT_FOUND"
    default_severity = "P3"
    status_code = 404

    def __init__(self, message: str, entity: Optional[str] = None, entity_id: Any = None, **kwargs):
        details = kwargs.pop("details", {})
        details.update({"entity": entity, "entity_id": entity_id})
        super().__init__(message, details=details, **kwargs)


class CartError(SportsFestError):
    """Cart cannot be turned into an order (empty, expired, mixed organizations)."""
    default_code = "CART_ERROR"
    default_severity = "P3"


class CouponError(SportsFestError):
    """Coupon code rejected at checkout."""
    default_code = "COUPON_INVALID"
    default_severity = "P3"


# =============================================================================
# PAYMENT ERRORS
# =============================================================================

class PaymentError(SportsFestError):
    """Base exception for payment processing errors."""
    default_code = "PAYMENT_ERROR"
    default_severity = "P0"
    status_code = 402


class PaymentVerificationError(PaymentError):
    """Stripe reports the payment intent as not succeeded."""
    default_code = "PAYMENT_NOT_SUCCEEDED"

    def __init__(self, message: str, payment_intent_id: Optional[str] = None,
                 intent_status: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        details.update({
            "payment_intent_id": payment_intent_id,
            "intent_status": intent_status,
        })
        super().__init__(message, details=details, **kwargs)


class PaymentMismatchError(PaymentError):
    """Payment intent does not belong to the order it is confirming."""
    default_code = "PAYMENT_ORDER_MISMATCH"
    status_code = 400

    def __init__(self, message: str, payment_intent_id: Optional[str] = None,
                 order_id: Optional[int] = None, **kwargs):
        details = kwargs.pop("details", {})
        details.update({
            "payment_intent_id": payment_intent_id,
            "order_id": order_id,
        })
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# WEBHOOK ERRORS
# =============================================================================

class WebhookError(SportsFestError):
    """Webhook request could not be accepted."""
    default_code = "WEBHOOK_ERROR"
    default_severity = "P1"


class WebhookSignatureError(WebhookError):
    """Stripe signature header missing or invalid."""
    default_code = "WEBHOOK_SIGNATURE_INVALID"

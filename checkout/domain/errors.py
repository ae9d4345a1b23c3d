"""Checkout error taxonomy.

Every error carries a human readable ``message`` plus an optional list of
individual ``errors`` so callers can show the customer every problem at once.
"Already processed" is deliberately absent: a repeated verification or webhook
is a successful, idempotent result, not an error.
"""

from typing import List, Optional


class CheckoutError(Exception):
    """Base class for all checkout failures."""

    code = "CHECKOUT_ERROR"

    def __init__(self, message: str, errors: Optional[List[str]] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.errors = list(errors or [])
        self.reason = reason

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        if self.reason:
            body["reason"] = self.reason
        return body


class ValidationError(CheckoutError):
    """Client-correctable input problem. Never retried automatically."""

    code = "VALIDATION_ERROR"


class UnsupportedGateway(ValidationError):
    code = "UNSUPPORTED_GATEWAY"


class StockError(CheckoutError):
    """Insufficient inventory for one or more cart lines."""

    code = "INSUFFICIENT_STOCK"


class GatewayError(CheckoutError):
    """Provider call failed, timed out, or the provider is not configured."""

    code = "GATEWAY_ERROR"


class OrderNotFound(CheckoutError):
    code = "ORDER_NOT_FOUND"


class InvalidSignature(CheckoutError):
    """Security-class rejection. The message never says which check failed."""

    code = "INVALID_SIGNATURE"


class InvalidTransition(CheckoutError):
    """Requested status change is not legal from the order's current state."""

    code = "INVALID_TRANSITION"

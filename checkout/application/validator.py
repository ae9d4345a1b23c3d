"""Checkout input validation.

Validators never raise for bad input; they return a ``ValidationResult``
listing every problem found so the caller can report them together.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from shared.core import get_logger

logger = get_logger(__name__)

MIN_QUANTITY = 1
MAX_QUANTITY = 1000

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^(\+91)?[6-9]\d{9}$")
PINCODE_RE = re.compile(r"^\d{6}$")


@dataclass
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    reason: Optional[str] = None
    stock_checks: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def ok(cls, stock_checks: Optional[List[Dict[str, Any]]] = None) -> "ValidationResult":
        return cls(is_valid=True, stock_checks=list(stock_checks or []))

    @classmethod
    def invalid(cls, reason: str, errors: List[str], **kwargs) -> "ValidationResult":
        return cls(is_valid=False, errors=errors, reason=reason, **kwargs)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _is_product_id(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value > 0
    return isinstance(value, str) and value.strip().isdigit() and int(value) > 0


class OrderValidator:
    def __init__(self, min_quantity: int = MIN_QUANTITY, max_quantity: int = MAX_QUANTITY):
        self.min_quantity = min_quantity
        self.max_quantity = max_quantity

    def validate_cart_items(self, items: Any) -> ValidationResult:
        if not isinstance(items, list):
            return ValidationResult.invalid("INVALID_CART_FORMAT", ["Cart items must be a list"])
        if not items:
            return ValidationResult.invalid("EMPTY_CART", ["Cart is empty"])

        errors = []
        for position, item in enumerate(items, start=1):
            if not isinstance(item, Mapping):
                errors.append(f"Item {position}: Must be an object with product_id and quantity")
                continue
            product_id = item.get("product_id")
            if _is_blank(product_id):
                errors.append(f"Item {position}: Product ID is required")
            elif not _is_product_id(product_id):
                errors.append(f"Item {position}: Product ID must be a positive integer")

            quantity = item.get("quantity")
            # bool is an int subclass; True is not a quantity
            if not isinstance(quantity, int) or isinstance(quantity, bool):
                errors.append(f"Item {position}: Quantity must be an integer")
            elif quantity < self.min_quantity:
                errors.append(f"Item {position}: Quantity must be at least {self.min_quantity}")
            elif quantity > self.max_quantity:
                errors.append(f"Item {position}: Quantity cannot exceed {self.max_quantity}")

        if errors:
            logger.warning(
                "Cart items validation failed",
                extra={'extra_fields': {'errors': errors, 'item_count': len(items)}}
            )
            return ValidationResult.invalid("INVALID_CART_ITEMS", errors)
        return ValidationResult.ok()

    def validate_shipping_address(self, address: Any) -> ValidationResult:
        if not isinstance(address, Mapping):
            return ValidationResult.invalid(
                "INVALID_ADDRESS_FORMAT", ["Address is required and must be an object"]
            )

        errors = []
        missing = [name for name in ("name", "address", "city") if _is_blank(address.get(name))]
        if missing:
            errors.append(f"Missing required address fields: {', '.join(missing)}")
        if _is_blank(address.get("phone")) and _is_blank(address.get("email")):
            errors.append("Either phone or email is required")

        email = address.get("email")
        if not _is_blank(email) and not EMAIL_RE.match(str(email).strip()):
            errors.append("Invalid email format")

        phone = address.get("phone")
        if not _is_blank(phone) and not PHONE_RE.match(re.sub(r"[\s\-()]", "", str(phone))):
            errors.append("Invalid phone number format. Must be a 10 digit mobile number")

        pincode = address.get("pincode")
        if not _is_blank(pincode) and not PINCODE_RE.match(str(pincode).strip()):
            errors.append("Invalid pincode format. Must be 6 digits")

        name = address.get("name")
        if isinstance(name, str) and name.strip():
            if len(name.strip()) < 2:
                errors.append("Name must be at least 2 characters long")
            elif len(name) > 100:
                errors.append("Name cannot exceed 100 characters")

        if errors:
            logger.warning(
                "Shipping address validation failed",
                extra={'extra_fields': {'errors': errors, 'address_fields': sorted(address.keys())}}
            )
            return ValidationResult.invalid("INVALID_ADDRESS", errors)
        return ValidationResult.ok()

    def validate_stock_availability(
        self,
        items: Iterable[Mapping[str, Any]],
        stock_lookup: Callable[[Any], Optional[int]],
    ) -> ValidationResult:
        errors = []
        stock_checks = []
        for item in items:
            product_id = item.get("product_id")
            requested = item.get("quantity")
            try:
                available = stock_lookup(product_id)
            except Exception as exc:
                logger.error(
                    "Error checking stock for product",
                    extra={'extra_fields': {'product_id': product_id, 'error': str(exc)}}
                )
                errors.append(f"Product {product_id}: Error checking stock - {exc}")
                continue

            if available is None:
                errors.append(f"Product {product_id}: Product not found")
                continue
            sufficient = available >= requested
            if not sufficient:
                errors.append(
                    f"Product {product_id}: Insufficient stock. Available: {available}, Requested: {requested}"
                )
            stock_checks.append({
                "product_id": product_id,
                "requested": requested,
                "available": available,
                "sufficient": sufficient,
            })

        if errors:
            logger.warning(
                "Stock availability validation failed",
                extra={'extra_fields': {'errors': errors, 'stock_checks': stock_checks}}
            )
            return ValidationResult.invalid("INSUFFICIENT_STOCK", errors, stock_checks=stock_checks)
        return ValidationResult.ok(stock_checks)

    def validate_payment_payload(self, payload: Any, required_fields: Iterable[str]) -> ValidationResult:
        if not isinstance(payload, Mapping):
            return ValidationResult.invalid("INVALID_PAYMENT_DATA", ["Payment data is required"])
        missing = [name for name in required_fields if _is_blank(payload.get(name))]
        if missing:
            return ValidationResult.invalid(
                "INVALID_PAYMENT_DATA", [f"Missing required payment fields: {', '.join(missing)}"]
            )
        return ValidationResult.ok()

"""Checkout orchestration.

Flow for one checkout attempt::

    validate cart/address/stock -> price lines -> commit order + stock
    -> call provider (outside the transaction) -> attach correlation ids

If the provider call fails the order is moved to ``failed`` and, under the
``restore`` stock policy, its reservation is released in the same
transaction. Later the outcome arrives through ``verify_payment``,
``handle_webhook`` or ``check_payment_status``; all three funnel into one
guarded compare-and-set so duplicates and late deliveries are no-ops.
"""

import secrets
import time
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import sessionmaker

from checkout.application.schemas import CheckoutResult, RefundOutcome, VerificationOutcome, WebhookOutcome
from checkout.application.validator import OrderValidator, ValidationResult
from checkout.application.verifier import PaymentVerifier
from checkout.application.webhooks import get_webhook_adapter
from checkout.core_settings import Settings
from checkout.domain.errors import (
    GatewayError,
    InvalidSignature,
    InvalidTransition,
    OrderNotFound,
    StockError,
    ValidationError,
)
from checkout.domain.models import Order, OrderStatus
from checkout.gateways import PaymentGatewayFactory
from checkout.gateways.port import PaymentContext, PaymentGateway, RefundContext, VerificationResult
from checkout.infrastructure.collaborators import Cart, Catalog, SqlCart, SqlCatalog
from checkout.infrastructure.orders import OrderLine, OrderStore
from shared.core import get_logger, log_security_event

logger = get_logger(__name__)

STOCK_POLICIES = ("restore", "reserve")


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def generate_merchant_transaction_id(user_id: int) -> str:
    return f"TXN_{_epoch_ms()}_{user_id}_{secrets.token_hex(4)}"


def generate_receipt(user_id: int) -> str:
    return f"receipt_{_epoch_ms()}_{user_id}_{secrets.token_hex(4)}"


def generate_refund_id(order_id: int) -> str:
    return f"RFND_{_epoch_ms()}_{order_id}_{secrets.token_hex(4)}"


def _raise_if_invalid(result: ValidationResult, message: str, error_cls=ValidationError) -> None:
    if not result.is_valid:
        raise error_cls(message, errors=result.errors, reason=result.reason)


class CheckoutOrchestrator:
    def __init__(
        self,
        store: OrderStore,
        catalog: Catalog,
        cart: Cart,
        gateway_factory: PaymentGatewayFactory,
        validator: Optional[OrderValidator] = None,
        verifier: Optional[PaymentVerifier] = None,
        currency: str = "INR",
        stock_policy: str = "restore",
    ):
        if stock_policy not in STOCK_POLICIES:
            raise ValueError(f"stock_policy must be one of {STOCK_POLICIES}")
        self.store = store
        self.catalog = catalog
        self.cart = cart
        self.gateway_factory = gateway_factory
        self.validator = validator or OrderValidator()
        self.verifier = verifier or PaymentVerifier()
        self.currency = currency
        self.stock_policy = stock_policy

    @classmethod
    def from_settings(
        cls,
        session_factory: sessionmaker,
        settings: Settings,
        gateway_factory: PaymentGatewayFactory,
    ) -> "CheckoutOrchestrator":
        return cls(
            store=OrderStore(session_factory),
            catalog=SqlCatalog(session_factory),
            cart=SqlCart(session_factory),
            gateway_factory=gateway_factory,
            currency=settings.CURRENCY,
            stock_policy=settings.STOCK_POLICY_ON_GATEWAY_FAILURE,
        )

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------
    def initiate_checkout(
        self,
        user_id: int,
        items: Any,
        address: Any,
        notes: Optional[str] = None,
    ) -> CheckoutResult:
        _raise_if_invalid(self.validator.validate_cart_items(items), "Invalid cart items")
        _raise_if_invalid(self.validator.validate_shipping_address(address), "Invalid shipping address")
        _raise_if_invalid(
            self.validator.validate_stock_availability(
                items, lambda product_id: self.catalog.get_stock(int(product_id))
            ),
            "Insufficient stock",
            StockError,
        )

        gateway = self.gateway_factory.get_default_gateway()
        lines = self._price_lines(items)
        merchant_transaction_id = generate_merchant_transaction_id(user_id)
        receipt = generate_receipt(user_id)

        order = self.store.create_with_stock(
            user_id=user_id,
            lines=lines,
            currency=self.currency,
            gateway=gateway.name,
            merchant_transaction_id=merchant_transaction_id,
            receipt=receipt,
            shipping_address=dict(address),
            notes=notes,
        )

        context = PaymentContext(
            order_id=order.id,
            user_id=user_id,
            amount=order.total_amount,
            currency=order.currency,
            merchant_transaction_id=merchant_transaction_id,
            receipt=receipt,
        )
        try:
            request = gateway.create_payment_request(context)
        except GatewayError as exc:
            self._compensate(order, gateway, exc)
            raise
        except Exception as exc:
            self._compensate(order, gateway, exc)
            raise GatewayError(f"Payment request to {gateway.name} failed") from exc

        self.store.attach_correlation(
            order.id,
            gateway_order_id=request.gateway_order_id,
            gateway_transaction_id=request.transaction_id,
        )
        logger.info(
            "Checkout initiated",
            extra={'extra_fields': {
                'order_id': order.id,
                'user_id': user_id,
                'gateway': gateway.name,
                'amount': order.total_amount,
                'merchant_transaction_id': merchant_transaction_id,
            }}
        )
        return CheckoutResult(
            order_id=order.id,
            payment_url=request.payment_url,
            merchant_transaction_id=merchant_transaction_id,
            gateway_order_id=request.gateway_order_id,
            gateway=gateway.name,
            amount=order.total_amount,
            currency=order.currency,
            receipt=receipt,
        )

    def _price_lines(self, items: List[Mapping[str, Any]]) -> List[OrderLine]:
        lines = []
        for item in items:
            product = self.catalog.get_product(int(item["product_id"]))
            if product is None:
                raise ValidationError(
                    "Invalid cart items",
                    errors=[f"Product {item['product_id']}: Product not found"],
                    reason="INVALID_CART_ITEMS",
                )
            lines.append(OrderLine(
                product_id=product.id,
                quantity=item["quantity"],
                unit_price=product.unit_price,
                product_name=product.name,
                product_description=product.description,
            ))
        return lines

    def _compensate(self, order: Order, gateway: PaymentGateway, exc: Exception) -> None:
        restore = self.stock_policy == "restore"
        try:
            self.store.fail(order.id, restore_stock=restore)
        except Exception:
            # The provider error is what the caller sees; the order stays pending
            logger.error(
                "Could not mark order failed after payment request error",
                exc_info=True,
                extra={'extra_fields': {
                    'order_id': order.id,
                    'gateway': gateway.name,
                    'error': str(exc),
                }}
            )
            return
        logger.error(
            "Payment request failed; order marked failed",
            extra={'extra_fields': {
                'order_id': order.id,
                'gateway': gateway.name,
                'error': str(exc),
                'stock_restored': restore,
            }}
        )

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------
    def verify_payment(
        self,
        order_id: int,
        payload: Optional[Dict[str, Any]],
        *,
        verification: Optional[VerificationResult] = None,
    ) -> VerificationOutcome:
        """Settle an order from a client redirect payload.

        ``verification`` is supplied by the webhook path, whose result is
        already trusted because its signature was checked over the raw body.
        """
        order = self.get_order(order_id)
        if order.status != OrderStatus.PENDING.value:
            return self._already_processed(order)

        gateway = self.gateway_factory.get_gateway(order.gateway)
        if verification is None:
            _raise_if_invalid(
                self.validator.validate_payment_payload(payload, gateway.required_verification_fields),
                "Invalid payment data",
            )
            reference = gateway.payload_reference(payload)
            if reference and reference not in (order.merchant_transaction_id, order.gateway_order_id):
                raise ValidationError("Payment data does not belong to this order", reason="INVALID_PAYMENT_DATA")
            try:
                verification = self.verifier.verify(gateway, payload)
            except InvalidSignature:
                log_security_event(
                    logger,
                    "Payment verification signature mismatch",
                    order_id=order.id,
                    gateway=gateway.name,
                )
                raise
        return self._apply(order, verification)

    def check_payment_status(self, correlation_id: str) -> VerificationOutcome:
        order = self.store.find_by_reference(correlation_id)
        if order is None:
            raise OrderNotFound(f"No order for reference {correlation_id}")
        if order.status != OrderStatus.PENDING.value:
            return self._already_processed(order)

        gateway = self.gateway_factory.get_gateway(order.gateway)
        result = gateway.check_status(order.gateway_order_id or order.merchant_transaction_id)
        return self._apply(order, result)

    def handle_webhook(self, raw_body: bytes, gateway_name: str, signature: Optional[str]) -> WebhookOutcome:
        adapter = get_webhook_adapter(gateway_name)
        gateway = self.gateway_factory.get_gateway(gateway_name)

        if not signature or not gateway.verify_webhook_signature(raw_body, signature):
            log_security_event(
                logger,
                "Webhook signature rejected",
                gateway=gateway.name,
                signature_present=bool(signature),
                body_bytes=len(raw_body),
            )
            raise InvalidSignature("Invalid webhook signature")

        event = adapter.parse(raw_body)
        order = self.store.find_by_correlation(
            gateway_order_id=event.gateway_order_id,
            gateway_transaction_id=event.gateway_transaction_id,
            merchant_transaction_id=event.merchant_transaction_id,
        )
        if order is None or order.gateway != gateway.name:
            logger.warning(
                "Webhook for unknown order",
                extra={'extra_fields': {
                    'gateway': gateway.name,
                    'event_type': event.event_type,
                    'merchant_transaction_id': event.merchant_transaction_id,
                    'gateway_order_id': event.gateway_order_id,
                }}
            )
            raise OrderNotFound("Order not found for webhook")

        if not event.has_outcome:
            logger.info(
                "Webhook acknowledged without state change",
                extra={'extra_fields': {'order_id': order.id, 'event_type': event.event_type}}
            )
            return WebhookOutcome(
                success=order.status == OrderStatus.PAID.value,
                order_id=order.id,
                status=order.status,
            )

        outcome = self.verify_payment(order.id, None, verification=event.result)
        return WebhookOutcome(
            success=outcome.success,
            order_id=outcome.order_id,
            status=outcome.status,
            already_processed=outcome.already_processed,
        )

    def _apply(self, order: Order, result: VerificationResult) -> VerificationOutcome:
        target = self.verifier.determine_status(result)
        if target is OrderStatus.PENDING:
            return VerificationOutcome(
                success=False,
                order_id=order.id,
                status=OrderStatus.PENDING.value,
                gateway=order.gateway,
                message="Payment is still pending",
            )

        fields = {
            'gateway_transaction_id': result.transaction_id,
            'gateway_signature': result.signature,
            'payment_instrument': result.instrument,
        }
        if target is OrderStatus.PAID:
            won = self.store.transition(order.id, OrderStatus.PAID, **fields)
        else:
            # A declined payment always gives its reservation back
            won = self.store.fail(order.id, restore_stock=True, **fields)

        if not won:
            current = self.get_order(order.id)
            logger.info(
                "Order already settled by a concurrent update",
                extra={'extra_fields': {'order_id': order.id, 'status': current.status}}
            )
            return self._already_processed(current)

        logger.info(
            "Order settled",
            extra={'extra_fields': {
                'order_id': order.id,
                'status': target.value,
                'raw_status': result.raw_status,
            }}
        )
        if target is OrderStatus.PAID:
            self._clear_cart(order.user_id)
        return VerificationOutcome(
            success=target is OrderStatus.PAID,
            order_id=order.id,
            status=target.value,
            gateway=order.gateway,
        )

    def _clear_cart(self, user_id: int) -> None:
        try:
            self.cart.clear_cart(user_id)
        except Exception:
            # best effort: payment stays committed
            logger.error(
                "Failed to clear cart after payment",
                exc_info=True,
                extra={'extra_fields': {'user_id': user_id}}
            )

    @staticmethod
    def _already_processed(order: Order) -> VerificationOutcome:
        return VerificationOutcome(
            success=order.status == OrderStatus.PAID.value,
            order_id=order.id,
            status=order.status,
            gateway=order.gateway,
            already_processed=True,
            message="Order already processed",
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def get_order(self, order_id: int) -> Order:
        order = self.store.get(order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    def cancel_order(self, order_id: int, user_id: Optional[int] = None) -> Order:
        order = self.get_order(order_id)
        if user_id is not None and order.user_id != user_id:
            raise OrderNotFound(f"Order {order_id} not found")
        if not self.store.cancel(order_id):
            current = self.get_order(order_id)
            raise InvalidTransition(
                f"Order {order_id} cannot be cancelled",
                errors=[f"Current status: {current.status}"]
                + (["Order has already shipped"] if current.shipped_at else []),
            )
        logger.info("Order cancelled", extra={'extra_fields': {'order_id': order_id, 'user_id': order.user_id}})
        return self.get_order(order_id)

    def mark_shipped(self, order_id: int) -> Order:
        self.get_order(order_id)
        if not self.store.mark_shipped(order_id):
            current = self.get_order(order_id)
            raise InvalidTransition(
                f"Order {order_id} cannot be shipped",
                errors=[f"Current status: {current.status}"]
                + (["Order has already shipped"] if current.shipped_at else []),
            )
        logger.info("Order shipped", extra={'extra_fields': {'order_id': order_id}})
        return self.get_order(order_id)

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------
    def refund_order(self, order_id: int, amount: Optional[int] = None, notes: Optional[str] = None) -> RefundOutcome:
        """Refund all or part of a paid order through the gateway that took the payment.

        The amount is claimed on the order before the provider is called and
        given back if the provider call fails, so concurrent refunds can never
        add up to more than was paid. The order stays ``paid``; stock is not
        returned.
        """
        order = self.get_order(order_id)
        if order.status != OrderStatus.PAID.value:
            raise InvalidTransition(
                f"Order {order_id} cannot be refunded",
                errors=[f"Current status: {order.status}"],
            )
        remaining = order.total_amount - order.refunded_amount
        if remaining <= 0:
            raise InvalidTransition(
                f"Order {order_id} cannot be refunded",
                errors=["Order has already been fully refunded"],
            )
        if amount is None:
            amount = remaining
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 1 or amount > remaining:
            raise ValidationError(
                "Invalid refund amount",
                errors=[f"Refund amount must be between 1 and {remaining}"],
                reason="INVALID_REFUND_AMOUNT",
            )

        gateway = self.gateway_factory.get_gateway(order.gateway)
        if not self.store.reserve_refund(order_id, amount):
            current = self.get_order(order_id)
            raise InvalidTransition(
                f"Order {order_id} cannot be refunded",
                errors=[f"Current status: {current.status}", f"Already refunded: {current.refunded_amount}"],
            )

        context = RefundContext(
            order_id=order.id,
            user_id=order.user_id,
            amount=amount,
            currency=order.currency,
            merchant_transaction_id=order.merchant_transaction_id,
            merchant_refund_id=generate_refund_id(order.id),
            gateway_transaction_id=order.gateway_transaction_id,
            notes={"reason": notes} if notes else {},
        )
        try:
            refund = gateway.initiate_refund(context)
        except GatewayError as exc:
            self._release_refund(order_id, amount, gateway, exc)
            raise
        except Exception as exc:
            self._release_refund(order_id, amount, gateway, exc)
            raise GatewayError(f"Refund request to {gateway.name} failed") from exc

        self.store.record_refund(order_id, refund.refund_id)
        current = self.get_order(order_id)
        logger.info(
            "Order refunded",
            extra={'extra_fields': {
                'order_id': order_id,
                'refund_id': refund.refund_id,
                'amount': amount,
                'refunded_amount': current.refunded_amount,
            }}
        )
        return RefundOutcome(
            order_id=order_id,
            refund_id=refund.refund_id,
            amount=amount,
            refunded_amount=current.refunded_amount,
            fully_refunded=current.refunded_amount >= current.total_amount,
            status=current.status,
            gateway=order.gateway,
            gateway_status=refund.status,
        )

    def _release_refund(self, order_id: int, amount: int, gateway: PaymentGateway, exc: Exception) -> None:
        self.store.release_refund(order_id, amount)
        logger.error(
            "Refund request failed; refund claim released",
            extra={'extra_fields': {
                'order_id': order_id,
                'gateway': gateway.name,
                'amount': amount,
                'error': str(exc),
            }}
        )

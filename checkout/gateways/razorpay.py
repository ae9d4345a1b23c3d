"""Razorpay Orders API adapter.

Order-style flow: checkout opens a Razorpay order and hands its id to the
client-side widget (there is no redirect URL). The widget returns
``razorpay_order_id``/``razorpay_payment_id``/``razorpay_signature`` where the
signature is ``HMAC-SHA256(key_secret, "<order_id>|<payment_id>")``.
"""

from typing import Any, Dict, Optional

import httpx

from checkout.core_settings import Settings
from checkout.domain.errors import GatewayError, InvalidSignature
from checkout.gateways.port import (
    HttpGateway,
    PaymentContext,
    PaymentRequest,
    RefundContext,
    RefundResult,
    VerificationResult,
    hmac_sha256_hex,
    signatures_match,
)
from shared.core import get_logger

logger = get_logger(__name__)

PAYMENT_SUCCESS = frozenset({"captured"})
PAYMENT_FAILURE = frozenset({"failed"})
ORDER_PENDING = frozenset({"created", "attempted"})


class RazorpayGateway(HttpGateway):
    name = "razorpay"
    required_verification_fields = ("razorpay_order_id", "razorpay_payment_id", "razorpay_signature")

    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None):
        super().__init__(settings.GATEWAY_TIMEOUT_SECONDS, client)
        self.key_id = settings.RAZORPAY_KEY_ID
        self.key_secret = settings.RAZORPAY_KEY_SECRET
        self.webhook_secret = settings.RAZORPAY_WEBHOOK_SECRET or settings.RAZORPAY_KEY_SECRET
        self.base_url = settings.RAZORPAY_BASE_URL.rstrip("/")

    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    @property
    def _auth(self):
        return (self.key_id or "", self.key_secret or "")

    def create_payment_request(self, context: PaymentContext) -> PaymentRequest:
        data = self._send(
            "POST",
            f"{self.base_url}/v1/orders",
            auth=self._auth,
            json={
                "amount": context.amount,
                "currency": context.currency,
                "receipt": context.receipt,
                "notes": {
                    "order_id": str(context.order_id),
                    "merchant_transaction_id": context.merchant_transaction_id,
                    **{key: str(value) for key, value in context.notes.items()},
                },
                "payment_capture": 1,
            },
        )
        gateway_order_id = data.get("id")
        if not gateway_order_id:
            raise GatewayError("Razorpay response did not include an order id")

        logger.info(
            "Razorpay order created",
            extra={'extra_fields': {'order_id': context.order_id, 'gateway_order_id': gateway_order_id}}
        )
        return PaymentRequest(gateway_order_id=gateway_order_id)

    def expected_signature(self, order_id: str, payment_id: str) -> str:
        return hmac_sha256_hex(self.key_secret or "", f"{order_id}|{payment_id}".encode())

    def verify_payment_response(self, payload: Dict[str, Any]) -> VerificationResult:
        order_id = payload.get("razorpay_order_id") or ""
        payment_id = payload.get("razorpay_payment_id") or ""
        signature = payload.get("razorpay_signature")
        if not self.key_secret or not signatures_match(self.expected_signature(order_id, payment_id), signature):
            raise InvalidSignature("Payment verification failed")

        payment = self._send("GET", f"{self.base_url}/v1/payments/{payment_id}", auth=self._auth)
        status = payment.get("status")
        return VerificationResult(
            success=status in PAYMENT_SUCCESS,
            pending=status not in PAYMENT_SUCCESS and status not in PAYMENT_FAILURE,
            transaction_id=payment_id,
            raw_status=status,
            signature=signature,
            instrument=payment.get("method"),
        )

    def payload_reference(self, payload: Dict[str, Any]) -> Optional[str]:
        return payload.get("razorpay_order_id")

    def check_status(self, correlation_id: str) -> VerificationResult:
        order = self._send("GET", f"{self.base_url}/v1/orders/{correlation_id}", auth=self._auth)
        status = order.get("status")
        if status == "paid":
            return VerificationResult(
                success=True,
                transaction_id=self._captured_payment_id(correlation_id),
                raw_status=status,
            )
        return VerificationResult(success=False, pending=status in ORDER_PENDING, raw_status=status)

    def _captured_payment_id(self, gateway_order_id: str) -> Optional[str]:
        payments = self._send("GET", f"{self.base_url}/v1/orders/{gateway_order_id}/payments", auth=self._auth)
        for item in payments.get("items", []):
            if item.get("status") in PAYMENT_SUCCESS:
                return item.get("id")
        return None

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        if not self.webhook_secret:
            return False
        return signatures_match(hmac_sha256_hex(self.webhook_secret, raw_body), signature)

    def initiate_refund(self, context: RefundContext) -> RefundResult:
        if not context.gateway_transaction_id:
            raise GatewayError("Razorpay refund needs the captured payment id")
        data = self._send(
            "POST",
            f"{self.base_url}/v1/payments/{context.gateway_transaction_id}/refund",
            auth=self._auth,
            json={
                "amount": context.amount,
                "receipt": context.merchant_refund_id,
                "notes": {
                    "order_id": str(context.order_id),
                    **{key: str(value) for key, value in context.notes.items()},
                },
            },
        )
        refund_id = data.get("id")
        if not refund_id:
            raise GatewayError("Razorpay response did not include a refund id")

        logger.info(
            "Razorpay refund created",
            extra={'extra_fields': {
                'order_id': context.order_id,
                'refund_id': refund_id,
                'payment_id': context.gateway_transaction_id,
                'amount': data.get("amount"),
                'status': data.get("status"),
            }}
        )
        return RefundResult(refund_id=refund_id, amount=data.get("amount") or context.amount, status=data.get("status"))

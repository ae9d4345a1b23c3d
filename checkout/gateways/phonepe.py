"""PhonePe PG v1 adapter.

Redirect-style flow: the pay call returns a hosted payment page URL, the
customer is sent back with a base64 ``response`` blob and the final outcome
also arrives as a server-to-server callback. Every message is authenticated
with ``sha256(<content> + salt_key) + "###" + salt_index``.

The status codes PhonePe returns are not all final: anything outside
``PAYMENT_SUCCESS`` and the explicit failure codes (``INTERNAL_SERVER_ERROR``,
``TRANSACTION_NOT_FOUND`` and so on) leaves the payment pending.

Webhook checksums are computed over the raw request body. Live PG v1
callbacks sign only the base64 ``response`` value, so a proxy in front of
this service has to re-sign callbacks over the full body before forwarding.
"""

import base64
import binascii
import json
from typing import Any, Dict, Optional

import httpx

from checkout.core_settings import Settings
from checkout.domain.errors import GatewayError, InvalidSignature, ValidationError
from checkout.gateways.port import (
    HttpGateway,
    PaymentContext,
    PaymentRequest,
    RefundContext,
    RefundResult,
    VerificationResult,
    sha256_hex,
    signatures_match,
)
from shared.core import get_logger

logger = get_logger(__name__)

PAY_PATH = "/pg/v1/pay"
STATUS_PATH = "/pg/v1/status/{merchant_id}/{merchant_transaction_id}"
REFUND_PATH = "/pg/v1/refund"

SUCCESS_CODE = "PAYMENT_SUCCESS"
FAILURE_CODES = frozenset({
    "PAYMENT_ERROR",
    "PAYMENT_DECLINED",
    "PAYMENT_FAILED",
    "PAYMENT_CANCELLED",
    "TIMED_OUT",
})


def decode_payload(encoded: str) -> Dict[str, Any]:
    """Decode PhonePe's base64-wrapped JSON envelope."""
    try:
        decoded = json.loads(base64.b64decode(encoded, validate=True))
    except (binascii.Error, ValueError, TypeError) as exc:
        raise ValidationError("Malformed PhonePe response payload") from exc
    if not isinstance(decoded, dict):
        raise ValidationError("Malformed PhonePe response payload")
    return decoded


def result_from_code(code: Optional[str], data: Optional[Dict[str, Any]] = None) -> VerificationResult:
    data = data or {}
    instrument = (data.get("paymentInstrument") or {}).get("type")
    return VerificationResult(
        success=code == SUCCESS_CODE,
        pending=code != SUCCESS_CODE and code not in FAILURE_CODES,
        transaction_id=data.get("transactionId"),
        raw_status=code,
        instrument=instrument,
    )


class PhonePeGateway(HttpGateway):
    name = "phonepe"
    required_verification_fields = ("merchantTransactionId", "response", "xVerify")

    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None):
        super().__init__(settings.GATEWAY_TIMEOUT_SECONDS, client)
        self.merchant_id = settings.PHONEPE_MERCHANT_ID
        self.salt_key = settings.PHONEPE_SALT_KEY
        self.salt_index = settings.PHONEPE_SALT_INDEX
        self.base_url = settings.PHONEPE_BASE_URL.rstrip("/")
        self.redirect_url = settings.PHONEPE_REDIRECT_URL
        self.callback_url = settings.PHONEPE_CALLBACK_URL

    def is_configured(self) -> bool:
        return bool(self.merchant_id and self.salt_key)

    def checksum(self, content: str) -> str:
        return f"{sha256_hex((content + self.salt_key).encode())}###{self.salt_index}"

    def create_payment_request(self, context: PaymentContext) -> PaymentRequest:
        body = {
            "merchantId": self.merchant_id,
            "merchantTransactionId": context.merchant_transaction_id,
            "merchantUserId": f"MUID{context.user_id}",
            "amount": context.amount,
            "redirectUrl": self.redirect_url,
            "redirectMode": "REDIRECT",
            "callbackUrl": self.callback_url,
            "paymentInstrument": {"type": "PAY_PAGE"},
        }
        encoded = base64.b64encode(json.dumps(body).encode()).decode()
        data = self._send(
            "POST",
            f"{self.base_url}{PAY_PATH}",
            json={"request": encoded},
            headers={"X-VERIFY": self.checksum(encoded + PAY_PATH), "Content-Type": "application/json"},
        )
        if not data.get("success"):
            raise GatewayError(
                f"PhonePe refused the payment request: {data.get('message') or data.get('code')}"
            )
        try:
            payment_url = data["data"]["instrumentResponse"]["redirectInfo"]["url"]
        except (KeyError, TypeError) as exc:
            raise GatewayError("PhonePe response did not include a payment URL") from exc

        logger.info(
            "PhonePe payment created",
            extra={'extra_fields': {
                'order_id': context.order_id,
                'merchant_transaction_id': context.merchant_transaction_id,
            }}
        )
        return PaymentRequest(payment_url=payment_url, transaction_id=context.merchant_transaction_id)

    def verify_payment_response(self, payload: Dict[str, Any]) -> VerificationResult:
        encoded = payload.get("response") or ""
        if not signatures_match(self.checksum(encoded), payload.get("xVerify")):
            raise InvalidSignature("Payment verification failed")

        decoded = decode_payload(encoded)
        data = decoded.get("data") or {}
        reported = data.get("merchantTransactionId")
        if reported and reported != payload.get("merchantTransactionId"):
            raise ValidationError("Payment response does not match the transaction")
        return result_from_code(decoded.get("code"), data)

    def payload_reference(self, payload: Dict[str, Any]) -> Optional[str]:
        return payload.get("merchantTransactionId")

    def check_status(self, correlation_id: str) -> VerificationResult:
        path = STATUS_PATH.format(merchant_id=self.merchant_id, merchant_transaction_id=correlation_id)
        data = self._send(
            "GET",
            f"{self.base_url}{path}",
            headers={
                "X-VERIFY": self.checksum(path),
                "X-MERCHANT-ID": self.merchant_id or "",
                "Content-Type": "application/json",
            },
        )
        return result_from_code(data.get("code"), data.get("data"))

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        if not self.salt_key:
            return False
        expected = f"{sha256_hex(raw_body + self.salt_key.encode())}###{self.salt_index}"
        return signatures_match(expected, signature)

    def initiate_refund(self, context: RefundContext) -> RefundResult:
        body = {
            "merchantId": self.merchant_id,
            "merchantUserId": f"MUID{context.user_id}",
            "originalTransactionId": context.merchant_transaction_id,
            "merchantTransactionId": context.merchant_refund_id,
            "amount": context.amount,
            "callbackUrl": self.callback_url,
        }
        encoded = base64.b64encode(json.dumps(body).encode()).decode()
        data = self._send(
            "POST",
            f"{self.base_url}{REFUND_PATH}",
            json={"request": encoded},
            headers={"X-VERIFY": self.checksum(encoded + REFUND_PATH), "Content-Type": "application/json"},
        )
        if not data.get("success"):
            raise GatewayError(f"PhonePe refused the refund: {data.get('message') or data.get('code')}")

        refund = data.get("data") or {}
        logger.info(
            "PhonePe refund initiated",
            extra={'extra_fields': {
                'order_id': context.order_id,
                'merchant_refund_id': context.merchant_refund_id,
                'amount': context.amount,
                'code': data.get("code"),
            }}
        )
        return RefundResult(
            refund_id=refund.get("transactionId") or context.merchant_refund_id,
            amount=refund.get("amount") or context.amount,
            status=refund.get("state") or data.get("code"),
        )

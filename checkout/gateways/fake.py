"""In-process gateway for local development and tests.

Behaviour is switched with ``outcome``: ``"success"``, ``"failure"``,
``"pending"`` or ``"error"`` (create raises). ``refund_error`` makes refunds
raise. Webhooks are signed with ``HMAC-SHA256(secret, raw_body)`` so
signature checks run for real.
"""

import json
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from checkout.domain.errors import GatewayError, InvalidSignature
from checkout.gateways.port import (
    PaymentContext,
    PaymentGateway,
    PaymentRequest,
    RefundContext,
    RefundResult,
    VerificationResult,
    hmac_sha256_hex,
    signatures_match,
)

OUTCOMES = ("success", "failure", "pending", "error")


class FakeGateway(PaymentGateway):
    name = "fake"
    required_verification_fields = ("transaction_id", "status", "signature")

    def __init__(
        self,
        secret: str = "fake-webhook-secret",
        outcome: str = "success",
        configured: bool = True,
        create_error: Optional[Exception] = None,
        refund_error: Optional[Exception] = None,
    ):
        if outcome not in OUTCOMES:
            raise ValueError(f"outcome must be one of {OUTCOMES}")
        self.secret = secret
        self.outcome = outcome
        self.configured = configured
        self.create_error = create_error
        self.refund_error = refund_error
        self.calls: List[Tuple[str, Any]] = []

    def is_configured(self) -> bool:
        return self.configured

    def calls_to(self, method: str) -> List[Any]:
        return [args for name, args in self.calls if name == method]

    def create_payment_request(self, context: PaymentContext) -> PaymentRequest:
        self.calls.append(("create_payment_request", context))
        if self.create_error is not None:
            raise self.create_error
        if self.outcome == "error":
            raise GatewayError("Fake gateway unavailable")
        return PaymentRequest(
            payment_url=f"https://fake-gateway.local/pay/{context.merchant_transaction_id}",
            transaction_id=f"FAKE_{uuid4().hex[:12]}",
        )

    def sign(self, raw_body: bytes) -> str:
        return hmac_sha256_hex(self.secret, raw_body)

    def payload_signature(self, transaction_id: str, status: str) -> str:
        return self.sign(f"{transaction_id}|{status}".encode())

    def verify_payment_response(self, payload: Dict[str, Any]) -> VerificationResult:
        self.calls.append(("verify_payment_response", payload))
        transaction_id = payload.get("transaction_id") or ""
        status = payload.get("status") or ""
        if not signatures_match(self.payload_signature(transaction_id, status), payload.get("signature")):
            raise InvalidSignature("Payment verification failed")
        return self._result(status, transaction_id)

    def check_status(self, correlation_id: str) -> VerificationResult:
        self.calls.append(("check_status", correlation_id))
        status = {"success": "captured", "failure": "failed"}.get(self.outcome, "pending")
        return self._result(status, f"FAKE_{correlation_id}")

    def verify_webhook_signature(self, raw_body: bytes, signature: Optional[str]) -> bool:
        self.calls.append(("verify_webhook_signature", signature))
        return signatures_match(self.sign(raw_body), signature)

    def initiate_refund(self, context: RefundContext) -> RefundResult:
        self.calls.append(("initiate_refund", context))
        if self.refund_error is not None:
            raise self.refund_error
        return RefundResult(refund_id=f"RFND_FAKE_{uuid4().hex[:12]}", amount=context.amount, status="processed")

    def build_webhook(self, merchant_transaction_id: str, status: str = "captured", **extra) -> Tuple[bytes, str]:
        """Return a signed webhook body for the given transaction."""
        body = json.dumps({
            "event": "payment.update",
            "merchant_transaction_id": merchant_transaction_id,
            "status": status,
            **extra,
        }).encode()
        return body, self.sign(body)

    @staticmethod
    def _result(status: str, transaction_id: Optional[str]) -> VerificationResult:
        return VerificationResult(
            success=status == "captured",
            pending=status not in ("captured", "failed"),
            transaction_id=transaction_id,
            raw_status=status,
        )

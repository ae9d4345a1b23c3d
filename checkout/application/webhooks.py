"""Webhook normalisation.

Providers nest the same fact in different places depending on the event
version (top level, ``data.*``, ``payload.payment.entity.*``). Each adapter
declares an ordered precedence table per field and resolves it once, so the
rest of checkout only ever sees a ``WebhookEvent``.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from checkout.domain.errors import UnsupportedGateway, ValidationError
from checkout.gateways.phonepe import decode_payload, result_from_code
from checkout.gateways.port import VerificationResult


@dataclass(frozen=True)
class WebhookEvent:
    gateway: str
    event_type: Optional[str]
    merchant_transaction_id: Optional[str] = None
    gateway_order_id: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    # None for events that carry no payment outcome (refunds, authorisations)
    result: Optional[VerificationResult] = None

    @property
    def has_outcome(self) -> bool:
        return self.result is not None


def resolve(body: Dict[str, Any], paths: Sequence[str]) -> Any:
    """Return the first non-empty value among dotted ``paths``."""
    for path in paths:
        node: Any = body
        for part in path.split("."):
            if not isinstance(node, dict):
                node = None
                break
            node = node.get(part)
        if node not in (None, ""):
            return node
    return None


def parse_json(raw_body: bytes) -> Dict[str, Any]:
    try:
        body = json.loads(raw_body)
    except ValueError as exc:
        raise ValidationError("Malformed webhook body") from exc
    if not isinstance(body, dict):
        raise ValidationError("Malformed webhook body")
    return body


class PhonePeWebhookAdapter:
    gateway = "phonepe"

    MERCHANT_TRANSACTION_ID = ("merchantTransactionId", "data.merchantTransactionId", "merchant_transaction_id")
    TRANSACTION_ID = ("data.transactionId", "transactionId")
    CODE = ("code", "data.code")
    INSTRUMENT = ("data.paymentInstrument.type", "paymentInstrument.type")

    def parse(self, raw_body: bytes) -> WebhookEvent:
        body = parse_json(raw_body)
        if isinstance(body.get("response"), str):
            body = decode_payload(body["response"])

        code = resolve(body, self.CODE)
        if not code:
            raise ValidationError("Webhook does not carry a payment code")
        transaction_id = resolve(body, self.TRANSACTION_ID)
        base = result_from_code(code)
        return WebhookEvent(
            gateway=self.gateway,
            event_type=code,
            merchant_transaction_id=resolve(body, self.MERCHANT_TRANSACTION_ID),
            gateway_transaction_id=transaction_id,
            result=VerificationResult(
                success=base.success,
                pending=base.pending,
                transaction_id=transaction_id,
                raw_status=code,
                instrument=resolve(body, self.INSTRUMENT),
            ),
        )


class RazorpayWebhookAdapter:
    gateway = "razorpay"

    ORDER_ID = ("payload.payment.entity.order_id", "payload.order.entity.id", "order_id")
    PAYMENT_ID = ("payload.payment.entity.id", "payment_id")
    EVENT = ("event", "type")
    METHOD = ("payload.payment.entity.method",)

    SUCCESS_EVENTS = frozenset({"payment.captured", "order.paid"})
    FAILURE_EVENTS = frozenset({"payment.failed"})

    def parse(self, raw_body: bytes) -> WebhookEvent:
        body = parse_json(raw_body)
        event_type = resolve(body, self.EVENT)
        if not event_type:
            raise ValidationError("Webhook does not name an event")
        payment_id = resolve(body, self.PAYMENT_ID)

        result = None
        if event_type in self.SUCCESS_EVENTS or event_type in self.FAILURE_EVENTS:
            result = VerificationResult(
                success=event_type in self.SUCCESS_EVENTS,
                transaction_id=payment_id,
                raw_status=event_type,
                instrument=resolve(body, self.METHOD),
            )
        return WebhookEvent(
            gateway=self.gateway,
            event_type=event_type,
            gateway_order_id=resolve(body, self.ORDER_ID),
            gateway_transaction_id=payment_id,
            result=result,
        )


class FakeWebhookAdapter:
    gateway = "fake"

    MERCHANT_TRANSACTION_ID = ("merchant_transaction_id", "data.merchant_transaction_id")
    TRANSACTION_ID = ("transaction_id", "data.transaction_id")
    STATUS = ("status", "data.status")

    def parse(self, raw_body: bytes) -> WebhookEvent:
        body = parse_json(raw_body)
        status = resolve(body, self.STATUS)
        if not status:
            raise ValidationError("Webhook does not carry a status")
        transaction_id = resolve(body, self.TRANSACTION_ID)
        return WebhookEvent(
            gateway=self.gateway,
            event_type=body.get("event"),
            merchant_transaction_id=resolve(body, self.MERCHANT_TRANSACTION_ID),
            gateway_transaction_id=transaction_id,
            result=VerificationResult(
                success=status == "captured",
                pending=status not in ("captured", "failed"),
                transaction_id=transaction_id,
                raw_status=status,
            ),
        )


_ADAPTERS = {
    adapter.gateway: adapter
    for adapter in (PhonePeWebhookAdapter(), RazorpayWebhookAdapter(), FakeWebhookAdapter())
}


def get_webhook_adapter(gateway_name: str):
    adapter = _ADAPTERS.get(gateway_name.lower())
    if adapter is None:
        raise UnsupportedGateway(f"Unsupported payment gateway: {gateway_name}")
    return adapter

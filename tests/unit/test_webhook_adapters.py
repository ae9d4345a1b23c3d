import base64
import json

import pytest

from checkout.application.verifier import PaymentVerifier
from checkout.application.webhooks import get_webhook_adapter, resolve
from checkout.domain.errors import UnsupportedGateway, ValidationError
from checkout.domain.models import OrderStatus
from checkout.gateways.port import VerificationResult


def test_resolve_takes_first_present_path():
    body = {"merchantTransactionId": "", "data": {"merchantTransactionId": "TXN_2"}}
    assert resolve(body, ("merchantTransactionId", "data.merchantTransactionId")) == "TXN_2"
    assert resolve(body, ("missing", "data.missing.deeper")) is None


class TestPhonePeAdapter:
    adapter = get_webhook_adapter("phonepe")

    def test_decodes_base64_envelope(self):
        inner = {
            "success": True,
            "code": "PAYMENT_SUCCESS",
            "data": {
                "merchantTransactionId": "TXN_1",
                "transactionId": "T100",
                "paymentInstrument": {"type": "UPI"},
            },
        }
        raw = json.dumps({"response": base64.b64encode(json.dumps(inner).encode()).decode()}).encode()
        event = self.adapter.parse(raw)

        assert event.merchant_transaction_id == "TXN_1"
        assert event.gateway_transaction_id == "T100"
        assert event.result.success
        assert event.result.instrument == "UPI"

    def test_top_level_fields_win(self):
        raw = json.dumps({
            "code": "PAYMENT_ERROR",
            "merchantTransactionId": "TXN_top",
            "transactionId": "T_top",
            "data": {"merchantTransactionId": "TXN_nested", "code": "PAYMENT_SUCCESS"},
        }).encode()
        event = self.adapter.parse(raw)

        assert event.merchant_transaction_id == "TXN_top"
        assert event.gateway_transaction_id == "T_top"
        assert not event.result.success
        assert not event.result.pending

    def test_pending_code(self):
        event = self.adapter.parse(b'{"code": "PAYMENT_PENDING", "merchantTransactionId": "TXN_1"}')
        assert event.result.pending

    def test_non_final_code_is_pending(self):
        event = self.adapter.parse(b'{"code": "INTERNAL_SERVER_ERROR", "merchantTransactionId": "TXN_1"}')
        assert event.has_outcome
        assert event.result.pending and not event.result.success
        assert PaymentVerifier.determine_status(event.result) is OrderStatus.PENDING

    @pytest.mark.parametrize("raw", [b"not json", b"[1, 2]", b'{"merchantTransactionId": "TXN_1"}'])
    def test_malformed_bodies(self, raw):
        with pytest.raises(ValidationError):
            self.adapter.parse(raw)


class TestRazorpayAdapter:
    adapter = get_webhook_adapter("razorpay")

    def _body(self, event, **payment):
        return json.dumps({
            "event": event,
            "payload": {"payment": {"entity": {"id": "pay_1", "order_id": "order_1", "method": "upi", **payment}}},
        }).encode()

    def test_captured(self):
        event = self.adapter.parse(self._body("payment.captured"))
        assert event.gateway_order_id == "order_1"
        assert event.gateway_transaction_id == "pay_1"
        assert event.result.success
        assert event.result.instrument == "upi"

    def test_failed(self):
        event = self.adapter.parse(self._body("payment.failed"))
        assert event.result is not None
        assert not event.result.success and not event.result.pending

    def test_order_paid_uses_order_entity(self):
        raw = json.dumps({"event": "order.paid", "payload": {"order": {"entity": {"id": "order_9"}}}}).encode()
        event = self.adapter.parse(raw)
        assert event.gateway_order_id == "order_9"
        assert event.result.success

    def test_refund_carries_no_outcome(self):
        event = self.adapter.parse(self._body("refund.processed"))
        assert not event.has_outcome

    def test_event_name_required(self):
        with pytest.raises(ValidationError):
            self.adapter.parse(b'{"payload": {}}')


def test_unknown_adapter():
    with pytest.raises(UnsupportedGateway):
        get_webhook_adapter("paypal")


@pytest.mark.parametrize("result,expected", [
    (VerificationResult(success=True), OrderStatus.PAID),
    (VerificationResult(success=False, pending=True), OrderStatus.PENDING),
    (VerificationResult(success=False), OrderStatus.FAILED),
])
def test_verifier_determines_status(result, expected):
    assert PaymentVerifier.determine_status(result) is expected

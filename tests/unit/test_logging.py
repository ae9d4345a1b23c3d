import json
import logging

from shared.core import get_logger, log_security_event
from shared.core.logging_config import REDACTED, SecurityFilter, StructuredFormatter, set_request_context


def make_record(extra_fields, **attrs):
    record = logging.LogRecord("checkout", logging.WARNING, __file__, 1, "message", None, None)
    record.extra_fields = extra_fields
    for key, value in attrs.items():
        setattr(record, key, value)
    return record


def test_security_filter_redacts_nested_secrets():
    record = make_record({
        "order_id": 1,
        "xVerify": "abc###1",
        "payload": {"razorpay_signature": "deadbeef", "razorpay_order_id": "order_1"},
    })
    SecurityFilter().filter(record)

    assert record.extra_fields["order_id"] == 1
    assert record.extra_fields["xVerify"] == REDACTED
    assert record.extra_fields["payload"]["razorpay_signature"] == REDACTED
    assert record.extra_fields["payload"]["razorpay_order_id"] == "order_1"


def test_formatter_emits_json_with_trace_and_security_flag():
    set_request_context(request_id="req-1")
    record = make_record({"gateway": "phonepe"}, security_event=True)
    output = json.loads(StructuredFormatter("checkout-service").format(record))

    assert output["service"] == "checkout-service"
    assert output["security_event"] is True
    assert output["custom"] == {"gateway": "phonepe"}
    assert output["trace"]["request_id"] == "req-1"


def test_log_security_event_is_flagged_warning(caplog):
    logger = get_logger("checkout.test")
    with caplog.at_level(logging.WARNING, logger="checkout.test"):
        log_security_event(logger, "Webhook signature rejected", gateway="razorpay")

    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert record.security_event is True
    assert record.extra_fields == {"event_type": "security", "gateway": "razorpay"}

import logging
import re

import pytest
from sqlalchemy.exc import OperationalError

from checkout.domain.errors import GatewayError, StockError, UnsupportedGateway, ValidationError
from checkout.domain.models import OrderStatus
from checkout.gateways import PaymentGatewayFactory
from checkout.gateways.fake import FakeGateway

USER_ID = 7


@pytest.fixture
def products(add_product):
    add_product(1, price=6000, sale_price=5000, stock=10)
    add_product(2, price=3000, stock=5)


def test_checkout_two_items_totals_in_paise(orchestrator, products, address, stock_of, fake_gateway):
    result = orchestrator.initiate_checkout(
        USER_ID,
        [{"product_id": 1, "quantity": 2}, {"product_id": 2, "quantity": 1}],
        address,
        notes="Leave at the door",
    )

    assert result.amount == 13000
    assert result.currency == "INR"
    assert result.gateway == "fake"
    assert result.payment_url
    assert re.fullmatch(r"TXN_\d{13}_7_[0-9a-f]{8}", result.merchant_transaction_id)
    assert re.fullmatch(r"receipt_\d{13}_7_[0-9a-f]{8}", result.receipt)

    order = orchestrator.get_order(result.order_id)
    assert order.status == OrderStatus.PENDING.value
    assert order.total_amount == order.items_total() == 13000
    assert order.gateway_transaction_id is not None
    assert order.shipping_address == address
    assert order.notes == "Leave at the door"
    assert sorted((item.product_id, item.unit_price, item.quantity) for item in order.items) == [
        (1, 5000, 2),
        (2, 3000, 1),
    ]
    assert order.items[0].product_name.startswith("Product ")

    assert stock_of(1) == 8
    assert stock_of(2) == 4

    context = fake_gateway.calls_to("create_payment_request")[0]
    assert context.amount == 13000
    assert context.merchant_transaction_id == result.merchant_transaction_id


def test_invalid_cart_has_no_side_effects(orchestrator, products, address, order_count, fake_gateway):
    with pytest.raises(ValidationError) as excinfo:
        orchestrator.initiate_checkout(USER_ID, [], address)
    assert excinfo.value.reason == "EMPTY_CART"
    assert order_count() == 0
    assert fake_gateway.calls == []


def test_invalid_address_rejected(orchestrator, products, order_count):
    with pytest.raises(ValidationError) as excinfo:
        orchestrator.initiate_checkout(USER_ID, [{"product_id": 1, "quantity": 1}], {"name": "Asha"})
    assert excinfo.value.reason == "INVALID_ADDRESS"
    assert order_count() == 0


def test_insufficient_stock_reports_every_line(orchestrator, products, address, order_count, stock_of):
    with pytest.raises(StockError) as excinfo:
        orchestrator.initiate_checkout(
            USER_ID,
            [{"product_id": 1, "quantity": 11}, {"product_id": 2, "quantity": 6}, {"product_id": 99, "quantity": 1}],
            address,
        )
    assert len(excinfo.value.errors) == 3
    assert order_count() == 0
    assert stock_of(1) == 10


def test_gateway_failure_marks_order_failed_and_restores_stock(
    make_orchestrator, products, address, stock_of
):
    failing = FakeGateway(outcome="error")
    orchestrator = make_orchestrator(stock_policy="restore")
    orchestrator.gateway_factory = PaymentGatewayFactory([failing], default="fake")

    with pytest.raises(GatewayError):
        orchestrator.initiate_checkout(USER_ID, [{"product_id": 1, "quantity": 2}], address)

    order = orchestrator.store.find_by_reference(
        failing.calls_to("create_payment_request")[0].merchant_transaction_id
    )
    assert order.status == OrderStatus.FAILED.value
    assert stock_of(1) == 10


def test_gateway_failure_with_reserve_policy_keeps_stock(make_orchestrator, products, address, stock_of):
    failing = FakeGateway(outcome="error")
    orchestrator = make_orchestrator(stock_policy="reserve")
    orchestrator.gateway_factory = PaymentGatewayFactory([failing], default="fake")

    with pytest.raises(GatewayError):
        orchestrator.initiate_checkout(USER_ID, [{"product_id": 1, "quantity": 2}], address)

    order = orchestrator.store.find_by_reference(
        failing.calls_to("create_payment_request")[0].merchant_transaction_id
    )
    assert order.status == OrderStatus.FAILED.value
    assert stock_of(1) == 8


def test_failed_compensation_still_surfaces_gateway_error(make_orchestrator, products, address, monkeypatch, caplog):
    failing = FakeGateway(outcome="error")
    orchestrator = make_orchestrator()
    orchestrator.gateway_factory = PaymentGatewayFactory([failing], default="fake")

    def store_down(order_id, restore_stock, **fields):
        raise OperationalError("UPDATE orders", {}, Exception("database is locked"))

    monkeypatch.setattr(orchestrator.store, "fail", store_down)

    with caplog.at_level(logging.ERROR):
        with pytest.raises(GatewayError, match="Fake gateway unavailable"):
            orchestrator.initiate_checkout(USER_ID, [{"product_id": 1, "quantity": 1}], address)

    order = orchestrator.store.find_by_reference(
        failing.calls_to("create_payment_request")[0].merchant_transaction_id
    )
    assert order.status == OrderStatus.PENDING.value
    logged = [r for r in caplog.records if r.getMessage() == "Could not mark order failed after payment request error"]
    assert len(logged) == 1
    assert logged[0].exc_info is not None


def test_unexpected_gateway_exception_is_wrapped(make_orchestrator, products, address, stock_of):
    failing = FakeGateway(create_error=ConnectionResetError("peer reset"))
    orchestrator = make_orchestrator()
    orchestrator.gateway_factory = PaymentGatewayFactory([failing], default="fake")

    with pytest.raises(GatewayError) as excinfo:
        orchestrator.initiate_checkout(USER_ID, [{"product_id": 2, "quantity": 1}], address)
    assert isinstance(excinfo.value.__cause__, ConnectionResetError)
    assert stock_of(2) == 5


def test_unconfigured_default_gateway_fails_before_commit(make_orchestrator, products, address, order_count):
    orchestrator = make_orchestrator()
    orchestrator.gateway_factory = PaymentGatewayFactory([FakeGateway(configured=False)], default="fake")

    with pytest.raises(GatewayError):
        orchestrator.initiate_checkout(USER_ID, [{"product_id": 1, "quantity": 1}], address)
    assert order_count() == 0


def test_unknown_default_gateway(make_orchestrator, products, address):
    orchestrator = make_orchestrator()
    orchestrator.gateway_factory = PaymentGatewayFactory([FakeGateway()], default="paypal")
    with pytest.raises(UnsupportedGateway):
        orchestrator.initiate_checkout(USER_ID, [{"product_id": 1, "quantity": 1}], address)


def test_invalid_stock_policy(make_orchestrator):
    with pytest.raises(ValueError):
        make_orchestrator(stock_policy="maybe")

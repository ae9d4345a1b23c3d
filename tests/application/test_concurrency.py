import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from checkout.application.service import CheckoutOrchestrator
from checkout.domain.errors import StockError
from checkout.domain.models import Order, Product
from checkout.gateways import PaymentGatewayFactory
from checkout.gateways.fake import FakeGateway
from checkout.infrastructure.collaborators import SqlCart, SqlCatalog
from checkout.infrastructure.db import build_engine, build_session_factory, init_models
from checkout.infrastructure.orders import OrderStore

BUYERS = 5
STOCK = 3


@pytest.fixture
def file_session_factory(tmp_path):
    # Threads need real separate connections, so an on-disk database
    engine = build_engine(f"sqlite:///{tmp_path / 'checkout.db'}")
    init_models(engine)
    yield build_session_factory(engine)
    engine.dispose()


def test_concurrent_checkouts_never_oversell(file_session_factory, address):
    with file_session_factory.begin() as session:
        session.add(Product(id=1, name="Last few", price=1000, stock=STOCK))

    gateway = FakeGateway()
    orchestrator = CheckoutOrchestrator(
        store=OrderStore(file_session_factory),
        catalog=SqlCatalog(file_session_factory),
        cart=SqlCart(file_session_factory),
        gateway_factory=PaymentGatewayFactory([gateway], default="fake"),
    )
    start = threading.Barrier(BUYERS)

    def buy(user_id):
        start.wait()
        try:
            return orchestrator.initiate_checkout(user_id, [{"product_id": 1, "quantity": 1}], address)
        except StockError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=BUYERS) as pool:
        results = list(pool.map(buy, range(1, BUYERS + 1)))

    succeeded = [result for result in results if not isinstance(result, StockError)]
    rejected = [result for result in results if isinstance(result, StockError)]
    assert len(succeeded) == STOCK
    assert len(rejected) == BUYERS - STOCK

    with file_session_factory() as session:
        assert session.get(Product, 1).stock == 0
        orders = session.query(Order).all()
    assert len(orders) == STOCK
    assert {order.status for order in orders} == {"pending"}
    assert sorted(order.id for order in orders) == sorted(result.order_id for result in succeeded)


class RecordingCart:
    def __init__(self):
        self.cleared = []
        self._lock = threading.Lock()

    def clear_cart(self, user_id):
        with self._lock:
            self.cleared.append(user_id)


ROUNDS = 5
SETTLEMENT_STOCK = 10


@pytest.fixture
def settlement(file_session_factory):
    with file_session_factory.begin() as session:
        session.add(Product(id=2, name="Desk lamp", price=2500, stock=SETTLEMENT_STOCK))

    gateway = FakeGateway()
    cart = RecordingCart()
    orchestrator = CheckoutOrchestrator(
        store=OrderStore(file_session_factory),
        catalog=SqlCatalog(file_session_factory),
        cart=cart,
        gateway_factory=PaymentGatewayFactory([gateway], default="fake"),
    )
    return orchestrator, gateway, cart


def settle_concurrently(*calls):
    start = threading.Barrier(len(calls))

    def run(call):
        start.wait()
        return call()

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(run, calls))


def redirect_payload(gateway, status, transaction_id):
    return {
        "transaction_id": transaction_id,
        "status": status,
        "signature": gateway.payload_signature(transaction_id, status),
    }


def test_webhook_and_redirect_settle_an_order_once(settlement, file_session_factory, address):
    orchestrator, gateway, cart = settlement

    for user_id in range(1, ROUNDS + 1):
        checkout = orchestrator.initiate_checkout(user_id, [{"product_id": 2, "quantity": 1}], address)
        body, signature = gateway.build_webhook(checkout.merchant_transaction_id, "captured", transaction_id=f"pay_{user_id}")
        payload = redirect_payload(gateway, "captured", f"pay_{user_id}")

        outcomes = settle_concurrently(
            lambda: orchestrator.handle_webhook(body, "fake", signature),
            lambda: orchestrator.verify_payment(checkout.order_id, payload),
        )

        assert sorted(outcome.already_processed for outcome in outcomes) == [False, True]
        assert {outcome.status for outcome in outcomes} == {"paid"}

    assert sorted(cart.cleared) == list(range(1, ROUNDS + 1))
    with file_session_factory() as session:
        assert session.get(Product, 2).stock == SETTLEMENT_STOCK - ROUNDS


def test_success_and_failure_race_has_one_winner(settlement, file_session_factory, address):
    orchestrator, gateway, cart = settlement
    paid = 0

    for user_id in range(1, ROUNDS + 1):
        checkout = orchestrator.initiate_checkout(user_id, [{"product_id": 2, "quantity": 1}], address)
        body, signature = gateway.build_webhook(checkout.merchant_transaction_id, "captured")
        declined = redirect_payload(gateway, "failed", f"pay_{user_id}")

        outcomes = settle_concurrently(
            lambda: orchestrator.handle_webhook(body, "fake", signature),
            lambda: orchestrator.verify_payment(checkout.order_id, declined),
        )

        final = orchestrator.get_order(checkout.order_id).status
        assert final in ("paid", "failed")
        assert [outcome.already_processed for outcome in outcomes].count(False) == 1
        assert {outcome.status for outcome in outcomes} == {final}
        paid += final == "paid"

    assert len(cart.cleared) == paid
    # A failed order gives its unit back exactly once
    with file_session_factory() as session:
        assert session.get(Product, 2).stock == SETTLEMENT_STOCK - paid

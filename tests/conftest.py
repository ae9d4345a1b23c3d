import os

# Must be set before checkout.core_settings is first imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PAYMENT_GATEWAY", "fake")
os.environ.setdefault("FAKE_GATEWAY_ENABLED", "true")

import pytest

from checkout.application.service import CheckoutOrchestrator
from checkout.domain.models import CartItem, Order, Product
from checkout.gateways import PaymentGatewayFactory
from checkout.gateways.fake import FakeGateway
from checkout.infrastructure.collaborators import SqlCart, SqlCatalog
from checkout.infrastructure.db import build_engine, build_session_factory, init_models
from checkout.infrastructure.orders import OrderStore

TEST_SECRET = "test-webhook-secret"

ADDRESS = {
    "name": "Asha Rao",
    "address": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "pincode": "560001",
    "phone": "9876543210",
    "email": "asha@example.com",
}


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    init_models(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def add_product(session_factory):
    def _add(product_id, price, stock, sale_price=None, name=None):
        with session_factory.begin() as session:
            session.add(Product(
                id=product_id,
                name=name or f"Product {product_id}",
                description=f"Description of product {product_id}",
                price=price,
                sale_price=sale_price,
                stock=stock,
            ))
    return _add


@pytest.fixture
def add_cart_item(session_factory):
    def _add(user_id, product_id, quantity=1):
        with session_factory.begin() as session:
            session.add(CartItem(user_id=user_id, product_id=product_id, quantity=quantity))
    return _add


@pytest.fixture
def stock_of(session_factory):
    def _stock(product_id):
        with session_factory() as session:
            return session.get(Product, product_id).stock
    return _stock


@pytest.fixture
def cart_size(session_factory):
    def _size(user_id):
        with session_factory() as session:
            return session.query(CartItem).filter(CartItem.user_id == user_id).count()
    return _size


@pytest.fixture
def order_count(session_factory):
    def _count():
        with session_factory() as session:
            return session.query(Order).count()
    return _count


@pytest.fixture
def fake_gateway():
    return FakeGateway(secret=TEST_SECRET)


@pytest.fixture
def gateway_factory(fake_gateway):
    return PaymentGatewayFactory([fake_gateway], default="fake")


@pytest.fixture
def make_orchestrator(session_factory, gateway_factory):
    def _make(stock_policy="restore", cart=None):
        return CheckoutOrchestrator(
            store=OrderStore(session_factory),
            catalog=SqlCatalog(session_factory),
            cart=cart or SqlCart(session_factory),
            gateway_factory=gateway_factory,
            stock_policy=stock_policy,
        )
    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


@pytest.fixture
def address():
    return dict(ADDRESS)

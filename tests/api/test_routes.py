import pytest
from fastapi.testclient import TestClient

from checkout.api.routes import get_orchestrator
from checkout.gateways import PaymentGatewayFactory, reset_gateway_factory, set_gateway_factory
from checkout.gateways.fake import FakeGateway
from checkout.infrastructure.db import get_db
from checkout.main import app

USER_HEADERS = {"X-User-ID": "7"}


@pytest.fixture
def client(orchestrator, session_factory, gateway_factory, add_product):
    add_product(1, price=5000, stock=3)

    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_db] = override_db
    set_gateway_factory(gateway_factory)
    yield TestClient(app)
    app.dependency_overrides.clear()
    reset_gateway_factory()


def start_checkout(client, address, quantity=1):
    return client.post(
        "/checkout",
        json={"items": [{"product_id": 1, "quantity": quantity}], "address": address},
        headers=USER_HEADERS,
    )


def test_checkout_created(client, address):
    resp = start_checkout(client, address, quantity=2)
    assert resp.status_code == 201
    body = resp.json()
    assert body["amount"] == 10000
    assert body["gateway"] == "fake"
    assert body["payment_url"].startswith("https://fake-gateway.local/pay/")


def test_checkout_requires_user_header(client, address):
    resp = client.post("/checkout", json={"items": [{"product_id": 1, "quantity": 1}], "address": address})
    assert resp.status_code == 422


def test_checkout_validation_errors(client, address):
    resp = client.post("/checkout", json={"items": [], "address": address}, headers=USER_HEADERS)
    assert resp.status_code == 422
    detail = resp.json()["detail"]
    assert detail["code"] == "VALIDATION_ERROR"
    assert detail["reason"] == "EMPTY_CART"
    assert detail["errors"] == ["Cart is empty"]


def test_checkout_out_of_stock(client, address):
    resp = start_checkout(client, address, quantity=4)
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "INSUFFICIENT_STOCK"


def test_checkout_gateway_failure(client, orchestrator, address):
    orchestrator.gateway_factory = PaymentGatewayFactory([FakeGateway(outcome="error")], default="fake")
    resp = start_checkout(client, address)
    assert resp.status_code == 502
    assert resp.json()["detail"]["code"] == "GATEWAY_ERROR"


def test_webhook_settles_order(client, fake_gateway, address):
    checkout = start_checkout(client, address).json()
    body, signature = fake_gateway.build_webhook(checkout["merchant_transaction_id"], "captured")

    resp = client.post(
        "/checkout/webhooks/fake",
        content=body,
        headers={"X-Webhook-Signature": signature, "Content-Type": "application/json"},
    )
    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "order_id": checkout["order_id"],
        "status": "paid",
        "already_processed": False,
    }

    order = client.get(f"/orders/{checkout['order_id']}").json()
    assert order["status"] == "paid"
    assert order["items"][0]["unit_price"] == 5000


def test_webhook_bad_signature(client, fake_gateway, address):
    checkout = start_checkout(client, address).json()
    body, _ = fake_gateway.build_webhook(checkout["merchant_transaction_id"], "captured")

    resp = client.post("/checkout/webhooks/fake", content=body, headers={"X-Webhook-Signature": "forged"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == {"code": "INVALID_SIGNATURE", "message": "Invalid signature"}
    assert client.get(f"/orders/{checkout['order_id']}").json()["status"] == "pending"


def test_verify_route(client, fake_gateway, address):
    checkout = start_checkout(client, address).json()
    payload = {
        "transaction_id": "pay_1",
        "status": "captured",
        "signature": fake_gateway.payload_signature("pay_1", "captured"),
    }
    resp = client.post(f"/checkout/{checkout['order_id']}/verify", json={"payload": payload})
    assert resp.status_code == 200
    assert resp.json()["status"] == "paid"


def test_status_route(client, address):
    checkout = start_checkout(client, address).json()
    resp = client.get(f"/checkout/status/{checkout['merchant_transaction_id']}")
    assert resp.status_code == 200
    assert resp.json()["status"] == "paid"

    assert client.get("/checkout/status/TXN_unknown").status_code == 404


def test_cancel_then_ship(client, address):
    checkout = start_checkout(client, address).json()

    resp = client.post(f"/orders/{checkout['order_id']}/cancel", headers=USER_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"

    resp = client.post(f"/orders/{checkout['order_id']}/ship")
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "INVALID_TRANSITION"


def test_refund_route(client, fake_gateway, address):
    checkout = start_checkout(client, address, quantity=2).json()
    resp = client.post(f"/orders/{checkout['order_id']}/refund", json={})
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "INVALID_TRANSITION"

    body, signature = fake_gateway.build_webhook(checkout["merchant_transaction_id"], "captured")
    client.post("/checkout/webhooks/fake", content=body, headers={"X-Webhook-Signature": signature})

    resp = client.post(f"/orders/{checkout['order_id']}/refund", json={"amount": 2000, "notes": "one item returned"})
    assert resp.status_code == 200
    assert resp.json()["refunded_amount"] == 2000
    assert resp.json()["fully_refunded"] is False

    resp = client.post(f"/orders/{checkout['order_id']}/refund", json={"amount": 9000})
    assert resp.status_code == 422
    assert resp.json()["detail"]["reason"] == "INVALID_REFUND_AMOUNT"

    order = client.get(f"/orders/{checkout['order_id']}").json()
    assert (order["status"], order["refunded_amount"]) == ("paid", 2000)


def test_order_not_found(client):
    assert client.get("/orders/999").status_code == 404
    assert client.post("/orders/999/cancel").status_code == 404


def test_gateways_listing(client):
    resp = client.get("/checkout/gateways")
    assert resp.status_code == 200
    assert resp.json() == {"default": "fake", "available": ["fake"]}


def test_health(client):
    assert client.get("/health").json()["service"] == "checkout-service"
    ready = client.get("/health/ready").json()
    assert "database:connectivity" in ready["checks"]
    assert ready["checks"]["payment-gateway:configuration"]["status"] == "pass"

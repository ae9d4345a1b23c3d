from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from checkout.application.schemas import (
    CheckoutRequest,
    CheckoutResult,
    GatewayList,
    OrderRead,
    RefundOutcome,
    RefundRequest,
    VerificationOutcome,
    VerificationRequest,
    WebhookOutcome,
)
from checkout.application.service import CheckoutOrchestrator
from checkout.core_settings import get_settings
from checkout.domain.errors import (
    CheckoutError,
    GatewayError,
    InvalidSignature,
    InvalidTransition,
    OrderNotFound,
    StockError,
    ValidationError,
)
from checkout.domain.models import Order
from checkout.gateways import get_gateway_factory
from checkout.infrastructure.db import SessionLocal, get_db

router = APIRouter(prefix="/checkout", tags=["checkout"])
orders_router = APIRouter(prefix="/orders", tags=["orders"])

WEBHOOK_SIGNATURE_HEADERS = ("X-VERIFY", "X-Razorpay-Signature", "X-Webhook-Signature")

# Most specific classes first
_STATUS_CODES = (
    (InvalidSignature, 401),
    (OrderNotFound, 404),
    (StockError, 409),
    (InvalidTransition, 409),
    (ValidationError, 422),
    (GatewayError, 502),
)

def get_orchestrator() -> CheckoutOrchestrator:
    return CheckoutOrchestrator.from_settings(SessionLocal, get_settings(), get_gateway_factory())

def to_http_exception(exc: CheckoutError) -> HTTPException:
    if isinstance(exc, InvalidSignature):
        # Never reveal which check failed
        return HTTPException(status_code=401, detail={"code": exc.code, "message": "Invalid signature"})
    for error_cls, status_code in _STATUS_CODES:
        if isinstance(exc, error_cls):
            return HTTPException(status_code=status_code, detail=exc.to_dict())
    return HTTPException(status_code=500, detail=exc.to_dict())

@router.post("", response_model=CheckoutResult, status_code=201)
def initiate_checkout(
    payload: CheckoutRequest,
    user_id: int = Header(..., alias="X-User-ID"),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """Commit the order and stock, then open a payment with the default gateway."""
    try:
        return orchestrator.initiate_checkout(user_id, payload.items, payload.address, payload.notes)
    except CheckoutError as exc:
        raise to_http_exception(exc) from exc

@router.get("/gateways", response_model=GatewayList)
def list_gateways():
    factory = get_gateway_factory()
    return GatewayList(default=factory.default, available=factory.available_gateways())

@router.post("/{order_id}/verify", response_model=VerificationOutcome)
def verify_payment(
    order_id: int,
    payload: VerificationRequest,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.verify_payment(order_id, payload.payload)
    except CheckoutError as exc:
        raise to_http_exception(exc) from exc

@router.get("/status/{correlation_id}", response_model=VerificationOutcome)
def check_payment_status(
    correlation_id: str,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """Polling fallback for when neither redirect nor webhook arrived."""
    try:
        return orchestrator.check_payment_status(correlation_id)
    except CheckoutError as exc:
        raise to_http_exception(exc) from exc

@router.post("/webhooks/{gateway}", response_model=WebhookOutcome)
async def payment_webhook(
    gateway: str,
    request: Request,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    # Signatures cover the exact bytes sent, so the body is read unparsed
    raw_body = await request.body()
    signature = next(
        (request.headers[name] for name in WEBHOOK_SIGNATURE_HEADERS if request.headers.get(name)),
        None,
    )
    try:
        return await run_in_threadpool(orchestrator.handle_webhook, raw_body, gateway, signature)
    except CheckoutError as exc:
        raise to_http_exception(exc) from exc

@orders_router.get("/{order_id}", response_model=OrderRead)
def get_order(order_id: int, db: Session = Depends(get_db)):
    order = db.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order

@orders_router.post("/{order_id}/cancel", response_model=OrderRead)
def cancel_order(
    order_id: int,
    user_id: Optional[int] = Header(None, alias="X-User-ID"),
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    try:
        return orchestrator.cancel_order(order_id, user_id)
    except CheckoutError as exc:
        raise to_http_exception(exc) from exc

@orders_router.post("/{order_id}/ship", response_model=OrderRead)
def mark_shipped(order_id: int, orchestrator: CheckoutOrchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.mark_shipped(order_id)
    except CheckoutError as exc:
        raise to_http_exception(exc) from exc

@orders_router.post("/{order_id}/refund", response_model=RefundOutcome)
def refund_order(
    order_id: int,
    payload: RefundRequest,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """Refund a paid order in full or in part through its original gateway."""
    try:
        return orchestrator.refund_order(order_id, payload.amount, payload.notes)
    except CheckoutError as exc:
        raise to_http_exception(exc) from exc

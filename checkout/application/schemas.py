from pydantic import BaseModel
from datetime import datetime
from typing import Any, Dict, List, Optional

class CheckoutRequest(BaseModel):
    # Shape is checked by OrderValidator so every problem is reported at once
    items: List[Dict[str, Any]]
    address: Dict[str, Any]
    notes: Optional[str] = None

class VerificationRequest(BaseModel):
    payload: Dict[str, Any]

class CheckoutResult(BaseModel):
    order_id: int
    payment_url: Optional[str] = None
    merchant_transaction_id: str
    gateway_order_id: Optional[str] = None
    gateway: str
    amount: int
    currency: str
    receipt: str

class VerificationOutcome(BaseModel):
    success: bool
    order_id: int
    status: str
    gateway: str
    already_processed: bool = False
    message: Optional[str] = None

class WebhookOutcome(BaseModel):
    success: bool
    order_id: int
    status: str
    already_processed: bool = False

class RefundRequest(BaseModel):
    # None refunds the whole remaining balance
    amount: Optional[int] = None
    notes: Optional[str] = None

class RefundOutcome(BaseModel):
    order_id: int
    refund_id: str
    amount: int
    refunded_amount: int
    fully_refunded: bool
    status: str
    gateway: str
    gateway_status: Optional[str] = None

class OrderItemRead(BaseModel):
    id: int
    product_id: int
    quantity: int
    unit_price: int
    product_name: str
    product_description: Optional[str] = None
    class Config:
        from_attributes = True

class OrderRead(BaseModel):
    id: int
    user_id: int
    total_amount: int
    currency: str
    status: str
    gateway: str
    merchant_transaction_id: str
    receipt: str
    gateway_order_id: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    payment_instrument: Optional[str] = None
    shipping_address: Dict[str, Any]
    notes: Optional[str] = None
    refunded_amount: int = 0
    last_refund_id: Optional[str] = None
    shipped_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemRead]
    class Config:
        from_attributes = True

class GatewayList(BaseModel):
    default: str
    available: List[str]

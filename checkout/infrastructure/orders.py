"""Order persistence.

``OrderStore`` owns the single transaction that creates an order: the order
row, its item snapshots and the stock decrement commit or roll back together.
After that, status only moves through compare-and-set updates conditioned on
the row's current status, so two racing callers can never both apply a
transition.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select, update, or_
from sqlalchemy.orm import Session, sessionmaker

from checkout.domain.models import Order, OrderItem, OrderStatus
from checkout.infrastructure.stock import StockLedger
from shared.core import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class OrderLine:
    """A priced cart line, frozen at checkout time."""

    product_id: int
    quantity: int
    unit_price: int
    product_name: str
    product_description: Optional[str] = None

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity


class OrderStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Creation (transaction boundary A)
    # ------------------------------------------------------------------
    def create_with_stock(
        self,
        *,
        user_id: int,
        lines: Iterable[OrderLine],
        currency: str,
        gateway: str,
        merchant_transaction_id: str,
        receipt: str,
        shipping_address: dict,
        notes: Optional[str] = None,
    ) -> Order:
        lines = list(lines)
        with self.session_factory.begin() as session:
            ledger = StockLedger(session)
            ledger.lock(line.product_id for line in lines)
            order = Order(
                user_id=user_id,
                total_amount=sum(line.line_total for line in lines),
                currency=currency,
                status=OrderStatus.PENDING.value,
                gateway=gateway,
                merchant_transaction_id=merchant_transaction_id,
                receipt=receipt,
                shipping_address=shipping_address,
                notes=notes,
                items=[
                    OrderItem(
                        product_id=line.product_id,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        product_name=line.product_name,
                        product_description=line.product_description,
                    )
                    for line in lines
                ],
            )
            session.add(order)
            session.flush()
            for line in lines:
                ledger.decrement(line.product_id, line.quantity)
        logger.info(
            "Order committed with stock reservation",
            extra={'extra_fields': {
                'order_id': order.id,
                'user_id': user_id,
                'total_amount': order.total_amount,
                'lines': len(lines),
            }}
        )
        return order

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, order_id: int) -> Optional[Order]:
        with self.session_factory() as session:
            return session.get(Order, order_id)

    def find_by_reference(self, reference: str) -> Optional[Order]:
        """Look an order up by merchant transaction id or provider order id."""
        with self.session_factory() as session:
            return session.execute(
                select(Order).where(
                    or_(Order.merchant_transaction_id == reference, Order.gateway_order_id == reference)
                )
            ).scalars().first()

    def find_by_correlation(
        self,
        *,
        gateway_order_id: Optional[str] = None,
        gateway_transaction_id: Optional[str] = None,
        merchant_transaction_id: Optional[str] = None,
    ) -> Optional[Order]:
        """Resolve an order from webhook correlation ids.

        Provider-issued ids are tried first; the merchant transaction id covers
        deliveries that arrive before the provider id was ever stored.
        """
        candidates = (
            (Order.gateway_order_id, gateway_order_id),
            (Order.gateway_transaction_id, gateway_transaction_id),
            (Order.merchant_transaction_id, merchant_transaction_id),
        )
        with self.session_factory() as session:
            for column, value in candidates:
                if not value:
                    continue
                order = session.execute(select(Order).where(column == value)).scalars().first()
                if order is not None:
                    return order
        return None

    # ------------------------------------------------------------------
    # Writes after creation
    # ------------------------------------------------------------------
    def attach_correlation(self, order_id: int, **fields) -> None:
        fields = {key: value for key, value in fields.items() if value is not None}
        if not fields:
            return
        with self.session_factory.begin() as session:
            session.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(updated_at=datetime.utcnow(), **fields)
                .execution_options(synchronize_session=False)
            )

    def transition(
        self,
        order_id: int,
        target: OrderStatus,
        expected: OrderStatus = OrderStatus.PENDING,
        **fields,
    ) -> bool:
        """Compare-and-set the status. Returns True only for the winning caller."""
        fields = {key: value for key, value in fields.items() if value is not None}
        with self.session_factory.begin() as session:
            return self._compare_and_set(session, order_id, expected, target, **fields)

    def fail(self, order_id: int, restore_stock: bool, **fields) -> bool:
        """pending -> failed, optionally giving the reserved stock back atomically."""
        fields = {key: value for key, value in fields.items() if value is not None}
        with self.session_factory.begin() as session:
            won = self._compare_and_set(session, order_id, OrderStatus.PENDING, OrderStatus.FAILED, **fields)
            if won and restore_stock:
                self._release_stock(session, order_id)
        return won

    def cancel(self, order_id: int) -> bool:
        with self.session_factory.begin() as session:
            result = session.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.status == OrderStatus.PENDING.value,
                    Order.shipped_at.is_(None),
                )
                .values(status=OrderStatus.CANCELLED.value, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            won = result.rowcount == 1
            if won:
                self._release_stock(session, order_id)
        return won

    def mark_shipped(self, order_id: int) -> bool:
        now = datetime.utcnow()
        with self.session_factory.begin() as session:
            result = session.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.status == OrderStatus.PAID.value,
                    Order.shipped_at.is_(None),
                )
                .values(shipped_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def reserve_refund(self, order_id: int, amount: int) -> bool:
        """Claim ``amount`` of a paid order's balance before calling the provider.

        The guard keeps concurrent refunds from exceeding what was paid.
        """
        with self.session_factory.begin() as session:
            result = session.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.status == OrderStatus.PAID.value,
                    Order.refunded_amount + amount <= Order.total_amount,
                )
                .values(refunded_amount=Order.refunded_amount + amount, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def release_refund(self, order_id: int, amount: int) -> None:
        with self.session_factory.begin() as session:
            session.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(refunded_amount=Order.refunded_amount - amount, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )

    def record_refund(self, order_id: int, refund_id: str) -> None:
        with self.session_factory.begin() as session:
            session.execute(
                update(Order)
                .where(Order.id == order_id)
                .values(last_refund_id=refund_id, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _compare_and_set(
        self,
        session: Session,
        order_id: int,
        expected: OrderStatus,
        target: OrderStatus,
        **fields,
    ) -> bool:
        result = session.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == expected.value)
            .values(status=target.value, updated_at=datetime.utcnow(), **fields)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _release_stock(self, session: Session, order_id: int) -> None:
        ledger = StockLedger(session)
        items = session.execute(
            select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.product_id)
        ).scalars().all()
        for item in items:
            ledger.restore(item.product_id, item.quantity)
        logger.info(
            "Stock released for order",
            extra={'extra_fields': {'order_id': order_id, 'lines': len(items)}}
        )

"""Per-product inventory movements.

The ledger never opens or commits a transaction itself: it is always handed
the session of the caller's unit of work, so a decrement becomes visible only
together with the order that caused it.
"""

from typing import Dict, Iterable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from checkout.domain.errors import StockError
from checkout.domain.models import Product
from shared.core import get_logger

logger = get_logger(__name__)


class StockLedger:
    def __init__(self, session: Session):
        self.session = session

    def lock(self, product_ids: Iterable[int]) -> Dict[int, Product]:
        """Take row locks on the given products.

        Rows are locked in ascending id order so two checkouts touching the
        same products can never deadlock each other. Dialects without
        ``FOR UPDATE`` (SQLite) ignore the clause and rely on the conditional
        decrement alone.
        """
        ids = sorted(set(product_ids))
        if not ids:
            return {}
        rows = self.session.execute(
            select(Product).where(Product.id.in_(ids)).order_by(Product.id).with_for_update()
        ).scalars()
        return {product.id: product for product in rows}

    def decrement(self, product_id: int, quantity: int) -> None:
        # Check-and-decrement in one statement; the row count decides.
        result = self.session.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "Stock decrement rejected",
                extra={'extra_fields': {'product_id': product_id, 'requested': quantity}}
            )
            raise StockError(
                "Insufficient stock",
                errors=[f"Product {product_id}: Insufficient stock for requested quantity {quantity}"],
                reason="INSUFFICIENT_STOCK",
            )

    def restore(self, product_id: int, quantity: int) -> None:
        self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session=False)
        )

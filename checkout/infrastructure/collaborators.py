"""SQL-backed stand-ins for the catalog and cart services.

Checkout only needs a narrow slice of each: price/stock lookups from the
catalog and a "clear this user's cart" call. Anything richer belongs to the
owning service.
"""

from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy import delete
from sqlalchemy.orm import sessionmaker

from checkout.domain.models import CartItem, Product
from shared.core import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProductSnapshot:
    id: int
    name: str
    description: Optional[str]
    price: int
    sale_price: Optional[int]
    stock: int

    @property
    def unit_price(self) -> int:
        """Sale price wins whenever one is set."""
        if self.sale_price is not None and self.sale_price > 0:
            return self.sale_price
        return self.price


class Catalog(Protocol):
    def get_product(self, product_id: int) -> Optional[ProductSnapshot]: ...

    def get_stock(self, product_id: int) -> Optional[int]: ...


class Cart(Protocol):
    def clear_cart(self, user_id: int) -> None: ...


class SqlCatalog:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_product(self, product_id: int) -> Optional[ProductSnapshot]:
        with self.session_factory() as session:
            product = session.get(Product, product_id)
            if product is None:
                return None
            return ProductSnapshot(
                id=product.id,
                name=product.name,
                description=product.description,
                price=product.price,
                sale_price=product.sale_price,
                stock=product.stock,
            )

    def get_stock(self, product_id: int) -> Optional[int]:
        product = self.get_product(product_id)
        return product.stock if product else None


class SqlCart:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def clear_cart(self, user_id: int) -> None:
        with self.session_factory.begin() as session:
            result = session.execute(delete(CartItem).where(CartItem.user_id == user_id))
        logger.info(
            "Cart cleared",
            extra={'extra_fields': {'user_id': user_id, 'removed_items': result.rowcount}}
        )

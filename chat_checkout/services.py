from __future__ import annotations

import logging
import secrets
import time
from typing import Callable, Optional

from chat_checkout.models import CartLine, Product
from chat_checkout.store import InMemoryStore

logger = logging.getLogger(__name__)


class InventoryService:
    def __init__(self, store: InMemoryStore):
        self.store = store

    def get_product(self, product_id: str) -> Optional[Product]:
        return self.store.products.get(product_id)

    def list_products(self) -> list[Product]:
        return list(self.store.products.values())

    def is_in_stock(self, product_id: str) -> bool:
        item = self.store.products.get(product_id)
        if not item:
            logger.warning(f"stock lookup for unknown product {product_id}")
            return False
        return item.on_hand > 0

    def cart_line(self, product_id: str) -> Optional[CartLine]:
        item = self.store.products.get(product_id)
        if not item:
            return None
        return CartLine(product_id=item.product_id, name=item.name, unit_price=item.price)


class OrderIdGenerator:
    """
    Produces `ORD-<epoch-ms>-<8 hex chars>`.

    No shared counter: two ids collide only if they share the millisecond and the
    32 random bits, about 1 in 4.3e9 per pair minted within the same millisecond.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    def __call__(self, customer_id: str) -> str:
        return f"ORD-{int(self._clock() * 1000)}-{secrets.token_hex(4).upper()}"

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict

from marketgate.adapters.backend import BackendService
from marketgate.domain.models import Cart

logger = logging.getLogger(__name__)


class CartService:
    """Cart mutations serialized per product.

    Writes to one product line run one at a time in arrival order; writes to
    different lines do not wait on each other.
    """

    def __init__(self, backend: BackendService) -> None:
        self._backend = backend
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def item_lock(self, product_id: str) -> asyncio.Lock:
        return self._locks[product_id]

    async def get(self) -> Cart:
        return await self._backend.get_cart()

    async def add(self, product_id: str, quantity: int = 1) -> Cart:
        if quantity < 1:
            raise ValueError("quantity must be >= 1")
        async with self.item_lock(product_id):
            return await self._backend.add_cart_item(product_id, quantity)

    async def update(self, product_id: str, quantity: int) -> Cart:
        async with self.item_lock(product_id):
            if quantity < 1:
                logger.debug("cart_line_removed_on_zero", extra={"extra": {"product_id": product_id}})
                return await self._backend.remove_cart_item(product_id)
            return await self._backend.update_cart_item(product_id, quantity)

    async def remove(self, product_id: str) -> Cart:
        async with self.item_lock(product_id):
            return await self._backend.remove_cart_item(product_id)

    async def remove_locked(self, product_id: str) -> Cart:
        """Remove a line while the caller already holds ``item_lock(product_id)``."""
        return await self._backend.remove_cart_item(product_id)

    async def clear(self) -> None:
        await self._backend.clear_cart()

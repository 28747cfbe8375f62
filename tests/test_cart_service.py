from __future__ import annotations

import asyncio

import pytest

from marketgate.adapters.memory_backend import InMemoryBackendService
from marketgate.services.cart_service import CartService

BUYER_ID = "6a1b2c3d4e5f6a7b8c9d0e1f"
SELLER_ID = "5f1a2b3c4d5e6f7a8b9c0d1e"
PRODUCT_ID = "a1b2c3d4e5f6a7b8c9d0e1f2"


def test_add_twice_increases_quantity(market: InMemoryBackendService) -> None:
    market.sign_in(BUYER_ID)
    service = CartService(market)

    async def _run():
        await service.add(PRODUCT_ID, 1)
        return await service.add(PRODUCT_ID, 2)

    cart = asyncio.run(_run())
    item = cart.find(PRODUCT_ID)
    assert item is not None and item.quantity == 3


def test_add_rejects_non_positive_quantity(market: InMemoryBackendService) -> None:
    market.sign_in(BUYER_ID)
    with pytest.raises(ValueError):
        asyncio.run(CartService(market).add(PRODUCT_ID, 0))


def test_update_to_zero_removes_line(market: InMemoryBackendService) -> None:
    market.sign_in(BUYER_ID)
    service = CartService(market)

    async def _run():
        await service.add(PRODUCT_ID, 2)
        return await service.update(PRODUCT_ID, 0)

    cart = asyncio.run(_run())
    assert not cart.contains(PRODUCT_ID)
    assert market.calls["update_cart_item"] == 0


def test_writes_to_same_item_are_serialized(market: InMemoryBackendService) -> None:
    market.sign_in(BUYER_ID)
    service = CartService(market)

    async def _run():
        await service.add(PRODUCT_ID, 1)
        release = market.hold("update_cart_item")
        update = asyncio.create_task(service.update(PRODUCT_ID, 5))
        remove = asyncio.create_task(service.remove(PRODUCT_ID))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        # remove is queued behind the held update
        assert market.calls["remove_cart_item"] == 0
        assert service.item_lock(PRODUCT_ID).locked()
        release.set()
        await asyncio.gather(update, remove)
        return await service.get()

    cart = asyncio.run(_run())
    assert not cart.contains(PRODUCT_ID)
    assert market.calls["remove_cart_item"] == 1


def test_writes_to_different_items_do_not_wait(market: InMemoryBackendService) -> None:
    other_product = market.add_product(seller_id=SELLER_ID, price=5, name="Lamp")
    market.sign_in(BUYER_ID)
    service = CartService(market)

    async def _run():
        await service.add(PRODUCT_ID, 1)
        await service.add(other_product, 1)
        release = market.hold("update_cart_item")
        held = asyncio.create_task(service.update(PRODUCT_ID, 4))
        await asyncio.sleep(0)
        cart = await service.remove(other_product)
        release.set()
        await held
        return cart

    cart = asyncio.run(_run())
    assert not cart.contains(other_product)
    assert market.cart_of(BUYER_ID) == {PRODUCT_ID: 4}


def test_clear_empties_cart(market: InMemoryBackendService) -> None:
    market.sign_in(BUYER_ID)
    service = CartService(market)

    async def _run():
        await service.add(PRODUCT_ID, 1)
        await service.clear()
        return await service.get()

    assert asyncio.run(_run()).items == ()

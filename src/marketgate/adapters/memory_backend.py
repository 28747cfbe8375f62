from __future__ import annotations

import asyncio
import uuid
from collections import Counter, defaultdict
from collections.abc import Mapping
from datetime import UTC, datetime
from decimal import Decimal

from marketgate.adapters.backend import BackendService, clean_order_filter
from marketgate.domain.errors import BackendError, InvalidTransition
from marketgate.domain.lifecycle import Actor, LifecycleAction, OrderLifecycleMachine
from marketgate.domain.models import (
    ActorRef,
    Cart,
    CartItem,
    DeliveryInfo,
    Order,
    OrderStatus,
    ProductRef,
    Role,
)


def new_object_id() -> str:
    return uuid.uuid4().hex[:24]


class InMemoryBackendService(BackendService):
    """Dry-run backend holding users, products, orders and one cart per user in memory.

    Failures can be injected per operation name with ``fail_next`` and calls can be
    held open with ``hold`` to exercise interleavings.
    """

    def __init__(self, *, machine: OrderLifecycleMachine | None = None) -> None:
        self.machine = machine or OrderLifecycleMachine()
        self.users: dict[str, dict[str, object]] = {}
        self.tokens: dict[str, str] = {}
        self.products: dict[str, ProductRef] = {}
        self.orders: dict[str, Order] = {}
        self.carts: dict[str, dict[str, int]] = defaultdict(dict)
        self.current_user_id: str | None = None
        self.calls: Counter[str] = Counter()
        self._failures: dict[str, list[Exception]] = defaultdict(list)
        self._holds: dict[str, asyncio.Event] = {}

    # -- test and demo helpers -------------------------------------------------

    def add_user(
        self,
        *,
        user_id: str | None = None,
        role: Role | str = Role.USER,
        name: str = "",
        email: str | None = None,
        phone: str | None = None,
    ) -> str:
        uid = user_id or new_object_id()
        self.users[uid] = {
            "id": uid,
            "role": str(Role(role)),
            "name": name or uid,
            "email": email,
            "phone": phone,
            "isBanned": False,
        }
        return uid

    def add_product(
        self,
        *,
        seller_id: str,
        price: Decimal | int | str,
        name: str = "product",
        stock: int | None = None,
        product_id: str | None = None,
    ) -> str:
        pid = product_id or new_object_id()
        self.products[pid] = ProductRef(
            id=pid, name=name, price=Decimal(str(price)), stock=stock, seller_id=seller_id
        )
        return pid

    def sign_in(self, user_id: str | None) -> None:
        self.current_user_id = user_id

    def fail_next(self, operation: str, exc: Exception, *, times: int = 1) -> None:
        self._failures[operation].extend([exc] * times)

    def hold(self, operation: str) -> asyncio.Event:
        """Block ``operation`` until the returned event is set."""
        event = asyncio.Event()
        self._holds[operation] = event
        return event

    def cart_of(self, user_id: str) -> dict[str, int]:
        return dict(self.carts.get(user_id, {}))

    async def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        event = self._holds.get(operation)
        if event is not None:
            await event.wait()
        queue = self._failures.get(operation)
        if queue:
            raise queue.pop(0)

    def _require_user(self) -> str:
        if self.current_user_id is None or self.current_user_id not in self.users:
            raise BackendError("Unauthorized", status_code=401)
        return self.current_user_id

    def _actor_ref(self, user_id: str) -> ActorRef:
        user = self.users.get(user_id, {})
        return ActorRef(
            id=user_id,
            name=user.get("name"),
            email=user.get("email"),
            phone=user.get("phone"),
        )

    def _cart(self, user_id: str) -> Cart:
        items = [
            CartItem(product=self.products.get(pid) or ProductRef(id=pid), quantity=qty)
            for pid, qty in self.carts.get(user_id, {}).items()
        ]
        return Cart(items=tuple(items))

    def _order(self, order_id: str) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise BackendError("Order not found", status_code=404)
        return order

    def _transition(self, order_id: str, action: LifecycleAction, **kwargs: object) -> Order:
        order = self._order(order_id)
        user_id = self.current_user_id
        role = self.users.get(user_id or "", {}).get("role")
        actor = Actor(user_id=user_id, role=Role(str(role)) if role else None)
        try:
            updated = self.machine.apply(order, action, actor, **kwargs)
        except InvalidTransition as exc:
            status = 403 if exc.reason == "actor_not_permitted" else 409
            raise BackendError(str(exc), status_code=status, error_message=exc.reason) from exc
        self.orders[order_id] = updated
        return updated

    # -- backend contract --------------------------------------------------------

    async def get_session(self) -> dict[str, object] | None:
        await self._enter("get_session")
        if self.current_user_id is None or self.current_user_id not in self.users:
            return None
        return {"user": dict(self.users[self.current_user_id])}

    async def get_current_user(self, token: str) -> dict[str, object] | None:
        await self._enter("get_current_user")
        user_id = self.tokens.get(token)
        if user_id is None or user_id not in self.users:
            raise BackendError("Unauthorized", status_code=401)
        return {"success": True, "user": dict(self.users[user_id])}

    async def sign_out(self) -> None:
        await self._enter("sign_out")
        self.current_user_id = None

    async def get_orders(self, order_filter: Mapping[str, object] | None = None) -> list[Order]:
        await self._enter("get_orders")
        cleaned = clean_order_filter(order_filter)
        rows = list(self.orders.values())
        if "buyer" in cleaned:
            rows = [row for row in rows if row.buyer.id == cleaned["buyer"]]
        if "seller" in cleaned:
            rows = [row for row in rows if row.seller.id == cleaned["seller"]]
        if "status" in cleaned:
            rows = [row for row in rows if row.status.value == cleaned["status"]]
        return sorted(rows, key=lambda row: row.created_at)

    async def get_order_by_id(self, order_id: str) -> Order:
        await self._enter("get_order_by_id")
        return self._order(order_id)

    async def accept_order(self, order_id: str) -> Order:
        await self._enter("accept_order")
        self._require_user()
        return self._transition(order_id, LifecycleAction.ACCEPT)

    async def submit_payment(self, order_id: str, payment_proof: str) -> Order:
        await self._enter("submit_payment")
        self._require_user()
        return self._transition(order_id, LifecycleAction.SUBMIT_PAYMENT, payment_proof=payment_proof)

    async def confirm_payment(self, order_id: str) -> Order:
        await self._enter("confirm_payment")
        self._require_user()
        return self._transition(order_id, LifecycleAction.CONFIRM_PAYMENT)

    async def ship_order(self, order_id: str, delivery_info: DeliveryInfo) -> Order:
        await self._enter("ship_order")
        self._require_user()
        return self._transition(order_id, LifecycleAction.SHIP, delivery_info=delivery_info)

    async def complete_order(self, order_id: str) -> Order:
        await self._enter("complete_order")
        self._require_user()
        return self._transition(order_id, LifecycleAction.COMPLETE)

    async def cancel_order(self, order_id: str) -> Order:
        await self._enter("cancel_order")
        self._require_user()
        order = self._order(order_id)
        updated = self._transition(order_id, LifecycleAction.CANCEL)
        product = self.products.get(order.product.id)
        if product is not None and product.stock is not None:
            self.products[product.id] = product.model_copy(
                update={"stock": product.stock + order.quantity}
            )
        return updated

    async def get_product(self, product_id: str) -> ProductRef:
        await self._enter("get_product")
        product = self.products.get(product_id)
        if product is None:
            raise BackendError("Product not found", status_code=404)
        return product

    async def get_cart(self) -> Cart:
        await self._enter("get_cart")
        return self._cart(self._require_user())

    async def add_cart_item(self, product_id: str, quantity: int) -> Cart:
        await self._enter("add_cart_item")
        user_id = self._require_user()
        if product_id not in self.products:
            raise BackendError("Product not found", status_code=404)
        lines = self.carts[user_id]
        lines[product_id] = lines.get(product_id, 0) + quantity
        return self._cart(user_id)

    async def update_cart_item(self, product_id: str, quantity: int) -> Cart:
        await self._enter("update_cart_item")
        user_id = self._require_user()
        lines = self.carts[user_id]
        if product_id not in lines:
            raise BackendError("Item not found in cart", status_code=404)
        lines[product_id] = quantity
        return self._cart(user_id)

    async def remove_cart_item(self, product_id: str) -> Cart:
        await self._enter("remove_cart_item")
        user_id = self._require_user()
        if user_id not in self.carts:
            raise BackendError("Cart not found", status_code=404)
        self.carts[user_id].pop(product_id, None)
        return self._cart(user_id)

    async def clear_cart(self) -> None:
        await self._enter("clear_cart")
        self.carts.pop(self._require_user(), None)

    async def create_order(
        self,
        *,
        product_id: str,
        seller_id: str | None,
        quantity: int,
        message: str | None = None,
    ) -> Order:
        await self._enter("create_order")
        buyer_id = self._require_user()
        product = self.products.get(product_id)
        if product is None:
            raise BackendError("Product not found", status_code=404)
        if quantity <= 0:
            raise BackendError("Quantity must be a positive number", status_code=400)
        if product.stock is not None and quantity > product.stock:
            raise BackendError("Requested quantity exceeds stock", status_code=400)
        seller = seller_id or product.seller_id
        if seller is None:
            raise BackendError("Seller, product, and quantity are required", status_code=400)

        now = datetime.now(UTC)
        order = Order(
            id=new_object_id(),
            status=OrderStatus.PENDING,
            buyer=self._actor_ref(buyer_id),
            seller=self._actor_ref(seller),
            product=product,
            quantity=quantity,
            total_amount=(product.price or Decimal("0")) * quantity,
            created_at=now,
            updated_at=now,
            message=message,
        )
        self.orders[order.id] = order
        if product.stock is not None:
            self.products[product_id] = product.model_copy(update={"stock": product.stock - quantity})
        return order

    async def ban_user(self, user_id: str, *, ban: bool) -> dict[str, object]:
        await self._enter("ban_user")
        caller = self._require_user()
        if self.users[caller].get("role") != Role.ADMIN.value:
            raise BackendError("Forbidden", status_code=403)
        user = self.users.get(user_id)
        if user is None:
            raise BackendError("User not found", status_code=404)
        user["isBanned"] = ban
        return {"message": "User banned" if ban else "User unbanned", "user": dict(user)}

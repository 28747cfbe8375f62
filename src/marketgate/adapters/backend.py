from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping

from marketgate.domain.models import Cart, DeliveryInfo, Order, ProductRef


def clean_order_filter(order_filter: Mapping[str, object] | None) -> dict[str, str]:
    if not order_filter:
        return {}
    cleaned: dict[str, str] = {}
    for key, value in order_filter.items():
        if value is None:
            continue
        text = str(value).strip()
        if text and text != "undefined":
            cleaned[key] = text
    return cleaned


class BackendService(ABC):
    """Operations the core needs from the remote marketplace service.

    Implementations raise ``NetworkError`` for transport failures and
    ``BackendError`` for any non-success answer.
    """

    @abstractmethod
    async def get_session(self) -> dict[str, object] | None:
        """Return ``{"user": {...}}`` for the cookie session, or None when absent."""
        raise NotImplementedError

    async def get_current_user(self, token: str) -> dict[str, object] | None:
        del token
        return None

    async def sign_out(self) -> None:
        return None

    @abstractmethod
    async def get_orders(self, order_filter: Mapping[str, object] | None = None) -> list[Order]:
        raise NotImplementedError

    @abstractmethod
    async def get_order_by_id(self, order_id: str) -> Order:
        raise NotImplementedError

    @abstractmethod
    async def accept_order(self, order_id: str) -> Order:
        raise NotImplementedError

    @abstractmethod
    async def submit_payment(self, order_id: str, payment_proof: str) -> Order:
        raise NotImplementedError

    @abstractmethod
    async def confirm_payment(self, order_id: str) -> Order:
        raise NotImplementedError

    @abstractmethod
    async def ship_order(self, order_id: str, delivery_info: DeliveryInfo) -> Order:
        raise NotImplementedError

    @abstractmethod
    async def complete_order(self, order_id: str) -> Order:
        raise NotImplementedError

    @abstractmethod
    async def cancel_order(self, order_id: str) -> Order:
        raise NotImplementedError

    @abstractmethod
    async def get_product(self, product_id: str) -> ProductRef:
        raise NotImplementedError

    @abstractmethod
    async def get_cart(self) -> Cart:
        raise NotImplementedError

    @abstractmethod
    async def add_cart_item(self, product_id: str, quantity: int) -> Cart:
        raise NotImplementedError

    @abstractmethod
    async def update_cart_item(self, product_id: str, quantity: int) -> Cart:
        raise NotImplementedError

    @abstractmethod
    async def remove_cart_item(self, product_id: str) -> Cart:
        raise NotImplementedError

    @abstractmethod
    async def clear_cart(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def create_order(
        self,
        *,
        product_id: str,
        seller_id: str | None,
        quantity: int,
        message: str | None = None,
    ) -> Order:
        raise NotImplementedError

    @abstractmethod
    async def ban_user(self, user_id: str, *, ban: bool) -> dict[str, object]:
        raise NotImplementedError

    async def close(self) -> None:
        """Release resources associated with the backend client."""
        return None

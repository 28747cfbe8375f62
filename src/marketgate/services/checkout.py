from __future__ import annotations

import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass
from decimal import Decimal
from typing import TypeVar

from marketgate.adapters.backend import BackendService
from marketgate.domain.errors import (
    CartConflict,
    MarketGateError,
    NetworkError,
    ReconciliationError,
)
from marketgate.domain.models import Cart, CartItem, Order, OrderStatus
from marketgate.services.backend_errors import ErrorCategory, classify_backend_error
from marketgate.services.cart_service import CartService

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PendingRemoval:
    order_id: str
    product_id: str
    reason: str
    ts_ms: int


class PendingRemovalRegistry:
    """Orders whose source cart line is still present after creation."""

    def __init__(self) -> None:
        self._records: dict[str, PendingRemoval] = {}

    def mark_pending(self, order_id: str, product_id: str, reason: str) -> None:
        self._records[order_id] = PendingRemoval(
            order_id=order_id,
            product_id=product_id,
            reason=reason,
            ts_ms=int(time.time() * 1000),
        )

    def mark_resolved(self, order_id: str) -> None:
        self._records.pop(order_id, None)

    def has_pending(self) -> bool:
        return bool(self._records)

    def count_pending(self) -> int:
        return len(self._records)

    def snapshot(self) -> list[PendingRemoval]:
        return sorted(self._records.values(), key=lambda record: record.order_id)


@dataclass(frozen=True)
class ConversionResult:
    order: Order | None = None
    error: MarketGateError | None = None
    cart: Cart | None = None
    expected_total: Decimal | None = None

    @property
    def ok(self) -> bool:
        return self.order is not None and self.error is None

    @property
    def total_mismatch(self) -> bool:
        """The backend priced the order differently from the product listing."""
        return (
            self.order is not None
            and self.expected_total is not None
            and self.order.total_amount != self.expected_total
        )


class CartToOrderConverter:
    """Turns one cart line into one pending order and removes the line.

    Nothing is changed if any check fails before the order is created. Once the
    order exists, removal of the line is retried; if it still fails the order is
    reported with a ``ReconciliationError`` and tracked until ``reconcile_pending``
    clears it.
    """

    def __init__(
        self,
        backend: BackendService,
        cart: CartService,
        *,
        removal_attempts: int = 3,
        registry: PendingRemovalRegistry | None = None,
    ) -> None:
        if removal_attempts < 1:
            raise ValueError("removal_attempts must be >= 1")
        self._backend = backend
        self._cart = cart
        self.removal_attempts = removal_attempts
        self.registry = registry or PendingRemovalRegistry()

    async def convert(self, item: CartItem, message: str | None = None) -> ConversionResult:
        product_id = item.product_id
        async with self._cart.item_lock(product_id):
            try:
                order, expected_total = await self._create(item, message)
            except (CartConflict, NetworkError) as exc:
                logger.warning(
                    "checkout_rejected",
                    extra={
                        "extra": {
                            "product_id": product_id,
                            "error_type": type(exc).__name__,
                            "error": str(exc),
                        }
                    },
                )
                return ConversionResult(error=exc, cart=await self._resync())

            removal_error = await self._remove_line(order, product_id)

        if removal_error is not None:
            return ConversionResult(order=order, error=removal_error, expected_total=expected_total)
        logger.info(
            "checkout_completed",
            extra={
                "extra": {
                    "order_id": order.id,
                    "product_id": product_id,
                    "total_amount": str(order.total_amount),
                }
            },
        )
        return ConversionResult(order=order, expected_total=expected_total)

    async def reconcile_pending(self) -> list[str]:
        """Retry removal for every tracked order; returns the order ids now resolved."""
        resolved: list[str] = []
        for record in self.registry.snapshot():
            async with self._cart.item_lock(record.product_id):
                try:
                    await self._cart.remove_locked(record.product_id)
                except MarketGateError as exc:
                    if not _line_gone(exc):
                        logger.warning(
                            "checkout_reconcile_failed",
                            extra={
                                "extra": {
                                    "order_id": record.order_id,
                                    "product_id": record.product_id,
                                    "error": str(exc),
                                }
                            },
                        )
                        continue
            self.registry.mark_resolved(record.order_id)
            resolved.append(record.order_id)
        return resolved

    async def _create(self, item: CartItem, message: str | None) -> tuple[Order, Decimal | None]:
        product_id = item.product_id
        if item.quantity < 1:
            raise CartConflict("quantity must be >= 1", product_id=product_id)

        product = await self._guard(self._backend.get_product(product_id), product_id)
        cart = await self._guard(self._backend.get_cart(), product_id)
        if not cart.contains(product_id):
            raise CartConflict(f"product {product_id} is no longer in the cart", product_id=product_id)
        if product.stock is not None and item.quantity > product.stock:
            raise CartConflict(
                f"requested {item.quantity} but only {product.stock} in stock",
                product_id=product_id,
            )

        # Not retried: a repeated create could leave two orders.
        order = await self._guard(
            self._backend.create_order(
                product_id=product_id,
                seller_id=product.seller_id,
                quantity=item.quantity,
                message=message,
            ),
            product_id,
        )
        if order.status != OrderStatus.PENDING:
            logger.warning(
                "checkout_unexpected_status",
                extra={"extra": {"order_id": order.id, "status": order.status.value}},
            )
        expected_total = product.price * item.quantity if product.price is not None else None
        if expected_total is not None and order.total_amount != expected_total:
            logger.warning(
                "checkout_total_mismatch",
                extra={
                    "extra": {
                        "order_id": order.id,
                        "expected": str(expected_total),
                        "actual": str(order.total_amount),
                    }
                },
            )
        return order, expected_total

    async def _guard(self, awaitable: Awaitable[T], product_id: str) -> T:
        try:
            return await awaitable
        except NetworkError:
            raise
        except MarketGateError as exc:
            category = classify_backend_error(exc)
            if category == ErrorCategory.NETWORK:
                raise NetworkError(str(exc)) from exc
            raise CartConflict(str(exc), product_id=product_id) from exc

    async def _remove_line(self, order: Order, product_id: str) -> ReconciliationError | None:
        last_error: MarketGateError | None = None
        for attempt in range(1, self.removal_attempts + 1):
            try:
                cart = await self._cart.remove_locked(product_id)
            except MarketGateError as exc:
                if _line_gone(exc):
                    return None
                last_error = exc
                logger.info(
                    "cart_removal_retry",
                    extra={
                        "extra": {
                            "order_id": order.id,
                            "product_id": product_id,
                            "attempt": attempt,
                            "error": str(exc),
                        }
                    },
                )
                continue
            if not cart.contains(product_id):
                return None
            last_error = None

        reason = str(last_error) if last_error is not None else "line still present after removal"
        self.registry.mark_pending(order.id, product_id, reason)
        logger.error(
            "checkout_reconciliation_required",
            extra={"extra": {"order_id": order.id, "product_id": product_id, "reason": reason}},
        )
        return ReconciliationError(
            f"order {order.id} created but cart line {product_id} was not removed",
            order_id=order.id,
            product_id=product_id,
        )

    async def _resync(self) -> Cart | None:
        try:
            return await self._backend.get_cart()
        except MarketGateError as exc:
            logger.warning("cart_resync_failed", extra={"extra": {"error": str(exc)}})
            return None


def _line_gone(exc: MarketGateError) -> bool:
    # The backend answers 404 once the cart or the line no longer exists.
    return classify_backend_error(exc) == ErrorCategory.NOT_FOUND

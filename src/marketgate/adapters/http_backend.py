from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from time import monotonic
from typing import Any

import httpx

from marketgate.adapters.backend import BackendService, clean_order_filter
from marketgate.adapters.retry import RetryDecision, async_retry, compute_delay
from marketgate.domain.errors import BackendError, NetworkError
from marketgate.domain.models import Cart, DeliveryInfo, Order, ProductRef
from marketgate.services.backend_errors import is_retryable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpReliabilityConfig:
    connect_timeout_seconds: float = 5.0
    read_timeout_seconds: float = 10.0
    write_timeout_seconds: float = 10.0
    pool_timeout_seconds: float = 5.0
    idempotent_retry_attempts: int = 1
    base_delay_seconds: float = 0.3
    max_delay_seconds: float = 3.0


class HttpBackendService(BackendService):
    """Backend contract over the marketplace REST API.

    Fetches and order acceptance are retried once on transient failures;
    every other mutation is sent exactly once and its failure surfaces to the caller.
    """

    def __init__(
        self,
        *,
        base_url: str,
        reliability: HttpReliabilityConfig | None = None,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.reliability = reliability or HttpReliabilityConfig()
        timeout = httpx.Timeout(
            connect=self.reliability.connect_timeout_seconds,
            read=self.reliability.read_timeout_seconds,
            write=self.reliability.write_timeout_seconds,
            pool=self.reliability.pool_timeout_seconds,
        )
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        idempotent: bool,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any] | None:
        async def _call() -> dict[str, Any] | None:
            started = monotonic()
            try:
                response = await self._client.request(
                    method, path, params=params, json=json_body, headers=headers
                )
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                raise NetworkError(f"{method} {path} failed: {type(exc).__name__}") from exc

            logger.debug(
                "backend_call",
                extra={
                    "extra": {
                        "method": method,
                        "path": path,
                        "status_code": response.status_code,
                        "latency_ms": round((monotonic() - started) * 1000, 2),
                    }
                },
            )
            if response.status_code >= 400:
                self._raise_http_error(response, method=method, path=path)
            if not response.content:
                return None
            try:
                payload = response.json()
            except ValueError as exc:
                raise BackendError(
                    "backend payload is not JSON",
                    status_code=response.status_code,
                    request_method=method,
                    request_path=path,
                ) from exc
            if payload is None:
                return None
            if not isinstance(payload, dict):
                raise BackendError(
                    "backend payload must be an object",
                    status_code=response.status_code,
                    request_method=method,
                    request_path=path,
                )
            return payload

        def _classify(exc: Exception, attempt: int) -> RetryDecision:
            if not idempotent or not is_retryable(exc):
                return RetryDecision.stop()
            retry_after = exc.retry_after if isinstance(exc, BackendError) else None
            delay = compute_delay(
                attempt=attempt,
                base_delay_seconds=self.reliability.base_delay_seconds,
                max_delay_seconds=self.reliability.max_delay_seconds,
                retry_after_header=retry_after,
            )
            logger.info(
                "backend_retry",
                extra={
                    "extra": {
                        "method": method,
                        "path": path,
                        "attempt": attempt,
                        "delay_seconds": round(delay, 3),
                        "error_type": type(exc).__name__,
                    }
                },
            )
            return RetryDecision(retry=True, delay_seconds=delay)

        max_attempts = 1 + max(0, self.reliability.idempotent_retry_attempts) if idempotent else 1
        return await async_retry(_call, max_attempts=max_attempts, classify=_classify)

    async def get_session(self) -> dict[str, object] | None:
        return await self.request("GET", "/api/auth/get-session", idempotent=True)

    async def get_current_user(self, token: str) -> dict[str, object] | None:
        return await self.request(
            "GET",
            "/api/user/me",
            idempotent=True,
            headers={"Authorization": f"Bearer {token}"},
        )

    async def sign_out(self) -> None:
        await self.request("POST", "/api/auth/sign-out", idempotent=False)

    async def get_orders(self, order_filter: Mapping[str, object] | None = None) -> list[Order]:
        payload = await self.request(
            "GET", "/api/orders", idempotent=True, params=clean_order_filter(order_filter) or None
        )
        rows = (payload or {}).get("orders") or []
        return [Order.model_validate(row) for row in rows]

    async def get_order_by_id(self, order_id: str) -> Order:
        payload = await self.request("GET", f"/api/orders/{order_id}", idempotent=True)
        return self._order_from(payload, method="GET", path=f"/api/orders/{order_id}")

    async def accept_order(self, order_id: str) -> Order:
        path = f"/api/orders/{order_id}/accept"
        return self._order_from(await self.request("PUT", path, idempotent=True), "PUT", path)

    async def submit_payment(self, order_id: str, payment_proof: str) -> Order:
        path = f"/api/orders/{order_id}/upload-proof"
        payload = await self.request(
            "PUT", path, idempotent=False, json_body={"paymentProof": payment_proof}
        )
        return self._order_from(payload, "PUT", path)

    async def confirm_payment(self, order_id: str) -> Order:
        path = f"/api/orders/{order_id}/confirm-payment"
        return self._order_from(await self.request("PUT", path, idempotent=False), "PUT", path)

    async def ship_order(self, order_id: str, delivery_info: DeliveryInfo) -> Order:
        path = f"/api/orders/{order_id}/delivery"
        body = delivery_info.model_dump(mode="json", by_alias=True, exclude_none=True)
        payload = await self.request("PUT", path, idempotent=False, json_body=body)
        return self._order_from(payload, "PUT", path)

    async def complete_order(self, order_id: str) -> Order:
        path = f"/api/orders/{order_id}/status"
        payload = await self.request(
            "PUT", path, idempotent=False, json_body={"status": "completed"}
        )
        return self._order_from(payload, "PUT", path)

    async def cancel_order(self, order_id: str) -> Order:
        path = f"/api/orders/{order_id}/cancel"
        return self._order_from(await self.request("PUT", path, idempotent=False), "PUT", path)

    async def get_product(self, product_id: str) -> ProductRef:
        path = f"/api/products/{product_id}"
        payload = await self.request("GET", path, idempotent=True) or {}
        product = payload.get("product", payload)
        if not isinstance(product, dict) or not product:
            raise BackendError("product payload missing", request_method="GET", request_path=path)
        return ProductRef.coerce(product)

    async def get_cart(self) -> Cart:
        return self._cart_from(await self.request("GET", "/api/cart", idempotent=True))

    async def add_cart_item(self, product_id: str, quantity: int) -> Cart:
        payload = await self.request(
            "POST",
            "/api/cart/add",
            idempotent=False,
            json_body={"productId": product_id, "quantity": quantity},
        )
        return self._cart_from(payload)

    async def update_cart_item(self, product_id: str, quantity: int) -> Cart:
        payload = await self.request(
            "PUT",
            f"/api/cart/update/{product_id}",
            idempotent=False,
            json_body={"quantity": quantity},
        )
        return self._cart_from(payload)

    async def remove_cart_item(self, product_id: str) -> Cart:
        payload = await self.request("DELETE", f"/api/cart/remove/{product_id}", idempotent=False)
        return self._cart_from(payload)

    async def clear_cart(self) -> None:
        await self.request("DELETE", "/api/cart/clear", idempotent=False)

    async def create_order(
        self,
        *,
        product_id: str,
        seller_id: str | None,
        quantity: int,
        message: str | None = None,
    ) -> Order:
        body: dict[str, Any] = {"product": product_id, "quantity": quantity}
        if seller_id is not None:
            body["seller"] = seller_id
        if message:
            body["message"] = message
        payload = await self.request("POST", "/api/orders", idempotent=False, json_body=body)
        return self._order_from(payload, "POST", "/api/orders")

    async def ban_user(self, user_id: str, *, ban: bool) -> dict[str, object]:
        payload = await self.request(
            "PATCH", f"/api/admin/ban/{user_id}", idempotent=False, json_body={"ban": ban}
        )
        return payload or {}

    @staticmethod
    def _order_from(payload: dict[str, Any] | None, method: str, path: str) -> Order:
        order = (payload or {}).get("order")
        if not isinstance(order, dict):
            raise BackendError("order payload missing", request_method=method, request_path=path)
        return Order.model_validate(order)

    @staticmethod
    def _cart_from(payload: dict[str, Any] | None) -> Cart:
        cart = (payload or {}).get("cart") or {}
        items = cart.get("items", []) if isinstance(cart, dict) else []
        return Cart.model_validate({"items": items})

    @staticmethod
    def _raise_http_error(response: httpx.Response, *, method: str, path: str) -> None:
        error_message: str | None = None
        try:
            parsed = response.json()
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            raw = parsed.get("error") or parsed.get("message")
            error_message = str(raw) if raw is not None else None
        raise BackendError(
            f"backend request failed: {response.status_code}",
            status_code=response.status_code,
            error_message=error_message or response.text[:300],
            request_method=method,
            request_path=path,
            retry_after=response.headers.get("retry-after"),
        )


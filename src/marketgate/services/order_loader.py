from __future__ import annotations

import asyncio
import logging
from enum import StrEnum

from marketgate.adapters.backend import BackendService
from marketgate.domain.errors import InvalidTransition, MarketGateError
from marketgate.domain.lifecycle import Actor, LifecycleAction
from marketgate.domain.models import Order, Session
from marketgate.domain.visibility import OrderVisibilityPolicy, PartialOrder
from marketgate.services.order_actions import ActionResult, OrderActionService

logger = logging.getLogger(__name__)


class OrderLoader:
    """Single-flight order fetches keyed by order id."""

    def __init__(self, backend: BackendService) -> None:
        self._backend = backend
        self._inflight: dict[str, asyncio.Task[Order]] = {}

    def in_flight(self, order_id: str) -> bool:
        return order_id in self._inflight

    async def load(self, order_id: str) -> Order:
        task = self._inflight.get(order_id)
        if task is None:
            task = asyncio.create_task(self._backend.get_order_by_id(order_id))
            self._inflight[order_id] = task
            task.add_done_callback(lambda _: self._inflight.pop(order_id, None))
        return await asyncio.shield(task)


class ViewState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class OrderView:
    """One screen showing one order.

    ``activate`` fetches the order at most once per activation, however often it
    is called. Results that arrive after ``deactivate`` are dropped; the request
    itself is left to finish.
    """

    def __init__(
        self,
        order_id: str,
        session: Session,
        *,
        loader: OrderLoader,
        actions: OrderActionService,
        visibility: OrderVisibilityPolicy | None = None,
    ) -> None:
        self.order_id = order_id
        self.session = session
        self._loader = loader
        self._actions = actions
        self._visibility = visibility or OrderVisibilityPolicy()
        self.state = ViewState.IDLE
        self.error: Exception | None = None
        self._order: Order | None = None
        self._activation = 0
        self._active = False
        self._task: asyncio.Task[Order | None] | None = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def order(self) -> Order | None:
        return self._actions.tentative(self.order_id) or self._order

    def activate(self) -> asyncio.Task[Order | None]:
        if self._active and self._task is not None:
            return self._task
        self._activation += 1
        self._active = True
        self.state = ViewState.LOADING
        self._task = asyncio.ensure_future(self._fetch(self._activation))
        return self._task

    def deactivate(self) -> None:
        self._active = False
        self._task = None

    def projection(self) -> PartialOrder | None:
        order = self.order
        if order is None:
            return None
        return self._visibility.project_for(order, self.session)

    @property
    def can_accept(self) -> bool:
        if self.state != ViewState.READY or self._order is None:
            return False
        if self._actions.is_pending(self.order_id):
            return False
        return self._actions.machine.can(
            self._order, LifecycleAction.ACCEPT, Actor.from_session(self.session)
        )

    async def accept(self) -> ActionResult:
        if self.state != ViewState.READY or self._order is None:
            return ActionResult(
                action=LifecycleAction.ACCEPT,
                ok=False,
                order=self._order,
                error=InvalidTransition(
                    f"order {self.order_id} is not loaded", order_id=self.order_id, reason="not_loaded"
                ),
            )
        activation = self._activation
        result = await self._actions.accept(self._order, self.session)
        if self._is_current(activation) and result.order is not None:
            self._order = result.order
        return result

    def _is_current(self, activation: int) -> bool:
        return self._active and activation == self._activation

    async def _fetch(self, activation: int) -> Order | None:
        try:
            order = await self._loader.load(self.order_id)
        except MarketGateError as exc:
            if self._is_current(activation):
                self.state = ViewState.FAILED
                self.error = exc
            logger.warning(
                "order_fetch_failed",
                extra={
                    "extra": {
                        "order_id": self.order_id,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    }
                },
            )
            return None

        if not self._is_current(activation):
            logger.debug("order_fetch_discarded", extra={"extra": {"order_id": self.order_id}})
            return None
        self._order = order
        self.error = None
        self.state = ViewState.READY
        return order

from __future__ import annotations

import logging
from dataclasses import dataclass

from marketgate.adapters.backend import BackendService
from marketgate.domain.errors import InvalidTransition, MarketGateError
from marketgate.domain.lifecycle import Actor, LifecycleAction, OrderLifecycleMachine
from marketgate.domain.models import DeliveryInfo, Order, Session
from marketgate.logging_context import with_logging_context
from marketgate.services.backend_errors import ErrorCategory, classify_backend_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionResult:
    """Outcome of one lifecycle action.

    ``order`` is what the caller should display: the confirmed order on success,
    the last known-good order otherwise.
    """

    action: LifecycleAction
    ok: bool
    order: Order | None
    error: Exception | None = None
    category: ErrorCategory | None = None

    @property
    def rolled_back(self) -> bool:
        return not self.ok and self.category is not None


class OrderActionService:
    """Runs lifecycle actions against the backend.

    An order id has at most one action in flight; a second request for the same
    id is rejected without reaching the backend. While the call is pending the
    expected post-transition order is available through ``tentative``.
    """

    def __init__(
        self,
        backend: BackendService,
        *,
        machine: OrderLifecycleMachine | None = None,
    ) -> None:
        self._backend = backend
        self.machine = machine or OrderLifecycleMachine()
        self._inflight: dict[str, LifecycleAction] = {}
        self._tentative: dict[str, Order] = {}

    def is_pending(self, order_id: str) -> bool:
        return order_id in self._inflight

    def tentative(self, order_id: str) -> Order | None:
        return self._tentative.get(order_id)

    async def accept(self, order: Order, session: Session) -> ActionResult:
        return await self.perform(order, LifecycleAction.ACCEPT, Actor.from_session(session))

    async def submit_payment(self, order: Order, session: Session, proof: str) -> ActionResult:
        return await self.perform(
            order, LifecycleAction.SUBMIT_PAYMENT, Actor.from_session(session), payment_proof=proof
        )

    async def confirm_payment(self, order: Order, session: Session) -> ActionResult:
        return await self.perform(
            order, LifecycleAction.CONFIRM_PAYMENT, Actor.from_session(session)
        )

    async def ship(
        self, order: Order, session: Session, delivery_info: DeliveryInfo
    ) -> ActionResult:
        return await self.perform(
            order, LifecycleAction.SHIP, Actor.from_session(session), delivery_info=delivery_info
        )

    async def complete(self, order: Order, session: Session | None = None) -> ActionResult:
        """Complete a shipped order; without a session the automated delivery confirmation acts."""
        actor = Actor.system() if session is None else Actor.from_session(session)
        return await self.perform(order, LifecycleAction.COMPLETE, actor)

    async def cancel(self, order: Order, session: Session) -> ActionResult:
        return await self.perform(order, LifecycleAction.CANCEL, Actor.from_session(session))

    async def perform(
        self,
        order: Order,
        action: LifecycleAction,
        actor: Actor,
        *,
        payment_proof: str | None = None,
        delivery_info: DeliveryInfo | None = None,
    ) -> ActionResult:
        action = LifecycleAction(action)
        with with_logging_context(order_id=order.id, user_id=actor.user_id):
            running = self._inflight.get(order.id)
            if running is not None:
                logger.info(
                    "order_action_rejected",
                    extra={"extra": {"action": action.value, "reason": "in_flight"}},
                )
                return ActionResult(
                    action=action,
                    ok=False,
                    order=order,
                    error=InvalidTransition(
                        f"{running.value} already in flight for order {order.id}",
                        order_id=order.id,
                        reason="in_flight",
                    ),
                )

            try:
                expected = self.machine.apply(
                    order,
                    action,
                    actor,
                    payment_proof=payment_proof,
                    delivery_info=delivery_info,
                )
            except InvalidTransition as exc:
                logger.info(
                    "order_action_rejected",
                    extra={"extra": {"action": action.value, "reason": exc.reason}},
                )
                return ActionResult(action=action, ok=False, order=order, error=exc)

            self._inflight[order.id] = action
            self._tentative[order.id] = expected
            try:
                confirmed = await self._call_backend(
                    order.id, action, payment_proof=payment_proof, delivery_info=delivery_info
                )
            except MarketGateError as exc:
                category = classify_backend_error(exc)
                logger.warning(
                    "order_action_rolled_back",
                    extra={
                        "extra": {
                            "action": action.value,
                            "category": category.value,
                            "error_type": type(exc).__name__,
                            "error": str(exc),
                        }
                    },
                )
                return ActionResult(
                    action=action, ok=False, order=order, error=exc, category=category
                )
            finally:
                self._inflight.pop(order.id, None)
                self._tentative.pop(order.id, None)

            logger.info(
                "order_action_confirmed",
                extra={"extra": {"action": action.value, "status": confirmed.status.value}},
            )
            return ActionResult(action=action, ok=True, order=confirmed)

    async def _call_backend(
        self,
        order_id: str,
        action: LifecycleAction,
        *,
        payment_proof: str | None,
        delivery_info: DeliveryInfo | None,
    ) -> Order:
        if action == LifecycleAction.ACCEPT:
            return await self._backend.accept_order(order_id)
        if action == LifecycleAction.SUBMIT_PAYMENT:
            return await self._backend.submit_payment(order_id, payment_proof or "")
        if action == LifecycleAction.CONFIRM_PAYMENT:
            return await self._backend.confirm_payment(order_id)
        if action == LifecycleAction.SHIP:
            return await self._backend.ship_order(order_id, delivery_info or DeliveryInfo())
        if action == LifecycleAction.COMPLETE:
            return await self._backend.complete_order(order_id)
        return await self._backend.cancel_order(order_id)

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from marketgate.domain.errors import InvalidTransition
from marketgate.domain.models import (
    DeliveryInfo,
    DeliveryStatus,
    Order,
    OrderStatus,
    Role,
    Session,
)


class LifecycleAction(StrEnum):
    ACCEPT = "accept"
    SUBMIT_PAYMENT = "submit_payment"
    CONFIRM_PAYMENT = "confirm_payment"
    SHIP = "ship"
    COMPLETE = "complete"
    CANCEL = "cancel"


class ActorCapacity(StrEnum):
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    user_id: str | None
    role: Role | None = None
    is_system: bool = False

    @classmethod
    def from_session(cls, session: Session) -> Actor:
        if not session.is_authenticated:
            return cls(user_id=None)
        return cls(user_id=session.user_id, role=session.role)

    @classmethod
    def system(cls) -> Actor:
        return cls(user_id=None, is_system=True)

    def capacities(self, order: Order) -> frozenset[ActorCapacity]:
        if self.is_system:
            return frozenset({ActorCapacity.SYSTEM})
        found: set[ActorCapacity] = set()
        if self.user_id is not None:
            if self.user_id == order.buyer.id:
                found.add(ActorCapacity.BUYER)
            if self.user_id == order.seller.id:
                found.add(ActorCapacity.SELLER)
        if self.role == Role.ADMIN:
            found.add(ActorCapacity.ADMIN)
        return frozenset(found)


@dataclass(frozen=True)
class TransitionRule:
    action: LifecycleAction
    sources: frozenset[OrderStatus]
    target: OrderStatus
    allowed: frozenset[ActorCapacity]
    requires_accepted: bool = False
    requires_unaccepted: bool = False


STATUS_LABELS: dict[OrderStatus, str] = {
    OrderStatus.PENDING: "Pending",
    OrderStatus.PAYMENT_SENT: "Payment Sent",
    OrderStatus.PAID: "Paid",
    OrderStatus.SHIPPED: "Shipped",
    OrderStatus.COMPLETED: "Completed",
    OrderStatus.CANCELLED: "Cancelled",
}

FORWARD_PATH: tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.PAYMENT_SENT,
    OrderStatus.PAID,
    OrderStatus.SHIPPED,
    OrderStatus.COMPLETED,
)

TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})

_NON_TERMINAL = frozenset(FORWARD_PATH) - TERMINAL_STATUSES

# Acceptance keeps the order in PENDING; it only stamps accepted_at.
TRANSITIONS: dict[LifecycleAction, TransitionRule] = {
    rule.action: rule
    for rule in (
        TransitionRule(
            action=LifecycleAction.ACCEPT,
            sources=frozenset({OrderStatus.PENDING}),
            target=OrderStatus.PENDING,
            allowed=frozenset({ActorCapacity.SELLER}),
            requires_unaccepted=True,
        ),
        TransitionRule(
            action=LifecycleAction.SUBMIT_PAYMENT,
            sources=frozenset({OrderStatus.PENDING}),
            target=OrderStatus.PAYMENT_SENT,
            allowed=frozenset({ActorCapacity.BUYER}),
            requires_accepted=True,
        ),
        TransitionRule(
            action=LifecycleAction.CONFIRM_PAYMENT,
            sources=frozenset({OrderStatus.PAYMENT_SENT}),
            target=OrderStatus.PAID,
            allowed=frozenset({ActorCapacity.SELLER}),
        ),
        TransitionRule(
            action=LifecycleAction.SHIP,
            sources=frozenset({OrderStatus.PAID}),
            target=OrderStatus.SHIPPED,
            allowed=frozenset({ActorCapacity.SELLER}),
        ),
        TransitionRule(
            action=LifecycleAction.COMPLETE,
            sources=frozenset({OrderStatus.SHIPPED}),
            target=OrderStatus.COMPLETED,
            allowed=frozenset({ActorCapacity.SELLER, ActorCapacity.SYSTEM}),
        ),
        TransitionRule(
            action=LifecycleAction.CANCEL,
            sources=_NON_TERMINAL,
            target=OrderStatus.CANCELLED,
            allowed=frozenset({ActorCapacity.BUYER, ActorCapacity.SELLER, ActorCapacity.ADMIN}),
        ),
    )
}


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def status_label(status: OrderStatus) -> str:
    return STATUS_LABELS[status]


def delivery_status_for(status: OrderStatus, current: DeliveryStatus) -> DeliveryStatus:
    if status == OrderStatus.SHIPPED:
        return DeliveryStatus.SHIPPED
    if status == OrderStatus.COMPLETED:
        return DeliveryStatus.DELIVERED
    if status == OrderStatus.CANCELLED:
        return DeliveryStatus.PENDING
    return current


def is_forward_move(before: OrderStatus, after: OrderStatus) -> bool:
    """True when ``after`` is reachable from ``before`` without going backwards."""
    if before == after:
        return True
    if is_terminal(before):
        return False
    if after == OrderStatus.CANCELLED:
        return True
    return FORWARD_PATH.index(after) > FORWARD_PATH.index(before)


class OrderLifecycleMachine:
    """Canonical order state machine shared by buyer, seller, admin and system actors.

    Every check is re-derived from the order passed in; nothing is cached on the
    machine. Illegal requests raise ``InvalidTransition`` and are never rewritten
    into a neighbouring legal transition.
    """

    def __init__(self, transitions: dict[LifecycleAction, TransitionRule] | None = None) -> None:
        self._transitions = dict(transitions or TRANSITIONS)
        for rule in self._transitions.values():
            for source in rule.sources:
                if not is_forward_move(source, rule.target):
                    raise ValueError(
                        f"{rule.action.value} moves backwards from {source.value} to {rule.target.value}"
                    )

    def rule(self, action: LifecycleAction) -> TransitionRule:
        return self._transitions[LifecycleAction(action)]

    def check(self, order: Order, action: LifecycleAction, actor: Actor) -> TransitionRule:
        rule = self.rule(action)
        if is_terminal(order.status):
            raise InvalidTransition(
                f"order {order.id} is {order.status.value}; no further transitions",
                order_id=order.id,
                reason="terminal_state",
            )
        if order.status not in rule.sources:
            raise InvalidTransition(
                f"cannot {rule.action.value} an order in status {order.status.value}",
                order_id=order.id,
                reason="illegal_source",
            )
        if not (actor.capacities(order) & rule.allowed):
            raise InvalidTransition(
                f"actor may not {rule.action.value} order {order.id}",
                order_id=order.id,
                reason="actor_not_permitted",
            )
        if rule.requires_unaccepted and order.is_accepted:
            raise InvalidTransition(
                f"order {order.id} is already accepted",
                order_id=order.id,
                reason="already_accepted",
            )
        if rule.requires_accepted and not order.is_accepted:
            raise InvalidTransition(
                f"order {order.id} has not been accepted by the seller",
                order_id=order.id,
                reason="not_accepted",
            )
        return rule

    def can(self, order: Order, action: LifecycleAction, actor: Actor) -> bool:
        try:
            self.check(order, action, actor)
        except InvalidTransition:
            return False
        return True

    def allowed_actions(self, order: Order, actor: Actor) -> list[LifecycleAction]:
        return [action for action in self._transitions if self.can(order, action, actor)]

    def apply(
        self,
        order: Order,
        action: LifecycleAction,
        actor: Actor,
        *,
        now: datetime | None = None,
        payment_proof: str | None = None,
        delivery_info: DeliveryInfo | None = None,
    ) -> Order:
        """Return the order as it looks after ``action``; the input is left untouched."""
        rule = self.check(order, action, actor)
        ts = now or datetime.now(UTC)
        update: dict[str, object] = {"status": rule.target, "updated_at": ts}

        if rule.action == LifecycleAction.ACCEPT:
            update["accepted_at"] = ts
        elif rule.action == LifecycleAction.SUBMIT_PAYMENT:
            if not payment_proof:
                raise InvalidTransition(
                    "payment proof is required", order_id=order.id, reason="missing_proof"
                )
            update["payment_proof"] = payment_proof
        elif rule.action == LifecycleAction.CONFIRM_PAYMENT:
            update["payment_confirmed_by_seller"] = True
        elif rule.action == LifecycleAction.SHIP:
            info = delivery_info or order.delivery_info or DeliveryInfo()
            if info.shipped_at is None:
                info = info.model_copy(update={"shipped_at": ts})
            update["delivery_info"] = info
        elif rule.action == LifecycleAction.COMPLETE:
            info = order.delivery_info or DeliveryInfo()
            update["delivery_info"] = info.model_copy(update={"delivered_at": ts})

        update["delivery_status"] = delivery_status_for(rule.target, order.delivery_status)
        return order.model_copy(update=update)

    def accept(self, order: Order, actor: Actor, *, now: datetime | None = None) -> Order:
        return self.apply(order, LifecycleAction.ACCEPT, actor, now=now)

    def transition_table(self) -> list[dict[str, object]]:
        rows: list[dict[str, object]] = []
        for rule in self._transitions.values():
            rows.append(
                {
                    "action": rule.action.value,
                    "from": sorted(status.value for status in rule.sources),
                    "to": rule.target.value,
                    "actors": sorted(capacity.value for capacity in rule.allowed),
                    "requires_accepted": rule.requires_accepted,
                    "requires_unaccepted": rule.requires_unaccepted,
                }
            )
        return rows

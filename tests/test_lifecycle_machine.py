from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from marketgate.domain.errors import InvalidTransition
from marketgate.domain.lifecycle import (
    STATUS_LABELS,
    TRANSITIONS,
    Actor,
    ActorCapacity,
    LifecycleAction,
    OrderLifecycleMachine,
    TransitionRule,
    delivery_status_for,
    is_forward_move,
    is_terminal,
    status_label,
)
from marketgate.domain.models import DeliveryInfo, DeliveryStatus, Order, OrderStatus, Role

SELLER = "5f1a2b3c4d5e6f7a8b9c0d1e"
BUYER = "6a1b2c3d4e5f6a7b8c9d0e1f"
OTHER = "7b2c3d4e5f6a7b8c9d0e1f2a"
ADMIN = "8c3d4e5f6a7b8c9d0e1f2a3b"

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

machine = OrderLifecycleMachine()
seller = Actor(user_id=SELLER, role=Role.USER)
buyer = Actor(user_id=BUYER, role=Role.USER)
other = Actor(user_id=OTHER, role=Role.USER)
admin = Actor(user_id=ADMIN, role=Role.ADMIN)


def _order(status: OrderStatus = OrderStatus.PENDING, **overrides: object) -> Order:
    payload: dict[str, object] = {
        "_id": "0123456789abcdef01234567",
        "status": status.value,
        "buyer": BUYER,
        "seller": SELLER,
        "product": {"_id": "a1b2c3d4e5f6a7b8c9d0e1f2", "name": "Walnut desk", "price": 50},
        "quantity": 2,
        "totalAmount": "100",
        "createdAt": T0.isoformat(),
    }
    payload.update(overrides)
    return Order.model_validate(payload)


def test_accept_stamps_acceptance_without_changing_status() -> None:
    accepted = machine.accept(_order(), seller, now=T0 + timedelta(minutes=5))

    assert accepted.status == OrderStatus.PENDING
    assert accepted.accepted_at == T0 + timedelta(minutes=5)
    assert accepted.is_accepted
    assert accepted.unaccepted_seconds() == 300.0


def test_accepting_twice_is_rejected_and_leaves_order_unchanged() -> None:
    accepted = machine.accept(_order(), seller, now=T0)

    with pytest.raises(InvalidTransition) as excinfo:
        machine.accept(accepted, seller)

    assert excinfo.value.reason == "already_accepted"
    assert accepted.status == OrderStatus.PENDING
    assert accepted.accepted_at == T0


@pytest.mark.parametrize("actor", [buyer, other, admin])
def test_only_the_seller_may_accept(actor: Actor) -> None:
    with pytest.raises(InvalidTransition) as excinfo:
        machine.accept(_order(), actor)
    assert excinfo.value.reason == "actor_not_permitted"


def test_accept_on_non_pending_order_is_illegal() -> None:
    with pytest.raises(InvalidTransition) as excinfo:
        machine.accept(_order(OrderStatus.PAID), seller)
    assert excinfo.value.reason == "illegal_source"


def test_buyer_cannot_pay_before_acceptance() -> None:
    with pytest.raises(InvalidTransition) as excinfo:
        machine.apply(_order(), LifecycleAction.SUBMIT_PAYMENT, buyer, payment_proof="proof.png")
    assert excinfo.value.reason == "not_accepted"


def test_payment_requires_proof() -> None:
    accepted = machine.accept(_order(), seller)
    with pytest.raises(InvalidTransition) as excinfo:
        machine.apply(accepted, LifecycleAction.SUBMIT_PAYMENT, buyer)
    assert excinfo.value.reason == "missing_proof"


def test_full_forward_path() -> None:
    order = machine.accept(_order(), seller, now=T0)
    order = machine.apply(order, LifecycleAction.SUBMIT_PAYMENT, buyer, payment_proof="proof.png")
    assert order.status == OrderStatus.PAYMENT_SENT
    assert order.payment_proof == "proof.png"

    order = machine.apply(order, LifecycleAction.CONFIRM_PAYMENT, seller)
    assert order.status == OrderStatus.PAID
    assert order.payment_confirmed_by_seller is True

    order = machine.apply(
        order,
        LifecycleAction.SHIP,
        seller,
        now=T0 + timedelta(days=1),
        delivery_info=DeliveryInfo(tracking_number="TRK-1", courier="UPS"),
    )
    assert order.status == OrderStatus.SHIPPED
    assert order.delivery_status == DeliveryStatus.SHIPPED
    assert order.delivery_info is not None
    assert order.delivery_info.tracking_number == "TRK-1"
    assert order.delivery_info.shipped_at == T0 + timedelta(days=1)

    order = machine.apply(order, LifecycleAction.COMPLETE, Actor.system(), now=T0 + timedelta(days=3))
    assert order.status == OrderStatus.COMPLETED
    assert order.delivery_status == DeliveryStatus.DELIVERED
    assert order.delivery_info is not None
    assert order.delivery_info.delivered_at == T0 + timedelta(days=3)


def test_buyer_cannot_ship_or_confirm() -> None:
    paid = _order(OrderStatus.PAID)
    with pytest.raises(InvalidTransition):
        machine.apply(paid, LifecycleAction.SHIP, buyer)
    with pytest.raises(InvalidTransition):
        machine.apply(_order(OrderStatus.PAYMENT_SENT), LifecycleAction.CONFIRM_PAYMENT, buyer)


def test_illegal_jump_is_not_clamped() -> None:
    with pytest.raises(InvalidTransition) as excinfo:
        machine.apply(_order(OrderStatus.PAYMENT_SENT), LifecycleAction.SHIP, seller)
    assert excinfo.value.reason == "illegal_source"


@pytest.mark.parametrize(
    "status",
    [OrderStatus.PENDING, OrderStatus.PAYMENT_SENT, OrderStatus.PAID, OrderStatus.SHIPPED],
)
@pytest.mark.parametrize("actor", [buyer, seller, admin])
def test_cancel_from_any_non_terminal_state(status: OrderStatus, actor: Actor) -> None:
    cancelled = machine.apply(_order(status), LifecycleAction.CANCEL, actor)
    assert cancelled.status == OrderStatus.CANCELLED


def test_third_party_cannot_cancel() -> None:
    assert not machine.can(_order(), LifecycleAction.CANCEL, other)


@pytest.mark.parametrize("status", [OrderStatus.COMPLETED, OrderStatus.CANCELLED])
def test_terminal_states_are_absorbing(status: OrderStatus) -> None:
    order = _order(status)
    for actor in (buyer, seller, admin, Actor.system()):
        assert machine.allowed_actions(order, actor) == []
    with pytest.raises(InvalidTransition) as excinfo:
        machine.apply(order, LifecycleAction.CANCEL, admin)
    assert excinfo.value.reason == "terminal_state"


def test_allowed_actions_for_fresh_order() -> None:
    order = _order()
    assert machine.allowed_actions(order, seller) == [LifecycleAction.ACCEPT, LifecycleAction.CANCEL]
    assert machine.allowed_actions(order, buyer) == [LifecycleAction.CANCEL]
    assert machine.allowed_actions(order, other) == []


def test_apply_does_not_mutate_input() -> None:
    order = _order()
    machine.accept(order, seller)
    assert order.accepted_at is None
    assert order.total_amount == Decimal("100")


def test_status_helpers() -> None:
    assert set(STATUS_LABELS) == set(OrderStatus)
    assert status_label(OrderStatus.PAYMENT_SENT) == "Payment Sent"
    assert is_terminal(OrderStatus.CANCELLED)
    assert not is_terminal(OrderStatus.SHIPPED)
    assert delivery_status_for(OrderStatus.PAID, DeliveryStatus.PENDING) == DeliveryStatus.PENDING
    assert is_forward_move(OrderStatus.PAID, OrderStatus.SHIPPED)
    assert is_forward_move(OrderStatus.SHIPPED, OrderStatus.CANCELLED)
    assert not is_forward_move(OrderStatus.SHIPPED, OrderStatus.PAID)
    assert not is_forward_move(OrderStatus.COMPLETED, OrderStatus.CANCELLED)


def test_transition_table_lists_every_action() -> None:
    rows = machine.transition_table()
    assert [row["action"] for row in rows] == [action.value for action in LifecycleAction]
    cancel = rows[-1]
    assert cancel["to"] == "cancelled"
    assert cancel["actors"] == ["admin", "buyer", "seller"]


def test_default_rules_only_move_forward() -> None:
    for rule in TRANSITIONS.values():
        assert all(is_forward_move(source, rule.target) for source in rule.sources)


def test_machine_rejects_rule_table_with_backward_move() -> None:
    reopen = TransitionRule(
        action=LifecycleAction.SHIP,
        sources=frozenset({OrderStatus.SHIPPED}),
        target=OrderStatus.PAID,
        allowed=frozenset({ActorCapacity.SELLER}),
    )

    with pytest.raises(ValueError, match="backwards"):
        OrderLifecycleMachine({**TRANSITIONS, LifecycleAction.SHIP: reopen})

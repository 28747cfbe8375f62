from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from marketgate.domain.models import (
    ActorRef,
    DeliveryInfo,
    DeliveryStatus,
    Order,
    OrderStatus,
    ProductRef,
    Session,
)


class ViewerRelation(StrEnum):
    BUYER = "buyer"
    SELLER = "seller"
    OTHER = "other"
    STAFF = "staff"


class PartialOrder(BaseModel):
    """What one viewer may see of an order; ``redacted`` names the withheld fields."""

    model_config = ConfigDict(frozen=True)

    id: str
    status: OrderStatus
    created_at: datetime
    updated_at: datetime | None = None
    accepted: bool = False
    product: ProductRef | None = None
    buyer: ActorRef | None = None
    seller: ActorRef | None = None
    quantity: int | None = None
    total_amount: Decimal | None = None
    delivery_status: DeliveryStatus | None = None
    delivery_info: DeliveryInfo | None = None
    payment_proof: str | None = None
    payment_confirmed_by_seller: bool | None = None
    redacted: frozenset[str] = frozenset()


def relation_of(order: Order, session: Session) -> ViewerRelation:
    if not session.is_authenticated or session.user_id is None:
        return ViewerRelation.OTHER
    if session.user_id == order.buyer.id:
        return ViewerRelation.BUYER
    if session.user_id == order.seller.id:
        return ViewerRelation.SELLER
    if session.is_staff:
        return ViewerRelation.STAFF
    return ViewerRelation.OTHER


class OrderVisibilityPolicy:
    def project(self, order: Order, relation: ViewerRelation | str) -> PartialOrder:
        relation = ViewerRelation(relation)
        if relation == ViewerRelation.STAFF:
            return self._full(order)
        if order.awaiting_acceptance:
            return self._unaccepted(order, relation)
        if relation == ViewerRelation.OTHER:
            return self._public(order)
        return self._full(order)

    def project_for(self, order: Order, session: Session) -> PartialOrder:
        return self.project(order, relation_of(order, session))

    def _full(self, order: Order) -> PartialOrder:
        return PartialOrder(
            id=order.id,
            status=order.status,
            created_at=order.created_at,
            updated_at=order.updated_at,
            accepted=order.is_accepted,
            product=order.product,
            buyer=order.buyer,
            seller=order.seller,
            quantity=order.quantity,
            total_amount=order.total_amount,
            delivery_status=order.delivery_status,
            delivery_info=order.delivery_info,
            payment_proof=order.payment_proof,
            payment_confirmed_by_seller=order.payment_confirmed_by_seller,
        )

    def _unaccepted(self, order: Order, relation: ViewerRelation) -> PartialOrder:
        # Before acceptance both parties see a skeleton: ids, status, timestamps,
        # the product name and their own reference. The counterparty is reduced to its id.
        buyer = order.buyer if relation == ViewerRelation.BUYER else _bare(order.buyer)
        seller = order.seller if relation == ViewerRelation.SELLER else _bare(order.seller)
        return PartialOrder(
            id=order.id,
            status=order.status,
            created_at=order.created_at,
            updated_at=order.updated_at,
            accepted=False,
            product=order.product.summary(),
            buyer=buyer,
            seller=seller,
            redacted=frozenset(
                {
                    "product_detail",
                    "quantity",
                    "total_amount",
                    "delivery_status",
                    "delivery_info",
                    "payment_proof",
                    "payment_confirmed_by_seller",
                    "counterparty_contact",
                }
            ),
        )

    def _public(self, order: Order) -> PartialOrder:
        return PartialOrder(
            id=order.id,
            status=order.status,
            created_at=order.created_at,
            updated_at=order.updated_at,
            accepted=True,
            product=order.product,
            buyer=order.buyer.without_contact(),
            seller=order.seller.without_contact(),
            quantity=order.quantity,
            total_amount=order.total_amount,
            delivery_status=order.delivery_status,
            redacted=frozenset(
                {"delivery_info", "payment_proof", "buyer_contact", "seller_contact"}
            ),
        )


def _bare(actor: ActorRef) -> ActorRef:
    return ActorRef(id=actor.id)

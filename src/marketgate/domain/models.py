from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

_OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")


def is_valid_object_id(value: object) -> bool:
    return isinstance(value, str) and bool(_OBJECT_ID_PATTERN.match(value))


def parse_money(value: object) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        normalized = value.strip().replace(",", ".")
        return Decimal(normalized or "0")
    raise TypeError(f"Cannot parse money from {type(value)!r}")


class Role(StrEnum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class SessionState(StrEnum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class Session:
    """Resolved identity of the current visitor.

    ``LOADING`` means "no answer yet" and is never an alias for logged out.
    ``user_id`` and ``role`` are only set together, from one backend payload.
    """

    state: SessionState
    user_id: str | None = None
    role: Role | None = None

    @classmethod
    def loading(cls) -> Session:
        return cls(state=SessionState.LOADING)

    @classmethod
    def unauthenticated(cls) -> Session:
        return cls(state=SessionState.UNAUTHENTICATED)

    @classmethod
    def authenticated(cls, user_id: str, role: Role | str) -> Session:
        return cls(state=SessionState.AUTHENTICATED, user_id=user_id, role=Role(role))

    @property
    def is_loading(self) -> bool:
        return self.state == SessionState.LOADING

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED

    @property
    def is_staff(self) -> bool:
        return self.is_authenticated and self.role in {Role.ADMIN, Role.MODERATOR}


class OrderStatus(StrEnum):
    PENDING = "pending"
    PAYMENT_SENT = "payment_sent"
    PAID = "paid"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DeliveryStatus(StrEnum):
    PENDING = "pending"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class ActorRef(_Wire):
    """Buyer or seller reference; either a bare id or an expanded profile."""

    id: str = Field(alias="_id")
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    location: str | None = None

    @classmethod
    def coerce(cls, value: object) -> ActorRef:
        if isinstance(value, ActorRef):
            return value
        if isinstance(value, str):
            return cls(id=value)
        if isinstance(value, dict):
            payload = dict(value)
            if "_id" not in payload and "id" in payload:
                payload["_id"] = payload.pop("id")
            return cls.model_validate(payload)
        raise TypeError(f"Cannot build actor reference from {type(value)!r}")

    def without_contact(self) -> ActorRef:
        return self.model_copy(update={"email": None, "phone": None, "location": None})


class ProductRef(_Wire):
    id: str = Field(alias="_id")
    name: str | None = None
    price: Decimal | None = None
    images: tuple[str, ...] = ()
    description: str | None = None
    category: str | None = None
    stock: int | None = None
    seller_id: str | None = None

    @field_validator("price", mode="before")
    @classmethod
    def _parse_price(cls, value: object) -> Decimal | None:
        if value is None or value == "":
            return None
        return parse_money(value)

    @field_validator("stock", mode="before")
    @classmethod
    def _parse_stock(cls, value: object) -> int | None:
        if value is None or value == "":
            return None
        return int(str(value).strip())

    @classmethod
    def coerce(cls, value: object) -> ProductRef:
        if isinstance(value, ProductRef):
            return value
        if isinstance(value, str):
            return cls(id=value)
        if isinstance(value, dict):
            payload = dict(value)
            if "_id" not in payload and "id" in payload:
                payload["_id"] = payload.pop("id")
            seller = payload.pop("seller", None)
            if seller is not None and "seller_id" not in payload:
                payload["seller_id"] = ActorRef.coerce(seller).id
            return cls.model_validate(payload)
        raise TypeError(f"Cannot build product reference from {type(value)!r}")

    def summary(self) -> ProductRef:
        return ProductRef(id=self.id, name=self.name)


class DeliveryInfo(_Wire):
    tracking_number: str | None = Field(default=None, alias="trackingNumber")
    courier: str | None = None
    shipped_at: datetime | None = Field(default=None, alias="shippedAt")
    delivered_at: datetime | None = Field(default=None, alias="deliveredAt")


class Order(_Wire):
    id: str = Field(alias="_id")
    status: OrderStatus = OrderStatus.PENDING
    buyer: ActorRef
    seller: ActorRef
    product: ProductRef
    quantity: int = Field(default=1, ge=1)
    total_amount: Decimal = Field(alias="totalAmount")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC), alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")
    accepted_at: datetime | None = Field(default=None, alias="acceptedAt")
    delivery_status: DeliveryStatus = Field(default=DeliveryStatus.PENDING, alias="deliveryStatus")
    delivery_info: DeliveryInfo | None = Field(default=None, alias="deliveryInfo")
    payment_proof: str | None = Field(default=None, alias="paymentProof")
    payment_confirmed_by_seller: bool = Field(default=False, alias="paymentConfirmedBySeller")
    message: str | None = None

    @field_validator("buyer", "seller", mode="before")
    @classmethod
    def _coerce_actor(cls, value: object) -> ActorRef:
        return ActorRef.coerce(value)

    @field_validator("product", mode="before")
    @classmethod
    def _coerce_product(cls, value: object) -> ProductRef:
        return ProductRef.coerce(value)

    @field_validator("total_amount", mode="before")
    @classmethod
    def _parse_total(cls, value: object) -> Decimal:
        return parse_money(value)

    @property
    def is_accepted(self) -> bool:
        if self.accepted_at is not None:
            return True
        # A cancellation does not imply the seller ever accepted.
        return self.status not in {OrderStatus.PENDING, OrderStatus.CANCELLED}

    @property
    def awaiting_acceptance(self) -> bool:
        return self.status == OrderStatus.PENDING and self.accepted_at is None

    def unaccepted_seconds(self, now: datetime | None = None) -> float:
        end = self.accepted_at
        if end is None and self.status == OrderStatus.PENDING:
            end = now or datetime.now(UTC)
        if end is None:
            return 0.0
        return max(0.0, (end - self.created_at).total_seconds())


class CartItem(_Wire):
    product: ProductRef
    quantity: int = Field(ge=1)

    @field_validator("product", mode="before")
    @classmethod
    def _coerce_product(cls, value: object) -> ProductRef:
        return ProductRef.coerce(value)

    @property
    def product_id(self) -> str:
        return self.product.id


class Cart(_Wire):
    items: tuple[CartItem, ...] = ()

    @field_validator("items")
    @classmethod
    def _unique_products(cls, items: tuple[CartItem, ...]) -> tuple[CartItem, ...]:
        seen: set[str] = set()
        for item in items:
            if item.product_id in seen:
                raise ValueError(f"duplicate cart line for product {item.product_id}")
            seen.add(item.product_id)
        return items

    def find(self, product_id: str) -> CartItem | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def contains(self, product_id: str) -> bool:
        return self.find(product_id) is not None


class SessionUser(_Wire):
    """User record as returned by the session endpoints."""

    id: str
    role: str | None = None
    name: str | None = None
    email: str | None = None
    is_banned: bool = Field(default=False, alias="isBanned")

    @classmethod
    def from_payload(cls, payload: object) -> SessionUser | None:
        if not isinstance(payload, dict):
            return None
        user = payload.get("user", payload)
        if not isinstance(user, dict):
            return None
        data = dict(user)
        if "id" not in data and "_id" in data:
            data["id"] = data.pop("_id")
        if not data.get("id"):
            return None
        return cls.model_validate(data)

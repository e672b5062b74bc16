"""Pydantic schemas for orders.

Request schemas validate the shape of incoming payloads; business rules
(known products, sizes, stock) are checked by the state machine. Read
schemas render domain orders for the API, with money as decimal strings.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain import Order


class AddressIn(BaseModel):
    """Postal address as entered at checkout.

    Required fields are checked by the state machine so that the error can
    name the missing field; everything here is optional at the schema level.
    """

    model_config = ConfigDict(extra="allow")

    first_name: str = ""
    last_name: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = "US"
    phone: str = ""


class OrderItemIn(BaseModel):
    """Input schema for a single order line item.

    Attributes:
        product_id: Catalog product identifier.
        size: Size variant; required for sized categories.
        quantity: Units requested; non-positive values are rejected with the
            line index by the state machine.
    """

    product_id: str = Field(min_length=1, max_length=64)
    size: Optional[str] = Field(default=None, max_length=16)
    quantity: int


class CreateOrderDTO(BaseModel):
    """Schema for creating an order."""

    customer_id: str = Field(default="", max_length=64)
    items: list[OrderItemIn] = Field(max_length=100)
    shipping_address: AddressIn
    billing_address: Optional[AddressIn] = None
    payment_method: str

    @field_validator("payment_method")
    @classmethod
    def normalize_payment_method(cls, v: str) -> str:
        # unsupported methods are rejected by the state machine with a code
        return v.strip().lower()


class StatusUpdateDTO(BaseModel):
    status: str = Field(min_length=1, max_length=16)
    tracking_number: Optional[str] = Field(default=None, max_length=64)


class OrderLineOut(BaseModel):
    product_id: str
    name: str
    size: Optional[str] = None
    sku: str = ""
    quantity: int
    unit_price: Decimal


class OrderReadDTO(BaseModel):
    """Order as returned by the API."""

    id: UUID
    order_number: Optional[str] = None
    customer_id: str
    status: str
    payment_status: str
    payment_method: str
    payment_intent_id: Optional[str] = None
    tracking_number: str = ""
    currency: str
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal
    items: list[OrderLineOut]
    shipping_address: dict
    billing_address: dict
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderReadDTO":
        return cls(
            id=order.id,
            order_number=order.order_number,
            customer_id=order.customer_id,
            status=order.status.value,
            payment_status=order.payment_status.value,
            payment_method=order.payment_method,
            payment_intent_id=order.payment_intent_id,
            tracking_number=order.tracking_number,
            currency=order.currency,
            subtotal=order.totals.subtotal,
            tax=order.totals.tax,
            shipping=order.totals.shipping,
            total=order.totals.total,
            items=[
                OrderLineOut(
                    product_id=line.product_id,
                    name=line.name,
                    size=line.size,
                    sku=line.sku,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                )
                for line in order.lines
            ],
            shipping_address=order.shipping_address,
            billing_address=order.billing_address,
            created_at=order.created_at,
        )

    def to_json(self) -> dict:
        return self.model_dump(mode="json")

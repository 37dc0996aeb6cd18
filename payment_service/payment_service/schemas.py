"""Data models for orders, payment requests and gateway records."""

import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

PaymentMethod = Literal["razorpay", "upi"]
PaymentStatus = Literal["pending", "completed", "failed"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _order_number() -> str:
    return f"ORD-{_utcnow():%Y%m%d}-{secrets.token_hex(3).upper()}"


class CamelModel(BaseModel):
    """Base model exchanging camelCase JSON while accepting snake_case input too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(CamelModel):
    """An authenticated shopper.

    Attributes:
        id (str): User identifier, the join key for order ownership.
        email (str): Contact email, forwarded to the gateway as order metadata.
        name (str): Display name.
    """

    id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    name: str = ""


class OrderItem(CamelModel):
    """Represents an individual line item in an order.

    Attributes:
        product_id (str | None): Catalog product reference.
        bundle_id (str | None): Catalog bundle reference, used instead of product_id for bundles.
        name (str): Display name captured at checkout.
        price (Decimal): Unit price snapshot in major currency units, must not be negative.
        quantity (int): Number of units, must be between 1 and 1000.
        image (str | None): Optional image URL.
    """

    product_id: str | None = None
    bundle_id: str | None = None
    name: str = Field(..., min_length=1, max_length=200)
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    quantity: int = Field(..., gt=0, le=1000)
    image: str | None = None

    @model_validator(mode="after")
    def check_reference(self) -> "OrderItem":
        """Require a product or bundle reference."""
        if not (self.product_id or self.bundle_id):
            raise ValueError("Each item needs a productId or bundleId")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"productId": "prod-001", "name": "Cold Brew Kit", "price": "24.95", "quantity": 2}
        }
    )


class ShippingAddress(CamelModel):
    """Delivery address; every field is required and must not be blank."""

    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class Order(CamelModel):
    """A checkout order and its payment state.

    Attributes:
        id (str): Internal order identifier.
        order_number (str): Human-readable receipt number shown to users and the gateway.
        user_id (str): Owner of the order.
        user_email (str): Owner email at checkout time.
        items (list[OrderItem]): Line items, at least one.
        subtotal (Decimal): Sum of price times quantity.
        shipping (Decimal): Flat shipping charge.
        tax (Decimal): Tax on the subtotal.
        total_amount (Decimal): Authoritative total, never recomputed after creation.
        currency (str): Currency of every amount on the order.
        shipping_address (ShippingAddress): Delivery address.
        payment_method (str): razorpay or upi.
        payment_status (str): pending, completed or failed.
        status (str): Fulfilment status.
        gateway_order_id (str | None): Gateway order reference.
        gateway_payment_id (str | None): Gateway payment reference.
        gateway_signature (str | None): Signature, kept only once verified.
        upi_vpa (str | None): Payer handle for UPI orders.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    order_number: str = Field(default_factory=_order_number)
    user_id: str
    user_email: str
    items: list[OrderItem] = Field(..., min_length=1)
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total_amount: Decimal
    currency: str = "INR"
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    status: OrderStatus = "pending"
    gateway_order_id: str | None = None
    gateway_payment_id: str | None = None
    gateway_signature: str | None = None
    upi_vpa: str | None = Field(None, alias="upiVPA")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class CreateOrderRequest(CamelModel):
    """Body of POST /payment/create-order."""

    items: list[OrderItem] = Field(..., min_length=1, description="At least one item required")
    shipping_address: ShippingAddress


class CreateUpiPaymentRequest(CreateOrderRequest):
    """Body of POST /payment/create-upi-payment."""

    upi_vpa: str = Field(..., alias="upiVPA", min_length=3, max_length=100)

    @field_validator("upi_vpa")
    def validate_vpa(cls, v):
        """Normalize the VPA and require the handle@provider form."""
        v = v.strip()
        if v.count("@") != 1 or v.startswith("@") or v.endswith("@"):
            raise ValueError("UPI VPA must look like name@bank")
        return v


class VerifyPaymentRequest(CamelModel):
    """Body of POST /payment/verify-payment."""

    gateway_order_id: str = Field(..., min_length=1)
    gateway_payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
    order_id: str = Field(..., min_length=1)


class VerifyUpiRequest(CamelModel):
    """Body of POST /payment/verify-upi/{orderId}."""

    payment_id: str = Field(..., min_length=1)
    gateway_order_id: str = Field(..., min_length=1)
    signature: str | None = None


class CreateOrderResponse(CamelModel):
    order_id: str
    gateway_order_id: str
    amount: int = Field(..., description="Amount in minor currency units")
    currency: str
    key_id: str


class UpiPaymentResponse(CamelModel):
    order_id: str
    order_number: str
    gateway_order_id: str
    upi_link: str
    total_amount: Decimal
    key_id: str
    message: str = "UPI payment initiated. Please complete payment on your UPI app."


class VerificationResult(CamelModel):
    """Outcome of a client-driven verification.

    A negative result is a normal outcome, not an error.
    """

    success: bool
    message: str
    payment_status: PaymentStatus
    order: Order | None = None


class PaymentStatusResponse(CamelModel):
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    status: OrderStatus
    total_amount: Decimal


class GatewayOrder(CamelModel):
    """Order record returned by the gateway. Amount is in minor units."""

    id: str
    amount: int
    currency: str
    receipt: str | None = None
    status: str | None = None


class GatewayPayment(CamelModel):
    """Payment record returned by the gateway. Amount is in minor units."""

    id: str
    order_id: str | None = None
    amount: int
    currency: str
    status: str
    method: str | None = None
    email: str | None = None
    contact: str | None = None
    created_at: int | None = None
    notes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("notes", mode="before")
    def empty_notes(cls, v):
        """The gateway sends an empty list instead of an empty object."""
        return v or {}


class PaymentDetails(CamelModel):
    """Normalized payment record exposed to shoppers. Amount is in major units."""

    id: str
    amount: Decimal
    currency: str
    status: str
    method: str | None = None
    email: str | None = None
    contact: str | None = None
    created_at: int | None = None


class WebhookPayment(BaseModel):
    entity: GatewayPayment


class WebhookPayload(BaseModel):
    payment: WebhookPayment


class WebhookEvent(BaseModel):
    """Gateway webhook delivery, parsed only after its signature is checked."""

    event: str
    payload: dict[str, Any] = Field(default_factory=dict)

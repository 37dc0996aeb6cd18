"""Order lifecycle: checkout, gateway orders, verification and status reads."""

import asyncio
from typing import Callable, TypeVar
from urllib.parse import quote, urlencode

from logging_utils.config import get_component_logger

from .config import PaymentSettings
from .exceptions import (
    AuthenticationError,
    AuthorizationError,
    GatewayUnavailableError,
    InvalidMethodError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from .gateway import PaymentGateway
from .pricing import compute_totals, from_minor_units, to_minor_units
from .producer import PaymentEventProducer
from .schemas import (
    CreateOrderResponse,
    GatewayPayment,
    Order,
    OrderItem,
    PaymentDetails,
    PaymentMethod,
    PaymentStatusResponse,
    ShippingAddress,
    UpiPaymentResponse,
    User,
    VerificationResult,
)
from .signature import verify_equals, verify_payment_signature

logger = get_component_logger("payment-service", "lifecycle")

T = TypeVar("T")

SETTLED_PAYMENT_STATUSES = frozenset({"authorized", "captured"})

MSG_VERIFIED = "Payment verified successfully"
MSG_ALREADY_VERIFIED = "Payment already verified"
MSG_NOT_VERIFIED = "Payment could not be verified"
MSG_NOT_CONFIRMED = "Payment not yet confirmed by the gateway"


class OrderLifecycleManager:
    """Creates orders, opens gateway orders and drives the payment status.

    Payment status moves pending -> completed or pending -> failed, and every move
    goes through the store's conditional update, so a verification racing a webhook
    for the same order settles exactly once.
    """

    def __init__(
        self,
        settings: PaymentSettings,
        store,
        gateway: PaymentGateway,
        events: PaymentEventProducer | None = None,
    ):
        """Initialize the manager.

        Args:
            settings: Service settings
            store: Order store
            gateway: Gateway client
            events: Optional producer for payment events
        """
        self.settings = settings
        self.store = store
        self.gateway = gateway
        self.events = events
        self._opening: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------ checkout

    async def create_order(
        self, items: list[OrderItem], shipping_address: ShippingAddress, actor: User | None
    ) -> CreateOrderResponse:
        """Create a pending card order and its gateway order.

        Args:
            items: Cart line items
            shipping_address: Delivery address
            actor: Authenticated user

        Returns:
            CreateOrderResponse: Ids, amount in minor units and the public key id

        Raises:
            ValidationError: If the cart or address is invalid
            PersistenceError: If the order cannot be stored
            GatewayUnavailableError: If the gateway call fails; the order stays pending
        """
        order = await self._create_pending_order(items, shipping_address, actor, "razorpay")
        order = await self._open_gateway_order(order, actor)
        return self._checkout_response(order)

    async def create_upi_payment(
        self,
        items: list[OrderItem],
        shipping_address: ShippingAddress,
        upi_vpa: str,
        actor: User | None,
    ) -> UpiPaymentResponse:
        """Create a pending UPI order, its gateway order and a UPI deep link."""
        if not upi_vpa or not upi_vpa.strip():
            raise ValidationError("UPI VPA is required")
        order = await self._create_pending_order(items, shipping_address, actor, "upi", upi_vpa.strip())
        order = await self._open_gateway_order(order, actor)
        return UpiPaymentResponse(
            order_id=order.id,
            order_number=order.order_number,
            gateway_order_id=order.gateway_order_id,
            upi_link=self.build_upi_link(order),
            total_amount=order.total_amount,
            key_id=self.settings.key_id,
        )

    async def retry_gateway_order(self, order_id: str, actor: User | None) -> CreateOrderResponse:
        """Open the gateway order for a pending order whose first attempt failed.

        An order that already has a gateway reference gets it back unchanged.
        Concurrent retries for one order share a single gateway call.
        """
        order = await self._get_owned_order(order_id, actor)
        if order.payment_status != "pending":
            raise InvalidStateError(order.id, order.payment_status)
        if order.gateway_order_id:
            return self._checkout_response(order)

        lock = self._opening.setdefault(order.id, asyncio.Lock())
        async with lock:
            order = await self._require(order.id)
            if order.payment_status != "pending":
                raise InvalidStateError(order.id, order.payment_status)
            if not order.gateway_order_id:
                logger.info(f"Retrying gateway order for {order.id}")
                order = await self._open_gateway_order(order, actor)
        self._opening.pop(order.id, None)
        return self._checkout_response(order)

    def build_upi_link(self, order: Order) -> str:
        """Build the deep link that opens the payer's UPI app."""
        params = {
            "pa": order.upi_vpa,
            "pn": self.settings.upi_payee_name,
            "am": str(order.total_amount),
            "cu": order.currency,
            "tn": f"Order {order.order_number}",
        }
        return "upi://pay?" + urlencode(params, quote_via=quote, safe="@")

    # -------------------------------------------------------------- verification

    async def verify_payment(
        self,
        order_id: str,
        gateway_order_id: str,
        gateway_payment_id: str,
        signature: str,
        actor: User | None,
    ) -> VerificationResult:
        """Verify a card checkout from the identifiers and signature the client received.

        A signature mismatch is reported in the result and fails the order; it is
        never raised.

        Raises:
            ValidationError: If an identifier is missing
            NotFoundError: If the order does not exist
            AuthorizationError: If the actor does not own the order
            InvalidMethodError: If the order is not a card order
            GatewayUnavailableError: If the amount cross-check cannot reach the gateway
        """
        if not (order_id and gateway_order_id and gateway_payment_id and signature):
            raise ValidationError("Missing payment verification parameters")
        order = await self._get_owned_order(order_id, actor)
        if order.payment_method != "razorpay":
            raise InvalidMethodError(order.id, "razorpay", order.payment_method)

        secret = self.settings.key_secret.get_secret_value()
        signature_ok = order.gateway_order_id is not None and verify_payment_signature(
            secret, order.gateway_order_id, gateway_payment_id, signature
        )
        authentic = signature_ok and verify_equals(order.gateway_order_id, gateway_order_id)

        if order.payment_status != "pending":
            return self._settled_result(order, gateway_payment_id, authentic)

        if authentic and self.settings.verify_amount:
            payment = await self._call_gateway(self.gateway.fetch_payment, gateway_payment_id)
            authentic = payment.status in SETTLED_PAYMENT_STATUSES and self.payment_matches(order, payment)

        if not authentic:
            logger.warning(f"Payment verification failed for order {order.id}")
            settled, _ = await self.mark_failed(order.id, source="verify-payment")
            return self._result_for(settled, gateway_payment_id)

        settled, _ = await self.mark_completed(order.id, gateway_payment_id, signature, source="verify-payment")
        return self._result_for(settled, gateway_payment_id)

    async def verify_upi_payment(
        self,
        order_id: str,
        payment_id: str,
        gateway_order_id: str,
        signature: str | None,
        actor: User | None,
    ) -> VerificationResult:
        """Verify a UPI payment against the gateway's own payment record.

        The client signature never decides the outcome here; it is only kept when it
        is also a valid signature.
        """
        if not (order_id and payment_id and gateway_order_id):
            raise ValidationError("Missing payment verification parameters")
        order = await self._get_owned_order(order_id, actor)
        if order.payment_method != "upi":
            raise InvalidMethodError(order.id, "upi", order.payment_method)

        if order.payment_status != "pending":
            return self._settled_result(order, payment_id, order.gateway_payment_id == payment_id)

        if not order.gateway_order_id or not verify_equals(order.gateway_order_id, gateway_order_id):
            logger.warning(f"UPI verification for order {order.id} names a foreign gateway order")
            return VerificationResult(success=False, message=MSG_NOT_VERIFIED, payment_status=order.payment_status)

        payment = await self._call_gateway(self.gateway.fetch_payment, payment_id)
        if payment.order_id != order.gateway_order_id:
            logger.warning(f"Payment {payment.id} does not belong to order {order.id}")
            return VerificationResult(success=False, message=MSG_NOT_VERIFIED, payment_status=order.payment_status)

        if payment.status == "failed":
            settled, _ = await self.mark_failed(order.id, source="verify-upi")
            return self._result_for(settled, payment_id)

        if payment.status not in SETTLED_PAYMENT_STATUSES:
            logger.info(f"UPI payment {payment.id} for order {order.id} is still {payment.status}")
            return VerificationResult(success=False, message=MSG_NOT_CONFIRMED, payment_status="pending")

        if not self.payment_matches(order, payment):
            settled, _ = await self.mark_failed(order.id, source="verify-upi")
            return self._result_for(settled, payment_id)

        secret = self.settings.key_secret.get_secret_value()
        if not verify_payment_signature(secret, order.gateway_order_id, payment_id, signature):
            signature = None
        settled, _ = await self.mark_completed(order.id, payment_id, signature, source="verify-upi")
        return self._result_for(settled, payment_id)

    # ------------------------------------------------------------- transitions

    async def mark_completed(
        self, order_id: str, payment_id: str, signature: str | None = None, source: str = "unknown"
    ) -> tuple[Order, bool]:
        """Move a pending order to completed/processing.

        Returns:
            The order as stored after the attempt, and whether this call changed it
        """
        patch = {"payment_status": "completed", "status": "processing", "gateway_payment_id": payment_id}
        if signature:
            patch["gateway_signature"] = signature
        updated = await self.store.conditional_update(order_id, "pending", patch)
        if updated is None:
            current = await self._require(order_id)
            logger.info(f"Order {order_id} already {current.payment_status}, completion from {source} ignored")
            return current, False

        logger.info(f"Order {order_id} payment completed via {source} (payment {payment_id})")
        if self.events:
            self.events.publish_payment_completed(updated)
        return updated, True

    async def mark_failed(self, order_id: str, source: str = "unknown") -> tuple[Order, bool]:
        """Move a pending order to failed. Completed orders are never downgraded."""
        updated = await self.store.conditional_update(order_id, "pending", {"payment_status": "failed"})
        if updated is None:
            current = await self._require(order_id)
            logger.info(f"Order {order_id} already {current.payment_status}, failure from {source} ignored")
            return current, False

        logger.info(f"Order {order_id} payment failed via {source}")
        if self.events:
            self.events.publish_payment_failed(updated)
        return updated, True

    # ------------------------------------------------------------------- reads

    async def get_payment_status(self, order_id: str, actor: User | None) -> PaymentStatusResponse:
        order = await self._get_owned_order(order_id, actor)
        return PaymentStatusResponse(
            payment_status=order.payment_status,
            payment_method=order.payment_method,
            status=order.status,
            total_amount=order.total_amount,
        )

    async def get_payment_details(self, payment_id: str, actor: User | None) -> PaymentDetails:
        """Fetch a gateway payment that belongs to one of the actor's orders.

        The gateway is only asked when the actor has a candidate order locally: one
        that recorded this payment, or a pending one with a gateway reference whose
        payment is not known yet. The fetched payment must then belong to one of
        those orders.
        """
        if actor is None:
            raise AuthenticationError()
        owned = await self.store.list_by_user(actor.id)
        recorded = [o for o in owned if o.gateway_payment_id == payment_id]
        candidates = recorded or [
            o for o in owned if o.payment_status == "pending" and o.gateway_order_id and not o.gateway_payment_id
        ]
        if not candidates:
            logger.warning(f"User {actor.id} requested payment {payment_id} with no matching order")
            raise AuthorizationError(None)

        payment = await self._call_gateway(self.gateway.fetch_payment, payment_id)
        order = next((o for o in candidates if payment.order_id and o.gateway_order_id == payment.order_id), None)
        if order is None:
            logger.warning(f"User {actor.id} requested payment {payment_id} they do not own")
            raise AuthorizationError(None)
        return PaymentDetails(
            id=payment.id,
            amount=from_minor_units(payment.amount),
            currency=payment.currency,
            status=payment.status,
            method=payment.method,
            email=payment.email,
            contact=payment.contact,
            created_at=payment.created_at,
        )

    async def list_orders(self, actor: User | None) -> list[Order]:
        if actor is None:
            raise AuthenticationError()
        return await self.store.list_by_user(actor.id)

    # ----------------------------------------------------------------- helpers

    async def _create_pending_order(
        self,
        items: list[OrderItem],
        shipping_address: ShippingAddress,
        actor: User | None,
        method: PaymentMethod,
        upi_vpa: str | None = None,
    ) -> Order:
        if actor is None:
            raise AuthenticationError()
        if not items:
            raise ValidationError("Cart items are required")
        for item in items:
            if item.quantity < 1 or item.price < 0:
                raise ValidationError(f"Invalid quantity or price for item {item.name}")
        if shipping_address is None:
            raise ValidationError("Shipping address is required")
        blank = [name for name, value in shipping_address.model_dump().items() if not str(value).strip()]
        if blank:
            raise ValidationError(f"Shipping address is missing: {', '.join(blank)}")

        totals = compute_totals(items)
        order = Order(
            user_id=actor.id,
            user_email=actor.email,
            items=items,
            currency=self.settings.currency,
            shipping_address=shipping_address,
            payment_method=method,
            upi_vpa=upi_vpa,
            **totals._asdict(),
        )
        order = await self.store.create(order)
        logger.info(f"Order {order.id} ({order.order_number}) created for user {actor.id}, total {order.total_amount}")
        return order

    def _checkout_response(self, order: Order) -> CreateOrderResponse:
        return CreateOrderResponse(
            order_id=order.id,
            gateway_order_id=order.gateway_order_id,
            amount=to_minor_units(order.total_amount),
            currency=order.currency,
            key_id=self.settings.key_id,
        )

    async def _open_gateway_order(self, order: Order, actor: User) -> Order:
        """Create the gateway order and record its reference.

        The reference is written only if none is stored yet; when another writer got
        there first, the stored reference wins and the new gateway order goes unused.
        """
        notes = {"orderId": order.id, "userId": actor.id}
        if order.payment_method == "upi":
            notes["upiVPA"] = order.upi_vpa
        else:
            notes["userEmail"] = actor.email
        try:
            gateway_order = await self._call_gateway(
                self.gateway.create_order,
                amount_minor_units=to_minor_units(order.total_amount),
                currency=order.currency,
                receipt=order.order_number,
                notes=notes,
                method="upi" if order.payment_method == "upi" else None,
            )
        except GatewayUnavailableError as e:
            e.order_id = order.id
            logger.error(f"Gateway order for {order.id} failed, order left pending for retry: {e.reason}")
            raise
        stored = await self.store.set_gateway_order_if_absent(order.id, gateway_order.id)
        if stored.gateway_order_id != gateway_order.id:
            logger.warning(
                f"Order {order.id} already references {stored.gateway_order_id}, "
                f"gateway order {gateway_order.id} left unused"
            )
        return stored

    async def _call_gateway(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """Run a blocking gateway call in a worker thread, bounded by the gateway timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, **kwargs), timeout=self.settings.gateway_timeout_seconds
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Gateway call {getattr(fn, '__name__', fn)} exceeded {self.settings.gateway_timeout_seconds}s")
            raise GatewayUnavailableError("timed out") from e

    async def _require(self, order_id: str) -> Order:
        order = await self.store.find_by_id(order_id)
        if order is None:
            raise NotFoundError(order_id)
        return order

    async def _get_owned_order(self, order_id: str, actor: User | None) -> Order:
        if actor is None:
            raise AuthenticationError()
        order = await self._require(order_id)
        if order.user_id != actor.id:
            logger.warning(f"User {actor.id} denied access to order {order_id}")
            raise AuthorizationError(order_id)
        return order

    def payment_matches(self, order: Order, payment: GatewayPayment) -> bool:
        expected_amount = to_minor_units(order.total_amount)
        if payment.order_id != order.gateway_order_id:
            logger.warning(f"Payment {payment.id} belongs to {payment.order_id}, not {order.gateway_order_id}")
            return False
        if payment.amount != expected_amount or payment.currency != order.currency:
            logger.warning(
                f"Payment {payment.id} amount {payment.amount} {payment.currency} does not match "
                f"order {order.id} amount {expected_amount} {order.currency}"
            )
            return False
        return True

    @staticmethod
    def _settled_result(order: Order, payment_id: str, authentic: bool) -> VerificationResult:
        """Answer a verification for an order that already left pending, without touching it."""
        if order.payment_status == "completed" and authentic and order.gateway_payment_id == payment_id:
            return VerificationResult(
                success=True, message=MSG_ALREADY_VERIFIED, payment_status="completed", order=order
            )
        return VerificationResult(success=False, message=MSG_NOT_VERIFIED, payment_status=order.payment_status)

    @staticmethod
    def _result_for(order: Order, payment_id: str) -> VerificationResult:
        if order.payment_status == "completed" and order.gateway_payment_id == payment_id:
            return VerificationResult(success=True, message=MSG_VERIFIED, payment_status="completed", order=order)
        return VerificationResult(success=False, message=MSG_NOT_VERIFIED, payment_status=order.payment_status)

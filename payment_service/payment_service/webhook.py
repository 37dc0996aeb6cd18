"""Handling of gateway-pushed payment events."""

from typing import Awaitable, Callable

import pydantic
from logging_utils.config import get_component_logger

from .config import PaymentSettings
from .exceptions import SignatureMismatchError, ValidationError
from .lifecycle import OrderLifecycleManager
from .schemas import GatewayPayment, Order, WebhookEvent, WebhookPayload
from .signature import verify_webhook_signature

logger = get_component_logger("payment-service", "webhook")

ACK = {"status": "ok"}


class WebhookHandler:
    """Verifies and applies webhook deliveries.

    Deliveries may arrive before or after client verification and may be repeated;
    transitions go through the same conditional update the lifecycle manager uses,
    so repeated or late events never undo a settled order.
    """

    def __init__(self, settings: PaymentSettings, manager: OrderLifecycleManager):
        """Initialize the handler.

        Args:
            settings: Service settings carrying the webhook secret
            manager: Lifecycle manager owning the status transitions
        """
        self.settings = settings
        self.manager = manager
        self.store = manager.store
        self._handlers: dict[str, Callable[[GatewayPayment], Awaitable[None]]] = {
            "payment.captured": self._on_payment_captured,
            "payment.failed": self._on_payment_failed,
        }

    async def handle(self, raw_body: bytes, signature: str | None) -> dict[str, str]:
        """Verify a delivery over its raw bytes, then dispatch it.

        Args:
            raw_body: Request body exactly as received
            signature: Value of the signature header

        Returns:
            dict: Acknowledgement for the gateway

        Raises:
            SignatureMismatchError: If the secret is not configured or the signature is wrong
            ValidationError: If the signed payload is malformed
        """
        if self.settings.webhook_secret is None:
            logger.error("Webhook received but no webhook secret is configured")
            raise SignatureMismatchError("Webhook secret not configured")
        if not verify_webhook_signature(self.settings.webhook_secret.get_secret_value(), raw_body, signature):
            logger.warning("Webhook signature verification failed")
            raise SignatureMismatchError()

        try:
            event = WebhookEvent.model_validate_json(raw_body)
        except pydantic.ValidationError as e:
            logger.warning(f"Malformed webhook payload: {e.error_count()} errors")
            raise ValidationError("Malformed webhook payload") from e

        handler = self._handlers.get(event.event)
        if handler is None:
            logger.info(f"Unhandled webhook event type: {event.event}")
            return ACK
        try:
            payment = WebhookPayload.model_validate(event.payload).payment.entity
        except pydantic.ValidationError as e:
            logger.warning(f"Webhook {event.event} carries no valid payment entity")
            raise ValidationError("Malformed webhook payload") from e

        await handler(payment)
        return ACK

    async def _on_payment_captured(self, payment: GatewayPayment) -> None:
        order = await self._find_order(payment)
        if order is None:
            return
        if order.payment_status == "completed":
            logger.debug(f"Order {order.id} already completed, capture of {payment.id} is a no-op")
            return
        if order.payment_status == "failed":
            logger.warning(f"Payment {payment.id} captured for failed order {order.id}, needs reconciliation")
            return
        if not self.manager.payment_matches(order, payment):
            logger.error(f"Captured payment {payment.id} does not match order {order.id}, needs reconciliation")
            return
        await self.manager.mark_completed(order.id, payment.id, source="webhook")

    async def _on_payment_failed(self, payment: GatewayPayment) -> None:
        order = await self._find_order(payment)
        if order is None:
            return
        if order.payment_status != "pending":
            logger.info(f"Order {order.id} already {order.payment_status}, failure of {payment.id} ignored")
            return
        if payment.order_id != order.gateway_order_id:
            logger.warning(f"Failed payment {payment.id} is for {payment.order_id}, not order {order.id}")
            return
        if order.gateway_payment_id and order.gateway_payment_id != payment.id:
            logger.warning(f"Failed payment {payment.id} is not the recorded payment of order {order.id}")
            return
        await self.manager.mark_failed(order.id, source="webhook")

    async def _find_order(self, payment: GatewayPayment) -> Order | None:
        order_id = payment.notes.get("orderId")
        order = await self.store.find_by_id(order_id) if isinstance(order_id, str) else None
        if order is None and payment.order_id:
            order = await self.store.find_by_gateway_order_id(payment.order_id)
        if order is None:
            logger.warning(f"No order found for webhook payment {payment.id}")
        return order

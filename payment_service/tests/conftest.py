"""Test fixtures for the payment service tests."""

import asyncio
import json
import time
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from payment_service.config import PaymentSettings
from payment_service.exceptions import GatewayUnavailableError, ValidationError
from payment_service.lifecycle import OrderLifecycleManager
from payment_service.producer import PaymentEventProducer
from payment_service.schemas import GatewayOrder, GatewayPayment, OrderItem, ShippingAddress, User
from payment_service.server import app, state
from payment_service.signature import payment_signature_message, sign
from payment_service.store import InMemoryOrderStore
from payment_service.webhook import WebhookHandler

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "whsec_test_secret"


class FakeGateway:
    """In-process stand-in for the gateway REST API."""

    def __init__(self):
        self.created: list[dict] = []
        self.payments: dict[str, GatewayPayment] = {}
        self.fetches: list[str] = []
        self.unavailable = False
        self.delay = 0.0

    def create_order(self, amount_minor_units, currency, receipt, notes, method=None):
        if self.delay:
            time.sleep(self.delay)
        if self.unavailable:
            raise GatewayUnavailableError("connection refused")
        self.created.append(
            {
                "amount_minor_units": amount_minor_units,
                "currency": currency,
                "receipt": receipt,
                "notes": notes,
                "method": method,
            }
        )
        return GatewayOrder(
            id=f"order_{len(self.created):04d}", amount=amount_minor_units, currency=currency, receipt=receipt
        )

    def fetch_payment(self, payment_id):
        self.fetches.append(payment_id)
        if self.unavailable:
            raise GatewayUnavailableError("connection refused")
        if payment_id not in self.payments:
            raise ValidationError("Gateway rejected request: The id provided does not exist")
        return self.payments[payment_id]

    def add_payment(self, payment_id, gateway_order_id, amount, currency="INR", status="captured", notes=None):
        """Register a payment the gateway knows about."""
        self.payments[payment_id] = GatewayPayment(
            id=payment_id,
            order_id=gateway_order_id,
            amount=amount,
            currency=currency,
            status=status,
            method="card",
            email="asha@example.com",
            contact="+919876543210",
            created_at=1760000000,
            notes=notes or {},
        )
        return self.payments[payment_id]


def run(coro):
    """Run a coroutine to completion."""
    return asyncio.run(coro)


def checkout_signature(gateway_order_id: str, payment_id: str, secret: str = KEY_SECRET) -> str:
    """Sign a checkout the way the gateway does."""
    return sign(secret, payment_signature_message(gateway_order_id, payment_id))


def webhook_delivery(event, order_id=None, gateway_order_id=None, payment_id="pay_001", amount=11000, notes=None):
    """Build a signed webhook delivery.

    Returns:
        tuple: (raw body bytes, signature header value)
    """
    entity = {
        "id": payment_id,
        "entity": "payment",
        "order_id": gateway_order_id,
        "amount": amount,
        "currency": "INR",
        "status": "captured" if event == "payment.captured" else "failed",
        "method": "card",
        "notes": notes if notes is not None else ({"orderId": order_id} if order_id else []),
        "created_at": 1760000000,
    }
    body = json.dumps({"entity": "event", "event": event, "payload": {"payment": {"entity": entity}}}).encode()
    return body, sign(WEBHOOK_SECRET, body)


@pytest.fixture
def settings():
    """Settings with test credentials.

    Returns:
        PaymentSettings: Settings with a webhook secret and amount cross-check on.
    """
    return PaymentSettings(key_id="rzp_test_key", key_secret=KEY_SECRET, webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def store():
    return InMemoryOrderStore()


@pytest.fixture
def events():
    """Mocked payment event producer."""
    return MagicMock(spec=PaymentEventProducer)


@pytest.fixture
def manager(settings, store, gateway, events):
    return OrderLifecycleManager(settings, store, gateway, events)


@pytest.fixture
def webhooks(settings, manager):
    return WebhookHandler(settings, manager)


@pytest.fixture
def user():
    return User(id="user-1", email="asha@example.com", name="Asha")


@pytest.fixture
def other_user():
    return User(id="user-2", email="ravi@example.com", name="Ravi")


@pytest.fixture
def address():
    return ShippingAddress(
        full_name="Asha Rao",
        address="12 MG Road",
        city="Bengaluru",
        state="Karnataka",
        zip_code="560001",
        country="India",
    )


@pytest.fixture
def items():
    """A cart whose subtotal is above the free shipping threshold."""
    return [OrderItem(product_id="prod-001", name="Cold Brew Kit", price=Decimal("100"), quantity=1)]


@pytest.fixture
def small_items():
    """A cart whose subtotal is below the free shipping threshold."""
    return [OrderItem(product_id="prod-002", name="Filter Papers", price=Decimal("10"), quantity=1)]


@pytest.fixture
def api(settings, store, gateway, events, user, other_user):
    """Test client wired to fake collaborators, with a session per user.

    Returns:
        tuple: (TestClient, owner auth headers, other user auth headers)
    """
    state.configure(settings, store, gateway, events)
    owner_headers = {"Authorization": f"Bearer {state.auth.open_session(user)}"}
    other_headers = {"Authorization": f"Bearer {state.auth.open_session(other_user)}"}
    return TestClient(app), owner_headers, other_headers

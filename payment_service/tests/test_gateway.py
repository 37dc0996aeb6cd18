"""Tests for the gateway REST client."""

import pytest
import requests

from payment_service.exceptions import GatewayUnavailableError, ValidationError
from payment_service.gateway import GatewayClient


@pytest.fixture
def client(settings):
    return GatewayClient(settings)


def _response(mocker, status_code=200, body=None):
    response = mocker.MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    return response


def test_create_order_posts_minor_units(client, mocker):
    """Test that orders are created with basic auth, a timeout and the gateway body."""
    post = mocker.patch(
        "payment_service.gateway.requests.post",
        return_value=_response(
            mocker, body={"id": "order_abc", "entity": "order", "amount": 11000, "currency": "INR", "status": "created"}
        ),
    )

    order = client.create_order(11000, "INR", "ORD-20261019-ABC123", {"orderId": "o1"})

    post.assert_called_once_with(
        "https://api.razorpay.com/v1/orders",
        auth=("rzp_test_key", "test_key_secret"),
        timeout=10.0,
        json={"amount": 11000, "currency": "INR", "receipt": "ORD-20261019-ABC123", "notes": {"orderId": "o1"}},
    )
    assert order.id == "order_abc"
    assert order.amount == 11000


def test_create_order_with_method(client, mocker):
    post = mocker.patch(
        "payment_service.gateway.requests.post",
        return_value=_response(mocker, body={"id": "order_abc", "amount": 2100, "currency": "INR"}),
    )
    client.create_order(2100, "INR", "ORD-1", {}, method="upi")
    assert post.call_args.kwargs["json"]["method"] == "upi"


def test_fetch_payment_normalizes_empty_notes(client, mocker):
    get = mocker.patch(
        "payment_service.gateway.requests.get",
        return_value=_response(
            mocker,
            body={
                "id": "pay_001",
                "entity": "payment",
                "order_id": "order_abc",
                "amount": 11000,
                "currency": "INR",
                "status": "captured",
                "method": "upi",
                "email": "asha@example.com",
                "contact": "+919876543210",
                "notes": [],
                "created_at": 1760000000,
            },
        ),
    )

    payment = client.fetch_payment("pay_001")

    get.assert_called_once_with("https://api.razorpay.com/v1/payments/pay_001", auth=("rzp_test_key", "test_key_secret"), timeout=10.0)
    assert payment.order_id == "order_abc"
    assert payment.notes == {}
    assert payment.created_at == 1760000000


def test_timeout_is_retryable(client, mocker):
    mocker.patch("payment_service.gateway.requests.post", side_effect=requests.Timeout("read timed out"))
    with pytest.raises(GatewayUnavailableError) as exc_info:
        client.create_order(11000, "INR", "ORD-1", {})
    assert exc_info.value.retryable is True


def test_connection_error_is_retryable(client, mocker):
    mocker.patch("payment_service.gateway.requests.get", side_effect=requests.ConnectionError("refused"))
    with pytest.raises(GatewayUnavailableError):
        client.fetch_payment("pay_001")


def test_server_error_is_retryable(client, mocker):
    mocker.patch("payment_service.gateway.requests.get", return_value=_response(mocker, status_code=502))
    with pytest.raises(GatewayUnavailableError):
        client.fetch_payment("pay_001")


def test_client_error_is_a_validation_error(client, mocker):
    mocker.patch(
        "payment_service.gateway.requests.get",
        return_value=_response(
            mocker,
            status_code=400,
            body={"error": {"code": "BAD_REQUEST_ERROR", "description": "The id provided does not exist"}},
        ),
    )
    with pytest.raises(ValidationError, match="does not exist"):
        client.fetch_payment("pay_missing")


def test_malformed_response(client, mocker):
    mocker.patch("payment_service.gateway.requests.post", return_value=_response(mocker, body={"id": "order_abc"}))
    with pytest.raises(GatewayUnavailableError):
        client.create_order(11000, "INR", "ORD-1", {})

"""Client for the payment gateway's REST API."""

from typing import Any, Protocol

import pydantic
import requests
from logging_utils.config import get_component_logger

from .config import PaymentSettings
from .exceptions import GatewayUnavailableError, ValidationError
from .schemas import GatewayOrder, GatewayPayment

logger = get_component_logger("payment-service", "gateway")


class PaymentGateway(Protocol):
    """Protocol defining the gateway calls the service depends on."""

    def create_order(
        self,
        amount_minor_units: int,
        currency: str,
        receipt: str,
        notes: dict[str, str],
        method: str | None = None,
    ) -> GatewayOrder:
        ...

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        ...


class GatewayClient:
    """Gateway client authenticated with the key id and key secret.

    Every call is bounded by the configured timeout. Network failures, timeouts and
    5xx responses raise GatewayUnavailableError; 4xx responses raise ValidationError.
    """

    def __init__(self, settings: PaymentSettings):
        """Initialize the client from settings.

        Args:
            settings: Service settings carrying the gateway credentials
        """
        self.base_url = settings.gateway_base_url.rstrip("/")
        self.timeout = settings.gateway_timeout_seconds
        self._auth = (settings.key_id, settings.key_secret.get_secret_value())

    def create_order(
        self,
        amount_minor_units: int,
        currency: str,
        receipt: str,
        notes: dict[str, str],
        method: str | None = None,
    ) -> GatewayOrder:
        """Create a gateway order.

        Args:
            amount_minor_units: Amount in the smallest currency unit
            currency: ISO currency code
            receipt: Receipt number of the local order
            notes: Opaque metadata echoed back on payments and webhooks
            method: Optional payment method restriction (e.g. "upi")

        Returns:
            GatewayOrder: The created gateway order
        """
        body: dict[str, Any] = {
            "amount": amount_minor_units,
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
        }
        if method:
            body["method"] = method
        data = self._request("post", "/orders", json=body)
        order = self._parse(GatewayOrder, data)
        logger.info(f"Gateway order {order.id} created for receipt {receipt}")
        return order

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        """Fetch a payment record by id."""
        data = self._request("get", f"/payments/{payment_id}")
        return self._parse(GatewayPayment, data)

    def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = getattr(requests, method)(url, auth=self._auth, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            logger.error(f"Gateway call {method.upper()} {path} timed out after {self.timeout}s")
            raise GatewayUnavailableError("timed out") from e
        except requests.RequestException as e:
            logger.error(f"Gateway call {method.upper()} {path} failed: {e}")
            raise GatewayUnavailableError(str(e)) from e

        if response.status_code >= 500:
            logger.error(f"Gateway call {method.upper()} {path} returned {response.status_code}")
            raise GatewayUnavailableError(f"HTTP {response.status_code}")
        if response.status_code >= 400:
            description = _error_description(response)
            logger.warning(f"Gateway rejected {method.upper()} {path}: {description}")
            raise ValidationError(f"Gateway rejected request: {description}")
        try:
            return response.json()
        except ValueError as e:
            raise GatewayUnavailableError("malformed response") from e

    @staticmethod
    def _parse(model, data: dict[str, Any]):
        try:
            return model.model_validate(data)
        except pydantic.ValidationError as e:
            logger.error(f"Malformed gateway response for {model.__name__}: {e}")
            raise GatewayUnavailableError("malformed response") from e


def _error_description(response) -> str:
    try:
        return response.json()["error"]["description"]
    except (ValueError, KeyError, TypeError):
        return f"HTTP {response.status_code}"

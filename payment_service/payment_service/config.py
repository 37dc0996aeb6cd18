"""Configuration for the payment service."""

import os

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class PaymentSettings(BaseModel):
    """Settings built once at startup and passed to the components that need them.

    Attributes:
        key_id (str): Public gateway key id, handed to clients to open the checkout UI.
        key_secret (SecretStr): Gateway key secret used for API auth and payment signatures.
        webhook_secret (SecretStr | None): Shared secret for webhook signatures.
        gateway_base_url (str): Base URL of the gateway REST API.
        gateway_timeout_seconds (float): Upper bound for a single gateway call.
        currency (str): The single currency every amount is expressed in.
        upi_payee_name (str): Payee name placed in UPI deep links.
        kafka_bootstrap_servers (str | None): Kafka brokers for payment events.
        verify_amount (bool): Cross-check gateway-reported amounts before completing orders.
        auth_service_url (str | None): Base URL of the storefront auth service that owns sign-in sessions.
        auth_timeout_seconds (float): Upper bound for a single session lookup.
        session_cookie (str): Name of the cookie that carries the session token.
    """

    model_config = ConfigDict(frozen=True)

    key_id: str = Field(..., min_length=1)
    key_secret: SecretStr
    webhook_secret: SecretStr | None = None
    gateway_base_url: str = "https://api.razorpay.com/v1"
    gateway_timeout_seconds: float = Field(10.0, gt=0)
    currency: str = Field("INR", min_length=3, max_length=3)
    upi_payee_name: str = "ProductLab"
    kafka_bootstrap_servers: str | None = None
    verify_amount: bool = True
    auth_service_url: str | None = None
    auth_timeout_seconds: float = Field(5.0, gt=0)
    session_cookie: str = "session"

    @classmethod
    def from_env(cls) -> "PaymentSettings":
        """Build settings from environment variables.

        Returns:
            PaymentSettings: The settings for this process.
        """
        webhook_secret = os.getenv("RAZORPAY_WEBHOOK_SECRET")
        return cls(
            key_id=os.getenv("RAZORPAY_KEY_ID", "rzp_test_key"),
            key_secret=os.getenv("RAZORPAY_KEY_SECRET", "test_key_secret"),
            webhook_secret=webhook_secret or None,
            gateway_base_url=os.getenv("GATEWAY_BASE_URL", "https://api.razorpay.com/v1"),
            gateway_timeout_seconds=float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10")),
            currency=os.getenv("PAYMENT_CURRENCY", "INR"),
            upi_payee_name=os.getenv("UPI_PAYEE_NAME", "ProductLab"),
            kafka_bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS") or None,
            verify_amount=os.getenv("VERIFY_PAYMENT_AMOUNT", "true").lower() == "true",
            auth_service_url=os.getenv("AUTH_SERVICE_URL") or None,
            auth_timeout_seconds=float(os.getenv("AUTH_TIMEOUT_SECONDS", "5")),
            session_cookie=os.getenv("SESSION_COOKIE_NAME", "session"),
        )

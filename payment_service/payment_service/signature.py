"""HMAC-SHA256 signatures shared by client verification and webhooks."""

import hashlib
import hmac


def _to_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign(secret: str | bytes, message: str | bytes) -> str:
    """Compute the HMAC-SHA256 tag of a message.

    Args:
        secret: Shared secret
        message: Message to sign; bytes are signed as-is

    Returns:
        str: Lower-case hex digest
    """
    return hmac.new(_to_bytes(secret), _to_bytes(message), hashlib.sha256).hexdigest()


def verify_equals(tag_a: str | bytes | None, tag_b: str | bytes | None) -> bool:
    """Compare two tags in constant time."""
    if tag_a is None or tag_b is None:
        return False
    return hmac.compare_digest(_to_bytes(tag_a), _to_bytes(tag_b))


def payment_signature_message(gateway_order_id: str, gateway_payment_id: str) -> str:
    """Build the message the gateway signs for a completed checkout."""
    return f"{gateway_order_id}|{gateway_payment_id}"


def verify_payment_signature(
    secret: str, gateway_order_id: str, gateway_payment_id: str, signature: str | None
) -> bool:
    """Check a checkout signature returned to the client by the gateway.

    Args:
        secret: Gateway key secret
        gateway_order_id: Gateway order reference
        gateway_payment_id: Gateway payment reference
        signature: Hex signature supplied by the client

    Returns:
        bool: True if the signature is authentic
    """
    expected = sign(secret, payment_signature_message(gateway_order_id, gateway_payment_id))
    return verify_equals(expected, signature)


def verify_webhook_signature(secret: str, raw_body: bytes, signature: str | None) -> bool:
    """Check a webhook signature over the exact raw request body."""
    return verify_equals(sign(secret, raw_body), signature)

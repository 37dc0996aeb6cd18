"""Tests for HMAC signatures."""

import hashlib
import hmac

from payment_service.signature import (
    payment_signature_message,
    sign,
    verify_equals,
    verify_payment_signature,
    verify_webhook_signature,
)


def _flip_first_bit(signature: str) -> str:
    flipped = int(signature[0], 16) ^ 0x1
    return f"{flipped:x}" + signature[1:]


def test_sign_matches_hmac_sha256_hex():
    expected = hmac.new(b"secret", b"order_1|pay_1", hashlib.sha256).hexdigest()
    assert sign("secret", "order_1|pay_1") == expected
    assert sign(b"secret", b"order_1|pay_1") == expected


def test_payment_signature_message_uses_pipe_separator():
    assert payment_signature_message("order_1", "pay_1") == "order_1|pay_1"


def test_verify_payment_signature_accepts_authentic_signature():
    signature = sign("secret", "order_1|pay_1")
    assert verify_payment_signature("secret", "order_1", "pay_1", signature) is True


def test_verify_payment_signature_rejects_tampering():
    signature = sign("secret", "order_1|pay_1")
    assert verify_payment_signature("secret", "order_1", "pay_1", _flip_first_bit(signature)) is False
    assert verify_payment_signature("secret", "order_1", "pay_2", signature) is False
    assert verify_payment_signature("other", "order_1", "pay_1", signature) is False
    assert verify_payment_signature("secret", "order_1", "pay_1", None) is False


def test_verify_equals():
    assert verify_equals("abc", "abc") is True
    assert verify_equals("abc", b"abc") is True
    assert verify_equals("abc", "abd") is False
    assert verify_equals("abc", "") is False
    assert verify_equals(None, "abc") is False


def test_webhook_signature_covers_exact_bytes():
    body = b'{"event": "payment.captured", "payload": {}}'
    signature = sign("whsec", body)
    assert verify_webhook_signature("whsec", body, signature) is True
    # Same JSON, different bytes
    assert verify_webhook_signature("whsec", b'{"event":"payment.captured","payload":{}}', signature) is False

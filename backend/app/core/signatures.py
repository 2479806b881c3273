"""HMAC signature verification for Razorpay callbacks"""
import hashlib
import hmac
from typing import Optional


def compute_signature(message: bytes, secret: str) -> str:
    """Hex-encoded HMAC-SHA256 of ``message`` keyed with ``secret``"""
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Check a webhook signature against the exact raw request bytes.

    Fails closed: a missing secret, a missing signature or a body that is not
    raw bytes (e.g. something a JSON middleware already parsed) is never valid.
    """
    if not secret or not signature:
        return False
    if not isinstance(raw_body, (bytes, bytearray)):
        return False

    expected = compute_signature(bytes(raw_body), secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("utf-8"))


def verify_payment_signature(
    order_id: Optional[str],
    payment_id: Optional[str],
    signature: Optional[str],
    key_secret: Optional[str]
) -> bool:
    """Check the checkout confirmation signature (``order_id|payment_id``)"""
    if not order_id or not payment_id:
        return False
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return verify_signature(message, signature, key_secret)

"""
Payment gateway confirmation.

The gateway signs "<order_id>|<payment_id>" with HMAC-SHA256 under the
shared key secret and sends the hex digest back with the payment. Order
creation on the gateway side is handled by the gateway SDK, not here.
"""
import hashlib
import hmac

from config import PAYMENT_KEY_SECRET
from exceptions import PaymentVerificationError


def sign(order_id: str, payment_id: str, secret: str = PAYMENT_KEY_SECRET) -> str:
    body = f"{order_id}|{payment_id}"
    return hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str,
                     secret: str = PAYMENT_KEY_SECRET) -> None:
    """Raise PaymentVerificationError unless `signature` matches."""
    if not order_id or not payment_id or not signature:
        raise PaymentVerificationError("All payment details are required")
    expected = sign(order_id, payment_id, secret)
    if not hmac.compare_digest(expected, signature):
        raise PaymentVerificationError()

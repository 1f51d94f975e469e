# cart_service/payment.py
# Payment Verifier: checks the gateway's HMAC-SHA256 over "<gateway_order_id>|<gateway_payment_id>".
# Pure; never touches carts or orders.
import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional

from cart_service.config import gateway_secret


@dataclass(frozen=True)
class PaymentVerification:
    verified: bool
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    reason: Optional[str] = None  # missing-field, secret-not-configured, signature-mismatch

    @property
    def idempotency_key(self):
        return (self.gateway_order_id, self.gateway_payment_id)


def sign_payment(gateway_order_id: str, gateway_payment_id: str, secret: str) -> str:
    message = f"{gateway_order_id}|{gateway_payment_id}"
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def verify_payment(gateway_order_id: str, gateway_payment_id: str, signature: str,
                   secret: str = None) -> PaymentVerification:
    if not gateway_order_id or not gateway_payment_id or not signature:
        return PaymentVerification(False, gateway_order_id, gateway_payment_id, reason="missing-field")

    secret = secret or gateway_secret()
    if not secret:
        return PaymentVerification(False, gateway_order_id, gateway_payment_id, reason="secret-not-configured")

    expected = sign_payment(gateway_order_id, gateway_payment_id, secret)
    if not hmac.compare_digest(expected.encode(), str(signature).encode()):
        return PaymentVerification(False, gateway_order_id, gateway_payment_id, reason="signature-mismatch")

    return PaymentVerification(True, gateway_order_id, gateway_payment_id)

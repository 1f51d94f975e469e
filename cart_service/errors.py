# cart_service/errors.py
# Conditions a caller has to act on; the HTTP layer renders them as
# {"error": <code>, "detail": <message>, ...}


class CartEngineError(Exception):
    code = "error"
    status_code = 500

    def __init__(self, detail: str = "", **extra):
        super().__init__(detail or self.code)
        self.detail = detail or self.code
        self.extra = extra

    def to_dict(self) -> dict:
        body = {"error": self.code, "detail": self.detail}
        body.update(self.extra)
        return body


class InputInvalid(CartEngineError):
    """Rejected before reaching storage: missing product id, non-positive quantity."""

    code = "input-invalid"
    status_code = 400


class NotFound(CartEngineError):
    code = "not-found"
    status_code = 404


class InsufficientStock(CartEngineError):
    code = "insufficient-stock"
    status_code = 400

    def __init__(self, product_id: str, requested: int, available: int):
        super().__init__(
            f"Only {available} items available in stock",
            product_id=product_id,
            requested=requested,
            available=available,
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class StoreUnavailable(CartEngineError):
    """Transient persistence failure. Safe to retry; never means "empty cart"."""

    code = "store-unavailable"
    status_code = 503


class SignatureInvalid(CartEngineError):
    code = "signature-invalid"
    status_code = 400


class PaymentNotConfigured(CartEngineError):
    code = "payment-not-configured"
    status_code = 500


class CartMismatch(CartEngineError):
    code = "cart-mismatch"
    status_code = 409


class PaymentSucceededOrderPending(CartEngineError):
    """Money has moved but the order was not written. Needs reconciliation."""

    code = "payment-succeeded-order-pending"
    status_code = 500


class Unauthenticated(CartEngineError):
    code = "unauthenticated"
    status_code = 401

# cart_service/routes.py
from dataclasses import asdict
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from cart_service.admission import ReserveMode, reserve
from cart_service.auth import get_identity
from cart_service.db.database import get_db
from cart_service.db.functions import clear_cart, list_lines, remove_line
from cart_service.db.models import CartLine, Product
from cart_service.db.schemas import (
    CartDeleteRequest,
    CartLineRequest,
    CartLineResponse,
    CartResponse,
    MergeRejectionResponse,
    MergeRequest,
    MergeResponse,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
    StockResponse,
)
from cart_service.errors import (
    CartEngineError,
    InputInvalid,
    PaymentNotConfigured,
    SignatureInvalid,
    StoreUnavailable,
)
from cart_service.ledger import stock_summary
from cart_service.logging_config import add_context
from cart_service.merge import EphemeralCartLine, EphemeralCartMirror, merge_cart
from cart_service.orders import materialize_order
from cart_service.payment import verify_payment

logger = structlog.get_logger(__name__)

router = APIRouter()

STORE_RETRY_AFTER_SECONDS = "1"


def line_response(line: CartLine, product: Product = None) -> CartLineResponse:
    # Fresh lines carry no loaded product; callers pass the one they locked
    product = product or line.product
    price = float(product.price) if product is not None else None
    return CartLineResponse(
        product_id=line.product_id,
        quantity=line.quantity,
        reserved_at=line.reserved_at,
        name=product.name if product is not None else None,
        price=price,
        image_url=product.image_url if product is not None else None,
        subtotal=round(price * line.quantity, 2) if price is not None else None,
    )


def cart_response(lines) -> CartResponse:
    items = [line_response(line) for line in lines]
    return CartResponse(
        lines=items,
        count=sum(item.quantity for item in items),
        total=round(sum(item.subtotal or 0 for item in items), 2),
    )


def _dump(model) -> dict:
    return model.model_dump(by_alias=True, mode="json")


async def current_identity(identity: str = Depends(get_identity)) -> str:
    add_context(identity=identity)
    return identity


# Add units to a line (DELTA)
@router.post("/cart")
async def add_to_cart(payload: CartLineRequest, identity: str = Depends(current_identity),
                      db: AsyncSession = Depends(get_db)):
    if payload.quantity <= 0:
        raise InputInvalid("Quantity must be at least 1.")
    result = await reserve(db, identity, payload.product_id, payload.quantity, ReserveMode.DELTA)
    result.raise_for_rejection()
    return {"success": True, "line": _dump(line_response(result.line, result.product))}


# Replace the quantity of a line (SET); zero removes it
@router.patch("/cart")
async def update_cart_line(payload: CartLineRequest, identity: str = Depends(current_identity),
                           db: AsyncSession = Depends(get_db)):
    if payload.quantity < 0:
        raise InputInvalid("Quantity must not be negative.")
    if payload.quantity == 0:
        await remove_line(db, identity, payload.product_id)
        return {"success": True}

    result = await reserve(db, identity, payload.product_id, payload.quantity, ReserveMode.SET)
    result.raise_for_rejection()
    return {"success": True, "line": _dump(line_response(result.line, result.product))}


@router.get("/cart", response_model=CartResponse)
async def get_cart(identity: str = Depends(current_identity), db: AsyncSession = Depends(get_db)):
    lines = await list_lines(db, identity)
    return cart_response(lines)


@router.delete("/cart")
async def delete_from_cart(payload: Optional[CartDeleteRequest] = None,
                           product_id: Optional[str] = Query(default=None, alias="productId"),
                           identity: str = Depends(current_identity), db: AsyncSession = Depends(get_db)):
    product_id = (payload.product_id if payload else None) or product_id
    if product_id:
        await remove_line(db, identity, product_id)
        return {"success": True}

    removed = await clear_cart(db, identity)
    return {"success": True, "removed": removed}


# Fold the guest cart into the shopper's cart right after login
@router.post("/cart/merge", response_model=MergeResponse)
async def merge_guest_cart(payload: MergeRequest, identity: str = Depends(current_identity),
                           db: AsyncSession = Depends(get_db)):
    mirror = EphemeralCartMirror(
        EphemeralCartLine(
            id=line.id,
            quantity=line.quantity,
            name=line.name,
            price=line.price,
            image_url=line.image_url,
            size=line.size,
            added_at=line.added_at,
        )
        for line in payload.lines
    )
    merged = await merge_cart(db, identity, mirror, snapshot_id=payload.snapshot_id)

    return MergeResponse(
        lines=[line_response(line) for line in merged.lines],
        admitted=[line_response(result.line, result.product) for result in merged.admitted],
        rejected=[
            MergeRejectionResponse(
                product_id=rejection.product_id,
                attempted=rejection.attempted,
                available=rejection.available,
                reason=rejection.reason,
            )
            for rejection in merged.rejected
        ],
        duplicates=[asdict(line) for line in merged.duplicates],
        mirror=[asdict(line) for line in mirror.lines],
    )


@router.get("/products/{product_id}/stock", response_model=StockResponse)
async def get_product_stock(product_id: str, db: AsyncSession = Depends(get_db)):
    return StockResponse(**await stock_summary(db, product_id))


@router.post("/payment/verify", response_model=PaymentVerifyResponse)
async def verify_payment_and_create_order(payload: PaymentVerifyRequest,
                                          identity: str = Depends(current_identity),
                                          db: AsyncSession = Depends(get_db)):
    verification = verify_payment(payload.gateway_order_id, payload.gateway_payment_id, payload.signature)
    if not verification.verified:
        if verification.reason == "secret-not-configured":
            logger.error("Payment gateway secret is not configured")
            raise PaymentNotConfigured("Payment verification is not configured")
        logger.warning(
            "Payment signature rejected",
            reason=verification.reason,
            gateway_order_id=payload.gateway_order_id,
            gateway_payment_id=payload.gateway_payment_id,
        )
        raise SignatureInvalid("Invalid payment signature")

    result = await materialize_order(db, identity, verification, payload.expected_items, payload.expected_total)
    result.raise_for_failure(
        gatewayOrderId=verification.gateway_order_id,
        gatewayPaymentId=verification.gateway_payment_id,
    )
    return PaymentVerifyResponse(
        success=True,
        order_id=result.order.id,
        payment_id=verification.gateway_payment_id,
        replayed=result.replayed,
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(CartEngineError)
    async def cart_engine_error_handler(request: Request, exc: CartEngineError):
        headers = {"Retry-After": STORE_RETRY_AFTER_SECONDS} if isinstance(exc, StoreUnavailable) else None
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=InputInvalid.status_code,
            content={
                "error": InputInvalid.code,
                "detail": "Invalid request",
                "errors": jsonable_encoder(exc.errors()),
            },
        )

# cart_service/orders.py
# Order Materializer: one transaction turns a verified payment and the live cart into an order.
# A payment reference materializes at most once; replays return the existing order.
# When the money has moved but the write fails, the cart stays intact and the outcome
# is reported as payment-succeeded-order-pending.
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

import structlog
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from cart_service.config import CART_TTL
from cart_service.db.database import store_operation
from cart_service.db.functions import live_lines
from cart_service.db.models import CartLine, Order, OrderItem, OrderStatus, utcnow
from cart_service.errors import (
    CartMismatch,
    InputInvalid,
    PaymentSucceededOrderPending,
    SignatureInvalid,
)
from cart_service.ledger import get_product
from cart_service.locks import identity_key, payment_key, product_key, resource_locks
from cart_service.payment import PaymentVerification
from cart_service.reconciliation import report_pending_order

logger = structlog.get_logger(__name__)

TOTAL_TOLERANCE = Decimal("0.01")
PENDING_MESSAGE = (
    "Your payment was received but the order could not be completed. "
    "Please contact support with your payment ID."
)


@dataclass(frozen=True)
class MaterializationResult:
    success: bool
    order: Optional[Order] = None
    replayed: bool = False
    reason: Optional[str] = None  # cart-mismatch, payment-succeeded-order-pending
    detail: Optional[str] = None

    def raise_for_failure(self, **extra) -> None:
        if self.success:
            return
        if self.reason == CartMismatch.code:
            raise CartMismatch(self.detail or "Cart no longer matches the paid items", **extra)
        # The internal cause stays in the logs; the shopper gets instructions
        raise PaymentSucceededOrderPending(PENDING_MESSAGE, **extra)


def normalize_items(expected_items) -> Dict[str, int]:
    """Collapse ``[{"product_id": .., "quantity": ..}, ...]`` into ``{product_id: quantity}``.

    Objects with ``product_id`` and ``quantity`` attributes are accepted too.
    """
    items: Dict[str, int] = {}
    for item in expected_items or ():
        if isinstance(item, dict):
            product_id, quantity = item.get("product_id"), item.get("quantity")
        else:
            product_id, quantity = getattr(item, "product_id", None), getattr(item, "quantity", None)
        if not product_id or isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InputInvalid("Each paid item needs a product ID and a positive quantity")
        items[str(product_id)] = items.get(str(product_id), 0) + quantity
    if not items:
        raise InputInvalid("No paid items")
    return items


def _to_decimal(value) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InputInvalid("Total must be a number")


@store_operation
async def find_order(db: AsyncSession, gateway_order_id: str, gateway_payment_id: str) -> Optional[Order]:
    result = await db.execute(
        select(Order)
        .options(selectinload(Order.items))
        .filter(Order.gateway_order_id == gateway_order_id, Order.gateway_payment_id == gateway_payment_id)
    )
    return result.scalar_one_or_none()


async def _rollback(db: AsyncSession) -> None:
    try:
        await db.rollback()
    except SQLAlchemyError:
        logger.exception("Rollback failed")


async def _replay(db: AsyncSession, identity: str, payment: PaymentVerification,
                  reference: dict) -> Optional[MaterializationResult]:
    existing = await find_order(db, *payment.idempotency_key)
    if existing is None:
        return None
    if existing.identity != identity:
        logger.warning("Payment belongs to another shopper's order", order_id=existing.id, **reference)
        return MaterializationResult(
            success=False, reason=CartMismatch.code, detail="Payment is already attached to another order"
        )
    logger.info("Payment already materialized", order_id=existing.id, **reference)
    return MaterializationResult(success=True, order=existing, replayed=True)


async def _write_order(db: AsyncSession, identity: str, payment: PaymentVerification,
                       expected: Dict[str, int], expected_total: Decimal,
                       now: datetime, ttl) -> Order:
    lines = await live_lines(db, identity, ttl=ttl, now=now)
    held = {line.product_id: line.quantity for line in lines}
    if held != expected:
        raise CartMismatch("Cart no longer matches the paid items")

    products = {}
    total = Decimal("0")
    for product_id in sorted(expected):
        product = await get_product(db, product_id, for_update=True)
        products[product_id] = product
        total += Decimal(product.price) * expected[product_id]

    if abs(total - expected_total) > TOTAL_TOLERANCE:
        raise CartMismatch(f"Cart total {total} does not match the paid total {expected_total}")

    order = Order(
        identity=identity,
        total_price=total,
        status=OrderStatus.PAID,
        gateway_order_id=payment.gateway_order_id,
        gateway_payment_id=payment.gateway_payment_id,
        created_at=now,
    )
    for product_id, quantity in sorted(expected.items()):
        product = products[product_id]
        if product.stock < quantity:
            raise PaymentSucceededOrderPending(f"Stock of {product_id} fell below the paid quantity")
        product.stock -= quantity
        order.items.append(OrderItem(product_id=product_id, quantity=quantity, unit_price=product.price))
    db.add(order)

    await db.execute(
        delete(CartLine).where(CartLine.identity == identity, CartLine.product_id.in_(list(expected)))
    )
    await db.flush()
    await db.commit()
    return order


async def _materialize(db: AsyncSession, identity: str, payment: PaymentVerification,
                       expected: Dict[str, int], expected_total: Decimal, reporter,
                       now: datetime, ttl, reference: dict, report: dict) -> MaterializationResult:
    replay = await _replay(db, identity, payment, reference)
    if replay is not None:
        return replay

    lines = await live_lines(db, identity, ttl=ttl, now=now)
    product_ids = set(expected) | {line.product_id for line in lines}
    # End the read transaction before waiting on cart locks
    await db.rollback()

    keys = [identity_key(identity)] + [product_key(pid) for pid in product_ids]
    try:
        async with resource_locks.hold(*keys):
            try:
                order = await _write_order(db, identity, payment, expected, expected_total, now, ttl)
            except Exception:
                await _rollback(db)
                raise
    except CartMismatch as exc:
        # Another worker may have consumed the cart for this very payment
        replay = await _replay(db, identity, payment, reference)
        if replay is not None:
            return replay
        logger.warning("Cart does not match payment", detail=exc.detail, **reference)
        await reporter(reason=exc.code, detail=exc.detail, **report)
        return MaterializationResult(success=False, reason=exc.code, detail=exc.detail)
    except IntegrityError:
        replay = await _replay(db, identity, payment, reference)
        if replay is not None:
            return replay
        logger.exception("Order insert violated a constraint", **reference)
        return await _pending(reporter, "Order could not be written", report)

    logger.info(
        "Order materialized",
        order_id=order.id,
        total_price=str(order.total_price),
        items=len(order.items),
        **reference,
    )
    return MaterializationResult(success=True, order=order)


async def materialize_order(db: AsyncSession, identity: str, payment: PaymentVerification,
                            expected_items, expected_total, reporter=report_pending_order,
                            now: datetime = None, ttl=CART_TTL) -> MaterializationResult:
    """Create the order for a verified payment, or replay the one it already created.

    Once the signature and inputs are accepted nothing raises to the caller: every
    failure ends in a result, and failures that leave paid money without an
    order are handed to ``reporter`` as ``payment-succeeded-order-pending``.
    """
    if not payment.verified:
        raise SignatureInvalid("Payment signature is not valid")
    if not identity:
        raise InputInvalid("Identity is required")

    expected = normalize_items(expected_items)
    expected_total = _to_decimal(expected_total)
    now = now or utcnow()
    reference = dict(
        identity=identity,
        gateway_order_id=payment.gateway_order_id,
        gateway_payment_id=payment.gateway_payment_id,
    )
    report = dict(reference, items=expected, total=str(expected_total))

    async with resource_locks.hold(payment_key(*payment.idempotency_key)):
        try:
            return await _materialize(
                db, identity, payment, expected, expected_total, reporter, now, ttl, reference, report
            )
        except Exception as exc:
            await _rollback(db)
            logger.exception("Order materialization failed after payment", **reference)
            return await _pending(reporter, str(exc) or exc.__class__.__name__, report)


async def _pending(reporter, detail: str, report: dict) -> MaterializationResult:
    reason = PaymentSucceededOrderPending.code
    await reporter(reason=reason, detail=detail, **report)
    return MaterializationResult(success=False, reason=reason, detail=detail)

# cart_service/admission.py
# Reservation Admission Control: every cart mutation that claims stock goes through reserve.
# The availability read and the cart write share one transaction under the product lock
# (and the FOR UPDATE row lock on PostgreSQL), so the last unit is never handed out twice.
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from cart_service.config import CART_TTL
from cart_service.db.database import store_operation
from cart_service.db.functions import expiry_cutoff, get_line, purge_expired_lines, set_line, upsert_line
from cart_service.db.models import CartLine, Product, utcnow
from cart_service.errors import InputInvalid, InsufficientStock
from cart_service.ledger import available_stock, get_product
from cart_service.locks import product_key, resource_locks

logger = structlog.get_logger(__name__)


class ReserveMode(str, enum.Enum):
    DELTA = "delta"  # quantity is added to the existing line
    SET = "set"  # quantity replaces the existing line


@dataclass(frozen=True)
class ReservationResult:
    """Outcome of an admission check.

    ``available`` is what the caller may still ask for under the same mode:
    extra units for DELTA, an absolute quantity for SET.
    """

    admitted: bool
    product_id: str
    requested: int
    available: int
    mode: ReserveMode = ReserveMode.DELTA
    line: Optional[CartLine] = None
    product: Optional[Product] = None
    reason: Optional[str] = None

    def raise_for_rejection(self) -> None:
        if not self.admitted:
            raise InsufficientStock(self.product_id, self.requested, self.available)


def validate_request(identity, product_id, quantity, mode: ReserveMode) -> None:
    if not identity:
        raise InputInvalid("Identity is required")
    if not product_id:
        raise InputInvalid("Product ID is required")
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InputInvalid("Quantity must be an integer")
    if mode is ReserveMode.SET and quantity <= 0:
        raise InputInvalid("Quantity must be greater than zero.")
    if mode is ReserveMode.DELTA and quantity == 0:
        raise InputInvalid("Quantity must not be zero.")


@store_operation
async def reserve(db: AsyncSession, identity: str, product_id: str, quantity: int,
                  mode: ReserveMode = ReserveMode.DELTA, now: datetime = None, ttl=CART_TTL) -> ReservationResult:
    mode = ReserveMode(mode)
    validate_request(identity, product_id, quantity, mode)
    now = now or utcnow()

    async with resource_locks.hold(product_key(product_id)):
        try:
            product = await get_product(db, product_id, for_update=True)
            await purge_expired_lines(db, expiry_cutoff(ttl, now), product_id)
            available = await available_stock(
                db, product_id, excluding_identity=identity, now=now, ttl=ttl, product=product
            )

            line = await get_line(db, identity, product_id)
            current = line.quantity if line else 0
            resulting = current + quantity if mode is ReserveMode.DELTA else quantity
            if resulting <= 0:
                raise InputInvalid("Resulting quantity must be greater than zero.")

            if resulting > current and resulting > available:
                headroom = available - current if mode is ReserveMode.DELTA else available
                await db.rollback()
                logger.info(
                    "Reservation rejected",
                    identity=identity,
                    product_id=product_id,
                    mode=mode.value,
                    requested=quantity,
                    current=current,
                    available=available,
                )
                return ReservationResult(
                    admitted=False,
                    product_id=product_id,
                    requested=quantity,
                    available=max(headroom, 0),
                    mode=mode,
                    reason="insufficient-stock",
                )

            if mode is ReserveMode.DELTA:
                line = await upsert_line(db, identity, product_id, quantity, now=now, commit=False)
            else:
                line = await set_line(db, identity, product_id, quantity, now=now, commit=False)
            await db.commit()
        except BaseException:
            await db.rollback()
            raise

    logger.info(
        "Reservation admitted",
        identity=identity,
        product_id=product_id,
        mode=mode.value,
        quantity=line.quantity,
    )
    return ReservationResult(
        admitted=True,
        product_id=product_id,
        requested=quantity,
        available=max(available - line.quantity, 0),
        mode=mode,
        line=line,
        product=product,
    )

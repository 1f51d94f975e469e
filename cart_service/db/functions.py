# cart_service/db/functions.py
# Cart Store: per-identity reserved lines with a TTL
from datetime import datetime

import structlog
from sqlalchemy import delete, distinct
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from cart_service.config import CART_TTL
from cart_service.db.database import store_operation
from cart_service.db.models import CartLine, utcnow
from cart_service.errors import InputInvalid, NotFound
from cart_service.locks import product_key, resource_locks

logger = structlog.get_logger(__name__)


def expiry_cutoff(ttl=CART_TTL, now: datetime = None) -> datetime:
    return (now or utcnow()) - ttl


# Get one line of a cart
@store_operation
async def get_line(db: AsyncSession, identity: str, product_id: str):
    result = await db.execute(
        select(CartLine).filter(CartLine.identity == identity, CartLine.product_id == product_id)
    )
    return result.scalar_one_or_none()


# Add a delta to a line, creating it on first add
@store_operation
async def upsert_line(db: AsyncSession, identity: str, product_id: str, quantity_delta: int,
                      now: datetime = None, commit: bool = True):
    line = await get_line(db, identity, product_id)
    new_quantity = (line.quantity if line else 0) + quantity_delta
    if new_quantity <= 0:
        raise InputInvalid("Resulting quantity must be greater than zero.")

    if line:
        line.quantity = new_quantity
        line.reserved_at = now or utcnow()
    else:
        line = CartLine(identity=identity, product_id=product_id, quantity=new_quantity, reserved_at=now or utcnow())
        db.add(line)

    await db.flush()
    if commit:
        await db.commit()
    return line


# Set the absolute quantity of a line
@store_operation
async def set_line(db: AsyncSession, identity: str, product_id: str, quantity: int,
                   now: datetime = None, commit: bool = True):
    if quantity <= 0:
        raise InputInvalid("Quantity must be greater than zero.")

    line = await get_line(db, identity, product_id)
    if line:
        line.quantity = quantity
        line.reserved_at = now or utcnow()
    else:
        line = CartLine(identity=identity, product_id=product_id, quantity=quantity, reserved_at=now or utcnow())
        db.add(line)

    await db.flush()
    if commit:
        await db.commit()
    return line


# Remove one product from a cart
@store_operation
async def remove_line(db: AsyncSession, identity: str, product_id: str):
    async with resource_locks.hold(product_key(product_id)):
        try:
            result = await db.execute(
                delete(CartLine).where(CartLine.identity == identity, CartLine.product_id == product_id)
            )
            if not result.rowcount:
                raise NotFound("Product not found in the cart")
            await db.commit()
        except BaseException:
            await db.rollback()
            raise
    logger.info("Cart line removed", identity=identity, product_id=product_id)


# Remove every line of a cart
@store_operation
async def clear_cart(db: AsyncSession, identity: str) -> int:
    result = await db.execute(select(CartLine.product_id).filter(CartLine.identity == identity))
    product_ids = result.scalars().all()
    await db.commit()
    if not product_ids:
        return 0

    async with resource_locks.hold(*(product_key(pid) for pid in product_ids)):
        try:
            result = await db.execute(delete(CartLine).where(CartLine.identity == identity))
            await db.commit()
        except BaseException:
            await db.rollback()
            raise
    logger.info("Cart cleared", identity=identity, removed=result.rowcount)
    return result.rowcount


# Live lines of a cart; sweeps expired lines first
@store_operation
async def list_lines(db: AsyncSession, identity: str, ttl=CART_TTL, now: datetime = None):
    now = now or utcnow()
    await sweep_expired(db, ttl=ttl, now=now)
    return await live_lines(db, identity, ttl=ttl, now=now)


# Live lines of a cart without sweeping; safe to call while holding product locks
@store_operation
async def live_lines(db: AsyncSession, identity: str, ttl=CART_TTL, now: datetime = None):
    result = await db.execute(
        select(CartLine)
        .filter(CartLine.identity == identity, CartLine.reserved_at >= expiry_cutoff(ttl, now))
        .order_by(CartLine.reserved_at, CartLine.product_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


# Raw delete of expired lines; the caller owns the lock and the transaction
@store_operation
async def purge_expired_lines(db: AsyncSession, cutoff: datetime, product_id: str = None) -> int:
    stmt = delete(CartLine).where(CartLine.reserved_at < cutoff)
    if product_id is not None:
        stmt = stmt.where(CartLine.product_id == product_id)
    result = await db.execute(stmt)
    return result.rowcount


# Delete every expired line, one product at a time under that product's lock
@store_operation
async def sweep_expired(db: AsyncSession, ttl=CART_TTL, now: datetime = None) -> int:
    cutoff = expiry_cutoff(ttl, now)
    result = await db.execute(select(distinct(CartLine.product_id)).filter(CartLine.reserved_at < cutoff))
    product_ids = result.scalars().all()
    await db.commit()

    removed = 0
    for product_id in product_ids:
        async with resource_locks.hold(product_key(product_id)):
            try:
                removed += await purge_expired_lines(db, cutoff, product_id)
                await db.commit()
            except BaseException:
                await db.rollback()
                raise

    if removed:
        logger.info("Expired cart lines swept", removed=removed, cutoff=cutoff.isoformat())
    return removed

# cart_service/ledger.py
# Stock Ledger: read path into catalog stock and outstanding reservations.
# Reserved units are summed from live cart lines on every call; nothing here writes.
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from cart_service.config import CART_TTL
from cart_service.db.database import store_operation
from cart_service.db.functions import expiry_cutoff
from cart_service.db.models import CartLine, Product
from cart_service.errors import NotFound


@store_operation
async def get_product(db: AsyncSession, product_id: str, for_update: bool = False) -> Product:
    stmt = select(Product).filter(Product.id == product_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    product = result.scalar_one_or_none()
    if product is None:
        raise NotFound(f"Product {product_id} not found")
    return product


@store_operation
async def reserved_units(db: AsyncSession, product_id: str, excluding_identity: str = None,
                         now: datetime = None, ttl=CART_TTL) -> int:
    stmt = select(func.coalesce(func.sum(CartLine.quantity), 0)).filter(
        CartLine.product_id == product_id,
        CartLine.reserved_at >= expiry_cutoff(ttl, now),
    )
    if excluding_identity is not None:
        stmt = stmt.filter(CartLine.identity != excluding_identity)
    result = await db.execute(stmt)
    return int(result.scalar_one())


async def available_stock(db: AsyncSession, product_id: str, excluding_identity: str = None,
                          now: datetime = None, ttl=CART_TTL, product: Product = None) -> int:
    """Units of ``product_id`` not claimed by any live cart line.

    With ``excluding_identity`` the caller's own line is left out of the sum,
    so a shopper growing their line is measured against what others hold.
    Raises NotFound for an unknown product.
    """
    if product is None:
        product = await get_product(db, product_id)
    reserved = await reserved_units(db, product_id, excluding_identity=excluding_identity, now=now, ttl=ttl)
    return product.stock - reserved


async def stock_summary(db: AsyncSession, product_id: str, now: datetime = None, ttl=CART_TTL) -> dict:
    product = await get_product(db, product_id)
    reserved = await reserved_units(db, product_id, now=now, ttl=ttl)
    return {
        "product_id": product.id,
        "stock": product.stock,
        "reserved": reserved,
        "available": max(product.stock - reserved, 0),
    }

"""Tests for the Stock Ledger read path."""

from datetime import timedelta

import pytest

from cart_service.admission import reserve
from cart_service.config import CART_TTL
from cart_service.db.functions import upsert_line
from cart_service.db.models import utcnow
from cart_service.errors import NotFound
from cart_service.ledger import available_stock, get_product, reserved_units, stock_summary


class TestStockSummary:
    async def test_live_reservations_reduce_availability(self, db, add_product):
        await add_product("sku-1", stock=5)
        await reserve(db, "alice", "sku-1", 2)
        await reserve(db, "bob", "sku-1", 1)

        summary = await stock_summary(db, "sku-1")

        assert summary == {"product_id": "sku-1", "stock": 5, "reserved": 3, "available": 2}

    async def test_excluding_identity_leaves_own_line_out(self, db, add_product):
        await add_product("sku-1", stock=5)
        await reserve(db, "alice", "sku-1", 2)
        await reserve(db, "bob", "sku-1", 1)

        assert await available_stock(db, "sku-1", excluding_identity="alice") == 4
        assert await available_stock(db, "sku-1", excluding_identity="bob") == 3

    async def test_expired_lines_do_not_count(self, db, add_product):
        await add_product("sku-1", stock=5)
        long_ago = utcnow() - CART_TTL - timedelta(minutes=1)
        await upsert_line(db, "alice", "sku-1", 4, now=long_ago)

        assert await reserved_units(db, "sku-1") == 0
        assert (await stock_summary(db, "sku-1"))["available"] == 5

    async def test_available_is_floored_at_zero(self, db, add_product, set_stock):
        await add_product("sku-1", stock=5)
        await reserve(db, "alice", "sku-1", 4)
        await set_stock("sku-1", 2)

        summary = await stock_summary(db, "sku-1")

        assert summary["reserved"] == 4
        assert summary["available"] == 0

    async def test_unknown_product(self, db):
        with pytest.raises(NotFound):
            await stock_summary(db, "missing")

    async def test_get_product_for_update_sees_fresh_stock(self, db, add_product, set_stock):
        await add_product("sku-1", stock=5)
        assert (await get_product(db, "sku-1")).stock == 5

        await set_stock("sku-1", 3)

        assert (await get_product(db, "sku-1", for_update=True)).stock == 3

"""Tests for the Cart Store: line writes, removal, listing and the expiry sweep."""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from cart_service.config import CART_TTL
from cart_service.db.functions import (
    clear_cart,
    get_line,
    list_lines,
    remove_line,
    set_line,
    sweep_expired,
    upsert_line,
)
from cart_service.db.models import utcnow
from cart_service.errors import InputInvalid, NotFound, StoreUnavailable


def _expired():
    return utcnow() - CART_TTL - timedelta(seconds=1)


class TestLineWrites:
    async def test_upsert_creates_then_accumulates(self, db, add_product):
        await add_product("sku-1")

        await upsert_line(db, "alice", "sku-1", 2)
        line = await upsert_line(db, "alice", "sku-1", 3)

        assert line.quantity == 5

    async def test_upsert_refreshes_reservation_time(self, db, add_product):
        await add_product("sku-1")
        old = utcnow() - timedelta(minutes=30)
        await upsert_line(db, "alice", "sku-1", 1, now=old)

        line = await upsert_line(db, "alice", "sku-1", 1)

        assert line.reserved_at > old

    async def test_upsert_rejects_non_positive_result(self, db, add_product):
        await add_product("sku-1")
        await upsert_line(db, "alice", "sku-1", 1)

        with pytest.raises(InputInvalid):
            await upsert_line(db, "alice", "sku-1", -1)

    async def test_set_replaces_quantity(self, db, add_product):
        await add_product("sku-1")
        await upsert_line(db, "alice", "sku-1", 4)

        line = await set_line(db, "alice", "sku-1", 1)

        assert line.quantity == 1

    async def test_set_rejects_zero(self, db, add_product):
        await add_product("sku-1")

        with pytest.raises(InputInvalid):
            await set_line(db, "alice", "sku-1", 0)


class TestRemoval:
    async def test_remove_line(self, db, add_product):
        await add_product("sku-1")
        await upsert_line(db, "alice", "sku-1", 2)

        await remove_line(db, "alice", "sku-1")

        assert await get_line(db, "alice", "sku-1") is None

    async def test_remove_missing_line(self, db, add_product):
        await add_product("sku-1")

        with pytest.raises(NotFound):
            await remove_line(db, "alice", "sku-1")

    async def test_clear_cart_only_touches_one_identity(self, db, add_product):
        await add_product("sku-1")
        await add_product("sku-2")
        await upsert_line(db, "alice", "sku-1", 1)
        await upsert_line(db, "alice", "sku-2", 1)
        await upsert_line(db, "bob", "sku-1", 1)

        removed = await clear_cart(db, "alice")

        assert removed == 2
        assert await list_lines(db, "alice") == []
        assert len(await list_lines(db, "bob")) == 1

    async def test_clear_empty_cart(self, db):
        assert await clear_cart(db, "nobody") == 0


class TestListingAndSweep:
    async def test_list_lines_hides_and_sweeps_expired(self, db, add_product):
        await add_product("sku-1")
        await add_product("sku-2")
        await upsert_line(db, "alice", "sku-1", 1, now=_expired())
        await upsert_line(db, "alice", "sku-2", 2)

        lines = await list_lines(db, "alice")

        assert [line.product_id for line in lines] == ["sku-2"]
        assert await get_line(db, "alice", "sku-1") is None

    async def test_list_lines_loads_product(self, db, add_product):
        await add_product("sku-1", price="12.50", name="Walnut Bowl")
        await upsert_line(db, "alice", "sku-1", 2)

        (line,) = await list_lines(db, "alice")

        assert line.product.name == "Walnut Bowl"

    async def test_sweep_removes_only_expired_lines(self, db, add_product):
        await add_product("sku-1")
        await add_product("sku-2")
        await upsert_line(db, "alice", "sku-1", 1, now=_expired())
        await upsert_line(db, "bob", "sku-2", 1, now=_expired())
        await upsert_line(db, "carol", "sku-1", 1)

        removed = await sweep_expired(db)

        assert removed == 2
        assert await get_line(db, "carol", "sku-1") is not None
        assert await sweep_expired(db) == 0

    async def test_ttl_boundary(self, db, add_product):
        await add_product("sku-1")
        now = utcnow()
        await upsert_line(db, "alice", "sku-1", 1, now=now - CART_TTL)

        assert len(await list_lines(db, "alice", now=now)) == 1
        assert await list_lines(db, "alice", now=now + timedelta(seconds=1)) == []


class TestStoreFailures:
    async def test_outage_is_not_an_empty_cart(self, db, monkeypatch):
        async def failing_execute(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(db, "execute", failing_execute)

        with pytest.raises(StoreUnavailable) as exc_info:
            await list_lines(db, "alice")
        assert exc_info.value.code == "store-unavailable"

    async def test_outage_during_write(self, db, add_product, monkeypatch):
        await add_product("sku-1")

        async def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db, "commit", failing_commit)

        with pytest.raises(StoreUnavailable):
            await upsert_line(db, "alice", "sku-1", 1)

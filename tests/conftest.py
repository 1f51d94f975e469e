"""Shared fixtures: a throwaway SQLite database per test and seeded products."""

import os
import tempfile

# Configuration is read at import time, so it has to be in place first
_TMP_DIR = tempfile.mkdtemp(prefix="cart-service-tests-")
os.environ["CART_DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/cart.db"
os.environ["AUTH_SECRET_KEY"] = "test-auth-secret"
os.environ["PAYMENT_GATEWAY_SECRET"] = "test-gateway-secret"
os.environ["CART_TTL_SECONDS"] = "7200"
os.environ.pop("RABBITMQ_URL", None)

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import update  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from cart_service.db.init_db import init_db  # noqa: E402
from cart_service.db.models import CartLine, Product  # noqa: E402
from cart_service.merge import recent_merges  # noqa: E402


@pytest.fixture(autouse=True)
def reset_merge_guard():
    recent_merges.reset()
    yield
    recent_merges.reset()


@pytest.fixture()
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'cart.db'}", poolclass=NullPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
def add_product(session_factory):
    async def _add(product_id="sku-1", stock=5, price="10.00", name=None):
        async with session_factory() as session:
            session.add(
                Product(
                    id=product_id,
                    name=name or f"Product {product_id}",
                    price=Decimal(price),
                    stock=stock,
                    image_url=f"/static/images/{product_id}.jpg",
                )
            )
            await session.commit()

    return _add


@pytest.fixture()
def set_stock(session_factory):
    """Change catalog stock behind the engine's back, the way an admin edit would."""

    async def _set(product_id, stock):
        async with session_factory() as session:
            await session.execute(update(Product).where(Product.id == product_id).values(stock=stock))
            await session.commit()

    return _set


@pytest.fixture()
def age_line(session_factory):
    async def _age(identity, product_id, reserved_at):
        async with session_factory() as session:
            await session.execute(
                update(CartLine)
                .where(CartLine.identity == identity, CartLine.product_id == product_id)
                .values(reserved_at=reserved_at)
            )
            await session.commit()

    return _age


@pytest.fixture()
def read_stock(session_factory):
    async def _read(product_id):
        async with session_factory() as session:
            product = await session.get(Product, product_id)
            return product.stock

    return _read

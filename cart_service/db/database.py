# cart_service/db/database.py
import functools

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from cart_service.config import DATABASE_ECHO, DATABASE_URL
from cart_service.errors import StoreUnavailable

# Async engine
engine = create_async_engine(DATABASE_URL, echo=DATABASE_ECHO)

# Async session factory
SessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# Base class for models
Base = declarative_base()

STORE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, OSError)


# Session generator
async def get_db():
    async with SessionLocal() as session:
        yield session


def store_operation(func):
    """Report persistence outages as StoreUnavailable instead of leaking driver errors."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except STORE_ERRORS as exc:
            raise StoreUnavailable(f"Cart store unavailable: {exc.__class__.__name__}") from exc

    return wrapper

# cart_service/db/init_db.py
from cart_service.db.database import Base, engine
from cart_service.db import models  # noqa: F401  registers the tables


async def init_db(bind=None):
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

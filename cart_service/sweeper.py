# cart_service/sweeper.py
# Background job that returns abandoned reservations to stock
import asyncio
from typing import Optional

import structlog

from cart_service.config import CART_TTL, SWEEP_INTERVAL_SECONDS
from cart_service.db.database import SessionLocal
from cart_service.db.functions import sweep_expired
from cart_service.errors import StoreUnavailable

logger = structlog.get_logger(__name__)


class CartSweeper:
    def __init__(self, session_factory=SessionLocal, interval: float = SWEEP_INTERVAL_SECONDS, ttl=CART_TTL):
        self.session_factory = session_factory
        self.interval = interval
        self.ttl = ttl
        self._stopping = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now=None) -> int:
        async with self.session_factory() as db:
            return await sweep_expired(db, ttl=self.ttl, now=now)

    async def _run(self):
        logger.info("Cart sweeper started", interval=self.interval, ttl_seconds=self.ttl.total_seconds())
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except StoreUnavailable as exc:
                logger.warning("Cart sweep skipped", detail=exc.detail)
            except Exception:
                logger.exception("Cart sweep failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Cart sweeper stopped")

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._stopping.clear()
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self):
        self._stopping.set()
        if self._task is not None:
            await self._task
            self._task = None

# cart_service/main.py
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from cart_service.config import CORS_ALLOW_ORIGINS
from cart_service.db.init_db import init_db
from cart_service.logging_config import add_context, clear_context, configure_logging
from cart_service.routes import register_exception_handlers, router
from cart_service.sweeper import CartSweeper

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    configure_logging()
    await init_db()
    sweeper = CartSweeper()
    sweeper.start()
    app.state.sweeper = sweeper
    logger.info("Cart service started")
    try:
        yield
    finally:
        await sweeper.stop()
        logger.info("Cart service stopped")


app = FastAPI(lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def bind_request_context(request: Request, call_next):
    clear_context()
    add_context(request_id=request.headers.get("X-Request-ID") or str(uuid.uuid4()), path=request.url.path)
    return await call_next(request)


register_exception_handlers(app)
app.include_router(router)


@app.get("/")
async def health_check():
    """Health check endpoint."""
    return {"status": "cart_service running"}

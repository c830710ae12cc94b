from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from app.config import Settings
from app.controllers import v1
from app.db import init_db
from app.logger import setup_logging
from app.services.razorpay import RazorpayClient
from app.services.store import BalanceStore
from app.services.usage_log import drain

setup_logging()
logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application with its store, gateway and rate limiter."""
    cfg = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        session_factory = await asyncio.to_thread(init_db, cfg)
        app.state.store = BalanceStore(session_factory, timeout=cfg.store_timeout_s)
        app.state.gateway = RazorpayClient(cfg)
        app.state.redis = redis.from_url(
            cfg.redis_url, encoding="utf-8", decode_responses=True
        )
        logger.info("Credit ledger started (%s)", cfg.app_env)
        try:
            yield
        finally:
            await drain()
            await app.state.gateway.aclose()
            await app.state.redis.aclose()
            app.state.store.dispose()

    app = FastAPI(
        title="Credit Ledger API",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.include_router(v1.router)
    Instrumentator().instrument(app).expose(app)
    return app


app = create_app()

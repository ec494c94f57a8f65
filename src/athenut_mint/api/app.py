"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from athenut_mint.api.routes import health_router, quotes_router
from athenut_mint.bootstrap import build_backend
from athenut_mint.config import get_settings
from athenut_mint.database import create_tables, dispose_db, init_db
from athenut_mint.metrics import BridgeMetrics
from athenut_mint.payment.errors import PaymentError
from athenut_mint.payment.services.cost_ledger import QuoteCostLedger
from athenut_mint.storage import SqlKVStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the configured backend unless one was injected."""
    owned = app.state.backend is None
    if owned:
        settings = get_settings()
        engine, factory = init_db(settings.database_url)
        await create_tables(engine)
        store = SqlKVStore(factory)
        app.state.session_factory = factory
        app.state.ledger = QuoteCostLedger(store)
        app.state.backend = build_backend(settings, store, metrics=app.state.metrics)
        logger.info("Started %s backend", settings.backend)
    yield
    if owned:
        await app.state.backend.aclose()
        await dispose_db()


def create_app(
    backend: Any = None,
    ledger: QuoteCostLedger | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    metrics: BridgeMetrics | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Components passed in are used as-is; otherwise they are built from
    settings at startup.
    """
    app = FastAPI(
        title="Athenut Mint Bridge",
        description="Operational surface of the mint payment bridge",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.backend = backend
    app.state.ledger = ledger
    app.state.session_factory = session_factory
    if metrics is None:
        metrics = getattr(backend, "metrics", None) or BridgeMetrics()
    app.state.metrics = metrics

    @app.exception_handler(PaymentError)
    async def payment_exception_handler(request: Request, exc: PaymentError) -> JSONResponse:
        """Surface backend failures as a gateway error."""
        logger.warning("Payment error on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "detail": str(exc),
                "code": type(exc).__name__,
            },
        )

    app.include_router(health_router)
    app.include_router(quotes_router, prefix="/v1")

    return app

"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from athenut_mint.metrics import BridgeMetrics
from athenut_mint.payment.services.cost_ledger import QuoteCostLedger


def _state(request: Request, name: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} is not initialised",
        )
    return value


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    factory = _state(request, "session_factory")
    async with factory() as session:
        try:
            yield session
        finally:
            await session.close()


def get_backend(request: Request) -> Any:
    """The MintPayment backend serving this process."""
    return _state(request, "backend")


def get_ledger(request: Request) -> QuoteCostLedger:
    return _state(request, "ledger")


def get_metrics(request: Request) -> BridgeMetrics:
    return _state(request, "metrics")


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Backend = Annotated[Any, Depends(get_backend)]
Ledger = Annotated[QuoteCostLedger, Depends(get_ledger)]
Metrics = Annotated[BridgeMetrics, Depends(get_metrics)]

"""API routes."""

from athenut_mint.api.routes.health import router as health_router
from athenut_mint.api.routes.quotes import router as quotes_router

__all__ = ["health_router", "quotes_router"]

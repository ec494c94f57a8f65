"""Quote cost and backend settings endpoints."""

from fastapi import APIRouter, HTTPException, status

from athenut_mint.api.dependencies import Backend, Ledger
from athenut_mint.api.schemas import (
    BackendSettingsResponse,
    Bolt11SettingsResponse,
    QuoteCostResponse,
)
from athenut_mint.payment.errors import ReconciliationError

router = APIRouter(tags=["quotes"])


@router.get("/quotes/{quote_id}/cost", response_model=QuoteCostResponse)
async def get_quote_cost(quote_id: str, ledger: Ledger) -> QuoteCostResponse:
    """Return what a quote cost on the rail and what it credits."""
    try:
        record = await ledger.read(quote_id)
    except ReconciliationError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc

    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No cost record for quote {quote_id}",
        )

    return QuoteCostResponse(
        quote_id=record.quote_id,
        cost=record.cost,
        cost_unit=record.cost_unit.value,
        credited_amount=record.credited_amount,
        credited_unit=record.credited_unit.value,
    )


@router.get("/backend/settings", response_model=BackendSettingsResponse)
async def get_backend_settings(backend: Backend) -> BackendSettingsResponse:
    """Settings the backend reports to the settlement engine."""
    settings = await backend.get_settings()
    bolt11 = None
    if settings.bolt11 is not None:
        bolt11 = Bolt11SettingsResponse(
            mpp=settings.bolt11.mpp,
            amountless=settings.bolt11.amountless,
            invoice_description=settings.bolt11.invoice_description,
        )
    return BackendSettingsResponse(
        backend=getattr(backend, "provider_name", type(backend).__name__),
        unit=settings.unit.value,
        bolt11=bolt11,
        bolt12=settings.bolt12,
        custom=settings.custom,
    )

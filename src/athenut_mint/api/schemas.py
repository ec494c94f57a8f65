"""Pydantic schemas for API responses."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    database: str
    backend: str
    wait_stream_active: bool


class QuoteCostResponse(BaseModel):
    """Cost recorded for one quote."""

    model_config = ConfigDict(from_attributes=True)

    quote_id: str
    cost: int
    cost_unit: str
    credited_amount: int
    credited_unit: str


class Bolt11SettingsResponse(BaseModel):
    """Bolt11 capabilities of the backend."""

    mpp: bool
    amountless: bool
    invoice_description: bool


class BackendSettingsResponse(BaseModel):
    """Settings the backend reports to the settlement engine."""

    backend: str
    unit: str
    bolt11: Bolt11SettingsResponse | None = None
    bolt12: dict[str, Any] | None = None
    custom: dict[str, Any] = {}

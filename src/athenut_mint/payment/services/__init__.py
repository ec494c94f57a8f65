"""Shared payment services."""

from athenut_mint.payment.services.conversion import (
    CurrencyConverter,
    cents_to_msats,
    convert_amount,
    msats_to_cents,
    to_unit,
)
from athenut_mint.payment.services.cost_ledger import QuoteCostLedger, QuoteCostRecord
from athenut_mint.payment.services.paid_action import PaidActionClient
from athenut_mint.payment.services.price_oracle import PriceOracle
from athenut_mint.payment.services.wait_pool import PendingWait, PendingWaitPool

__all__ = [
    # Conversion
    "CurrencyConverter",
    "cents_to_msats",
    "convert_amount",
    "msats_to_cents",
    "to_unit",
    # Ledger
    "QuoteCostLedger",
    "QuoteCostRecord",
    # Rails
    "PaidActionClient",
    "PriceOracle",
    # Waits
    "PendingWait",
    "PendingWaitPool",
]

"""Payment backend bridge.

Backends implement the MintPayment protocol consumed by the settlement engine:

- CashuWalletBackend buys settlement credit from an upstream mint.
- ClnBackend talks to a Core Lightning node directly.
"""

from athenut_mint.payment.base import (
    Amount,
    CurrencyUnit,
    IncomingPaymentOptions,
    MeltQuoteState,
    MintPayment,
    MintQuoteState,
    OutgoingPaymentOptions,
    PaymentIdentifier,
    PaymentMethod,
)
from athenut_mint.payment.errors import (
    PaymentError,
    RailError,
    ReconciliationError,
    UnsupportedPaymentOption,
)
from athenut_mint.payment.events import PaymentReceived

__all__ = [
    "Amount",
    "CurrencyUnit",
    "IncomingPaymentOptions",
    "MeltQuoteState",
    "MintPayment",
    "MintQuoteState",
    "OutgoingPaymentOptions",
    "PaymentIdentifier",
    "PaymentMethod",
    "PaymentError",
    "RailError",
    "ReconciliationError",
    "UnsupportedPaymentOption",
    "PaymentReceived",
]

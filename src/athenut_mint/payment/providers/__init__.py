"""Payment rail backends."""

from athenut_mint.payment.providers.cashu_wallet import CashuWalletBackend
from athenut_mint.payment.providers.cln import ClnBackend, FeeReserve, InvoiceCursor

__all__ = [
    "CashuWalletBackend",
    "ClnBackend",
    "FeeReserve",
    "InvoiceCursor",
]

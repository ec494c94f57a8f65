"""Error taxonomy for payment backends.

Every failure surfaced to the settlement engine is a PaymentError subclass.
Failures from the upstream mint, the Lightning node and the price service are
wrapped into RailError at the adapter boundary with the original exception
chained as __cause__.
"""

from __future__ import annotations


class PaymentError(Exception):
    """Base class for all payment backend errors."""


class UnsupportedPaymentOption(PaymentError):
    """The caller requested a payment method or unit this backend does not handle."""

    def __init__(self, option: str | None = None):
        self.option = option
        msg = "Unsupported payment option"
        if option:
            msg += f": {option}"
        super().__init__(msg)


class ConversionError(PaymentError):
    """A currency conversion could not be performed (missing or zero price)."""


class AmountOutOfRange(PaymentError):
    """Requested amount is outside the configured mint limits."""

    def __init__(self, amount: int, minimum: int, maximum: int):
        self.amount = amount
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(f"Amount {amount} outside allowed range [{minimum}, {maximum}]")


class RailError(PaymentError):
    """Failure reported by an external rail (upstream mint, Lightning node, price service)."""


class UnknownInvoice(RailError):
    """The Lightning node has no invoice for the given lookup id."""


class UnknownInvoiceAmount(RailError):
    """A bolt11 invoice carries no amount."""


class WrongRailResponse(RailError):
    """The rail answered with a payload of an unexpected shape."""


class ReconciliationError(PaymentError):
    """A confirmed quote has no matching cost record.

    Fatal for that quote: the settlement amount is unknown and must not be credited.
    """

    def __init__(self, quote_id: str, reason: str = "missing cost record"):
        self.quote_id = quote_id
        self.reason = reason
        super().__init__(f"Cannot reconcile quote '{quote_id}': {reason}")


class InvoiceAlreadyPaid(PaymentError):
    """Outgoing payment refused: the invoice has already been paid."""


class InvoicePaymentPending(PaymentError):
    """Outgoing payment refused: a payment for the invoice is still in flight."""

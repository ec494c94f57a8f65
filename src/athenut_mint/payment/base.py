"""Base protocol and types for mint payment backends.

All backends must implement the MintPayment protocol. The settlement engine
uses these backends without knowing which rail sits behind them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncIterator, Protocol

if TYPE_CHECKING:
    from athenut_mint.payment.events import PaymentReceived


class CurrencyUnit(str, Enum):
    """Units understood by the backends."""

    SAT = "sat"
    MSAT = "msat"
    USD = "usd"
    XSR = "xsr"  # one paid search


class PaymentMethod(str, Enum):
    """Payment methods a request can be made with."""

    BOLT11 = "bolt11"
    BOLT12 = "bolt12"
    CUSTOM = "custom"


class MintQuoteState(str, Enum):
    """State of an incoming payment request."""

    UNPAID = "unpaid"
    PAID = "paid"
    ISSUED = "issued"


class MeltQuoteState(str, Enum):
    """Authoritative state of an outgoing payment, as reported by the rail."""

    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    UNKNOWN = "unknown"


class IdentifierKind(str, Enum):
    """What a PaymentIdentifier value refers to."""

    PAYMENT_HASH = "payment_hash"
    OFFER_ID = "offer_id"
    CUSTOM_ID = "custom_id"
    LABEL = "label"


@dataclass(frozen=True)
class PaymentIdentifier:
    """Stable id used by the settlement engine to correlate a request with its confirmation."""

    kind: IdentifierKind
    value: str

    @classmethod
    def payment_hash(cls, value: str) -> PaymentIdentifier:
        return cls(IdentifierKind.PAYMENT_HASH, value)

    @classmethod
    def offer_id(cls, value: str) -> PaymentIdentifier:
        return cls(IdentifierKind.OFFER_ID, value)

    @classmethod
    def custom(cls, value: str) -> PaymentIdentifier:
        return cls(IdentifierKind.CUSTOM_ID, value)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Amount:
    """A non-negative integer amount in a unit."""

    value: int
    unit: CurrencyUnit

    def __post_init__(self) -> None:
        if self.value < 0:
            raise ValueError("Amount must not be negative")


@dataclass(frozen=True)
class Bolt11Settings:
    """Bolt11 capabilities of a backend."""

    mpp: bool = False
    amountless: bool = False
    invoice_description: bool = True


@dataclass(frozen=True)
class SettingsResponse:
    """Settings reported to the settlement engine."""

    unit: CurrencyUnit
    bolt11: Bolt11Settings | None = None
    bolt12: dict[str, Any] | None = None
    custom: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class IncomingPaymentOptions:
    """Request for an incoming payment (mint quote)."""

    method: PaymentMethod
    amount: int
    description: str | None = None
    unix_expiry: int | None = None


@dataclass(frozen=True)
class OutgoingPaymentOptions:
    """Request for an outgoing payment (melt).

    For bolt11 `request` is the invoice; for the custom method it is the
    opaque payload of the paid action.
    """

    method: PaymentMethod
    request: str
    max_fee: int | None = None
    partial_amount: int | None = None


@dataclass(frozen=True)
class CreateIncomingPaymentResponse:
    """Result of creating an incoming payment request."""

    request_lookup_id: PaymentIdentifier
    request: str
    expiry: int | None = None


@dataclass(frozen=True)
class WaitPaymentResponse:
    """A confirmed incoming payment, in settlement units."""

    payment_identifier: PaymentIdentifier
    payment_amount: Amount
    payment_id: str


@dataclass(frozen=True)
class PaymentQuoteResponse:
    """Quote for an outgoing payment."""

    request_lookup_id: PaymentIdentifier | None
    amount: Amount
    fee: Amount
    state: MeltQuoteState = MeltQuoteState.UNPAID


@dataclass(frozen=True)
class MakePaymentResponse:
    """Result of an outgoing payment attempt or lookup."""

    payment_lookup_id: PaymentIdentifier
    payment_proof: str | None
    status: MeltQuoteState
    total_spent: Amount


class MintPayment(Protocol):
    """Protocol for payment backends consumed by the settlement engine.

    Each rail has its own backend implementing this protocol.
    """

    async def get_settings(self) -> SettingsResponse:
        """Return the unit and payment methods this backend supports."""
        ...

    async def create_incoming_payment_request(
        self,
        unit: CurrencyUnit,
        options: IncomingPaymentOptions,
    ) -> CreateIncomingPaymentResponse:
        """Create an invoice the payer can settle.

        Raises:
            UnsupportedPaymentOption: for methods other than bolt11.
        """
        ...

    async def get_payment_quote(
        self,
        unit: CurrencyUnit,
        options: OutgoingPaymentOptions,
    ) -> PaymentQuoteResponse:
        """Price an outgoing payment without executing it."""
        ...

    async def make_payment(
        self,
        unit: CurrencyUnit,
        options: OutgoingPaymentOptions,
    ) -> MakePaymentResponse:
        """Execute an outgoing payment."""
        ...

    async def wait_payment_events(self) -> AsyncIterator[PaymentReceived]:
        """Return a long-lived stream of payment confirmations.

        Called again by every new subscriber.
        """
        ...

    async def check_incoming_payment_status(
        self,
        identifier: PaymentIdentifier,
    ) -> list[WaitPaymentResponse]:
        """Return confirmations for a request (empty if not yet paid)."""
        ...

    async def check_outgoing_payment(
        self,
        identifier: PaymentIdentifier,
    ) -> MakePaymentResponse:
        """Return the rail's view of an outgoing payment."""
        ...

    def is_wait_active(self) -> bool:
        """True while a payment event stream is live."""
        ...

    def cancel_wait(self) -> None:
        """Stop the live payment event stream."""
        ...

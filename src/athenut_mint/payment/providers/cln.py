"""Core Lightning payment backend.

Talks to a local CLN node over its JSON-RPC unix socket with pyln-client.

Outgoing payment state machine:
    UNPAID/FAILED/UNKNOWN -> pay -> PAID | PENDING | FAILED

A payment is only submitted after `listpays` shows no completed or in-flight
attempt for the same payment hash.

Incoming notifications come from a `waitanyinvoice` long-poll loop that
resumes from the highest pay index the node has already reported.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable

from pyln.client import LightningRpc, RpcError

from athenut_mint.metrics import BridgeMetrics
from athenut_mint.payment.base import (
    Amount,
    Bolt11Settings,
    CreateIncomingPaymentResponse,
    CurrencyUnit,
    IncomingPaymentOptions,
    MakePaymentResponse,
    MeltQuoteState,
    MintQuoteState,
    OutgoingPaymentOptions,
    PaymentIdentifier,
    PaymentMethod,
    PaymentQuoteResponse,
    SettingsResponse,
    WaitPaymentResponse,
)
from athenut_mint.payment.errors import (
    ConversionError,
    InvoiceAlreadyPaid,
    InvoicePaymentPending,
    PaymentError,
    RailError,
    ReconciliationError,
    UnknownInvoice,
    UnknownInvoiceAmount,
    UnsupportedPaymentOption,
    WrongRailResponse,
)
from athenut_mint.payment.events import PaymentReceived
from athenut_mint.payment.services.conversion import CurrencyConverter, to_unit
from athenut_mint.payment.services.cost_ledger import QuoteCostLedger, QuoteCostRecord
from athenut_mint.payment.services.price_oracle import PriceOracle

logger = logging.getLogger(__name__)

# waitanyinvoice returns this code when its own timeout elapses
WAIT_TIMEOUT_CODE = 904

DEFAULT_POLL_TIMEOUT = 60
DEFAULT_RETRY_INTERVAL = 1.0

INVOICE_STATUS_MAP = {
    "unpaid": MintQuoteState.UNPAID,
    "paid": MintQuoteState.PAID,
    "expired": MintQuoteState.UNPAID,
}

# units an outgoing payment can be quoted and settled in
LIGHTNING_UNITS = frozenset({CurrencyUnit.MSAT, CurrencyUnit.SAT})

PAY_STATUS_MAP = {
    "complete": MeltQuoteState.PAID,
    "pending": MeltQuoteState.PENDING,
    "failed": MeltQuoteState.FAILED,
}


@dataclass(frozen=True)
class FeeReserve:
    """Routing fee reserve held back for outgoing payments.

    Attributes:
        percent_fee_reserve: Fraction of the amount (0.02 = 2%).
        min_fee_reserve: Absolute floor, in msat.
    """

    percent_fee_reserve: float = 0.02
    min_fee_reserve: int = 4000

    def __post_init__(self) -> None:
        if not 0 <= self.percent_fee_reserve <= 1:
            raise ValueError("percent_fee_reserve must be between 0 and 1")
        if self.min_fee_reserve < 0:
            raise ValueError("min_fee_reserve must not be negative")

    def fee_for(self, amount: int) -> int:
        relative = int(amount * self.percent_fee_reserve)
        return max(relative, self.min_fee_reserve)


@dataclass
class InvoiceCursor:
    """Highest pay index observed; never moves backwards."""

    pay_index: int | None = None

    def advance(self, pay_index: int | None) -> None:
        if pay_index is None:
            return
        if self.pay_index is None or pay_index > self.pay_index:
            self.pay_index = pay_index


def _msat(value: Any) -> int:
    """Normalize an msat field (int, Millisatoshi or '123msat')."""
    if hasattr(value, "millisatoshis"):
        return int(value.millisatoshis)
    if isinstance(value, str) and value.endswith("msat"):
        return int(value[: -len("msat")])
    return int(value)


def _discard_outcome(future: asyncio.Future) -> None:
    """Consume the result of an abandoned long-poll."""
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.debug("Abandoned waitanyinvoice ended with %r", exc)


def _rpc_error_code(exc: RpcError) -> int | None:
    error = getattr(exc, "error", None)
    if isinstance(error, dict):
        return error.get("code")
    return None


class ClnBackend:
    """MintPayment backend for a Core Lightning node.

    Usage:
        backend = ClnBackend("/home/user/.lightning/bitcoin/lightning-rpc", FeeReserve())
        response = await backend.create_incoming_payment_request(
            CurrencyUnit.MSAT,
            IncomingPaymentOptions(method=PaymentMethod.BOLT11, amount=10_000),
        )

    When `unit` is a priced settlement unit (xsr), invoices are priced with
    the converter and the credited amount comes from the cost ledger.
    """

    provider_name = "cln"

    def __init__(
        self,
        rpc_path: str,
        fee_reserve: FeeReserve,
        unit: CurrencyUnit = CurrencyUnit.MSAT,
        ledger: QuoteCostLedger | None = None,
        price_oracle: PriceOracle | None = None,
        converter: CurrencyConverter | None = None,
        rpc_factory: Callable[[str], Any] = LightningRpc,
        poll_timeout: int = DEFAULT_POLL_TIMEOUT,
        retry_interval: float = DEFAULT_RETRY_INTERVAL,
        metrics: BridgeMetrics | None = None,
    ):
        self.rpc_path = rpc_path
        self.fee_reserve = fee_reserve
        self.unit = unit
        self.ledger = ledger
        self.price_oracle = price_oracle
        self.converter = converter
        self.poll_timeout = poll_timeout
        self.retry_interval = retry_interval
        self.metrics = metrics or BridgeMetrics()

        self._rpc_factory = rpc_factory
        self._rpc = rpc_factory(rpc_path)
        self._rpc_lock = asyncio.Lock()
        self._active_streams = 0
        self._cancel = asyncio.Event()

    def _is_priced(self, unit: CurrencyUnit) -> bool:
        return self.converter is not None and self.converter.is_priced(unit)

    async def _call(self, method: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        """Issue one RPC on the shared connection."""
        async with self._rpc_lock:
            try:
                result = await asyncio.to_thread(self._rpc.call, method, payload)
            except RpcError as exc:
                raise RailError(f"CLN {method} failed: {exc.error}") from exc
            except OSError as exc:
                raise RailError(f"CLN {method} failed: {exc}") from exc
        if not isinstance(result, dict):
            raise WrongRailResponse(f"CLN {method} returned {type(result).__name__}")
        return result

    async def get_settings(self) -> SettingsResponse:
        return SettingsResponse(
            unit=self.unit,
            bolt11=Bolt11Settings(mpp=True, amountless=False, invoice_description=True),
        )

    # ------------------------------------------------------------------
    # Incoming
    # ------------------------------------------------------------------

    async def create_incoming_payment_request(
        self,
        unit: CurrencyUnit,
        options: IncomingPaymentOptions,
    ) -> CreateIncomingPaymentResponse:
        if options.method != PaymentMethod.BOLT11:
            raise UnsupportedPaymentOption(options.method.value)

        try:
            response = await self._create_invoice(unit, options)
        except PaymentError:
            self.metrics.incoming_failed.inc()
            raise
        self.metrics.incoming_created.inc()
        return response

    async def _create_invoice(
        self,
        unit: CurrencyUnit,
        options: IncomingPaymentOptions,
    ) -> CreateIncomingPaymentResponse:
        priced = self._is_priced(unit)
        if priced:
            if self.price_oracle is None or self.ledger is None:
                raise ConversionError(f"No price source configured for {unit.value}")
            price = await self.price_oracle.fetch_reference_rate()
            amount_msat = self.converter.fee_to_rail_amount(options.amount, price)
        else:
            amount_msat = to_unit(options.amount, unit, CurrencyUnit.MSAT)

        label = str(uuid.uuid4())
        payload: dict[str, Any] = {
            "amount_msat": amount_msat,
            "label": label,
            "description": options.description or "",
        }
        if options.unix_expiry is not None:
            payload["expiry"] = max(options.unix_expiry - int(time.time()), 1)

        invoice = await self._call("invoice", payload)
        try:
            payment_hash = invoice["payment_hash"]
            bolt11 = invoice["bolt11"]
        except KeyError as exc:
            raise WrongRailResponse(f"CLN invoice response missing {exc}") from exc

        if priced:
            record = QuoteCostRecord(
                quote_id=payment_hash,
                cost=amount_msat,
                cost_unit=CurrencyUnit.MSAT,
                credited_amount=options.amount,
                credited_unit=unit,
            )
            try:
                await self.ledger.write(record)
            except Exception:
                logger.error("Could not record cost for invoice %s; deleting it", payment_hash)
                await self._call("delinvoice", {"label": label, "status": "unpaid"})
                raise

        logger.info("Created invoice %s for %s msat", payment_hash, amount_msat)
        return CreateIncomingPaymentResponse(
            request_lookup_id=PaymentIdentifier.payment_hash(payment_hash),
            request=bolt11,
            expiry=invoice.get("expires_at"),
        )

    async def _lookup_invoice(self, payment_hash: str) -> dict[str, Any]:
        response = await self._call("listinvoices", {"payment_hash": payment_hash})
        invoices = response.get("invoices") or []
        if not invoices:
            logger.info("Check invoice called on unknown lookup id %s", payment_hash)
            raise UnknownInvoice(f"No invoice for payment hash {payment_hash}")
        return invoices[0]

    async def check_invoice_state(self, payment_hash: str) -> MintQuoteState:
        """Map the node's invoice status; an expired invoice is simply unpaid."""
        invoice = await self._lookup_invoice(payment_hash)
        status = invoice.get("status")
        if status not in INVOICE_STATUS_MAP:
            raise WrongRailResponse(f"Unknown invoice status {status!r}")
        return INVOICE_STATUS_MAP[status]

    async def check_incoming_payment_status(
        self,
        identifier: PaymentIdentifier,
    ) -> list[WaitPaymentResponse]:
        invoice = await self._lookup_invoice(identifier.value)
        if INVOICE_STATUS_MAP.get(invoice.get("status")) != MintQuoteState.PAID:
            return []
        amount = await self._credited_amount(identifier.value, invoice)
        return [
            WaitPaymentResponse(
                payment_identifier=identifier,
                payment_amount=amount,
                payment_id=invoice.get("payment_hash", identifier.value),
            )
        ]

    async def _credited_amount(self, lookup_id: str, invoice: dict[str, Any]) -> Amount:
        """Settlement amount for a paid invoice.

        Raises:
            ReconciliationError: priced unit and no cost record.
        """
        if self._is_priced(self.unit):
            if self.ledger is None:
                raise ReconciliationError(lookup_id, "no cost ledger configured")
            try:
                record = await self.ledger.require(lookup_id)
            except ReconciliationError:
                self.metrics.reconciliation_failures.inc()
                raise
            return record.credit

        received = invoice.get("amount_received_msat", invoice.get("amount_msat"))
        if received is None:
            raise WrongRailResponse(f"Invoice {lookup_id} has no received amount")
        return Amount(to_unit(_msat(received), CurrencyUnit.MSAT, self.unit), self.unit)

    # ------------------------------------------------------------------
    # Outgoing
    # ------------------------------------------------------------------

    def _check_outgoing_unit(self, unit: CurrencyUnit) -> None:
        """Outgoing payments are quoted and settled in bitcoin units only."""
        if unit not in LIGHTNING_UNITS:
            raise UnsupportedPaymentOption(f"outgoing payments in {unit.value}")

    async def _decode(self, bolt11: str) -> tuple[str, int]:
        decoded = await self._call("decode", {"string": bolt11})
        payment_hash = decoded.get("payment_hash")
        if not payment_hash:
            raise WrongRailResponse("Decoded invoice has no payment hash")
        amount_msat = decoded.get("amount_msat")
        if amount_msat is None:
            raise UnknownInvoiceAmount("Invoice carries no amount")
        return payment_hash, _msat(amount_msat)

    async def get_payment_quote(
        self,
        unit: CurrencyUnit,
        options: OutgoingPaymentOptions,
    ) -> PaymentQuoteResponse:
        if options.method != PaymentMethod.BOLT11:
            raise UnsupportedPaymentOption(options.method.value)
        self._check_outgoing_unit(unit)

        payment_hash, amount_msat = await self._decode(options.request)
        amount = to_unit(amount_msat, CurrencyUnit.MSAT, unit)
        fee = to_unit(self.fee_reserve.fee_for(amount_msat), CurrencyUnit.MSAT, unit)
        return PaymentQuoteResponse(
            request_lookup_id=PaymentIdentifier.payment_hash(payment_hash),
            amount=Amount(amount, unit),
            fee=Amount(fee, unit),
            state=MeltQuoteState.UNPAID,
        )

    async def make_payment(
        self,
        unit: CurrencyUnit,
        options: OutgoingPaymentOptions,
    ) -> MakePaymentResponse:
        """Pay a bolt11 invoice.

        Raises:
            InvoiceAlreadyPaid: a completed payment for the invoice exists.
            InvoicePaymentPending: a payment for the invoice is in flight.
        """
        if options.method != PaymentMethod.BOLT11:
            raise UnsupportedPaymentOption(options.method.value)
        self._check_outgoing_unit(unit)

        payment_hash, amount_msat = await self._decode(options.request)

        current = await self.check_outgoing_payment(PaymentIdentifier.payment_hash(payment_hash))
        if current.status == MeltQuoteState.PAID:
            logger.debug("Melt attempted on invoice already paid: %s", payment_hash)
            raise InvoiceAlreadyPaid(payment_hash)
        if current.status == MeltQuoteState.PENDING:
            logger.debug("Melt attempted on invoice already pending: %s", payment_hash)
            raise InvoicePaymentPending(payment_hash)

        if options.max_fee is not None:
            maxfee_msat = to_unit(options.max_fee, unit, CurrencyUnit.MSAT)
        else:
            maxfee_msat = self.fee_reserve.fee_for(amount_msat)

        payload: dict[str, Any] = {"bolt11": options.request, "maxfee": maxfee_msat}
        if options.partial_amount is not None:
            payload["partial_msat"] = to_unit(options.partial_amount, unit, CurrencyUnit.MSAT)

        result = await self._call("pay", payload)
        status = PAY_STATUS_MAP.get(result.get("status"))
        if status is None:
            logger.error("Error attempting to pay invoice %s: %s", payment_hash, result)
            raise WrongRailResponse(f"Unexpected pay status {result.get('status')!r}")

        self.metrics.record_outgoing(status.value)
        spent_msat = _msat(result.get("amount_sent_msat", 0))
        logger.info("Payment %s finished with status %s", payment_hash, status.value)
        return MakePaymentResponse(
            payment_lookup_id=PaymentIdentifier.payment_hash(result.get("payment_hash", payment_hash)),
            payment_proof=result.get("payment_preimage"),
            status=status,
            total_spent=Amount(to_unit(spent_msat, CurrencyUnit.MSAT, unit), unit),
        )

    async def check_outgoing_payment(self, identifier: PaymentIdentifier) -> MakePaymentResponse:
        response = await self._call("listpays", {"payment_hash": identifier.value})
        pays = response.get("pays") or []
        if not pays:
            return MakePaymentResponse(
                payment_lookup_id=identifier,
                payment_proof=None,
                status=MeltQuoteState.UNKNOWN,
                total_spent=Amount(0, CurrencyUnit.MSAT),
            )

        pay = pays[0]
        status = PAY_STATUS_MAP.get(pay.get("status"))
        if status is None:
            raise WrongRailResponse(f"Unknown pay status {pay.get('status')!r}")
        sent = pay.get("amount_sent_msat")
        return MakePaymentResponse(
            payment_lookup_id=PaymentIdentifier.payment_hash(pay.get("payment_hash", identifier.value)),
            payment_proof=pay.get("preimage"),
            status=status,
            total_spent=Amount(_msat(sent) if sent is not None else 0, CurrencyUnit.MSAT),
        )

    # ------------------------------------------------------------------
    # Invoice notifications
    # ------------------------------------------------------------------

    async def _get_last_pay_index(self) -> int | None:
        """Highest pay index across all invoices, or None if nothing was ever paid."""
        response = await self._call("listinvoices", {})
        indexes = [
            inv["pay_index"]
            for inv in response.get("invoices") or []
            if inv.get("pay_index") is not None
        ]
        return max(indexes) if indexes else None

    async def wait_payment_events(self) -> AsyncIterator[PaymentReceived]:
        """Start a notification stream on its own RPC connection.

        Every live stream shares one cancellation event, so a single
        `cancel_wait()` stops all of them.
        """
        cursor = InvoiceCursor(await self._get_last_pay_index())
        if self._cancel.is_set():
            self._cancel = asyncio.Event()
        stream_rpc = self._rpc_factory(self.rpc_path)
        logger.info("Waiting for invoices after pay index %s", cursor.pay_index)
        return self._invoice_stream(stream_rpc, cursor, self._cancel)

    def is_wait_active(self) -> bool:
        return self._active_streams > 0

    def cancel_wait(self) -> None:
        self._cancel.set()

    async def aclose(self) -> None:
        self.cancel_wait()

    async def _sleep_or_cancel(self, cancel: asyncio.Event, delay: float) -> None:
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _next_invoice(
        self,
        rpc: Any,
        cursor: InvoiceCursor,
        cancel: asyncio.Event,
    ) -> dict[str, Any] | None:
        """Long-poll once. Returns None when cancelled."""
        payload: dict[str, Any] = {"timeout": self.poll_timeout}
        if cursor.pay_index is not None:
            payload["lastpay_index"] = cursor.pay_index

        call = asyncio.ensure_future(asyncio.to_thread(rpc.call, "waitanyinvoice", payload))
        cancelled = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({call, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            if cancel.is_set() or not call.done():
                # The worker thread finishes on its own once the node's timeout elapses.
                call.add_done_callback(_discard_outcome)
                call.cancel()

        if cancel.is_set():
            return None
        return call.result()

    async def _resolve_lookup_id(self, rpc: Any, invoice: dict[str, Any]) -> PaymentIdentifier | None:
        payment_hash = invoice["payment_hash"]
        if not invoice.get("bolt12"):
            return PaymentIdentifier.payment_hash(payment_hash)

        # Offers are looked up by offer id, which waitanyinvoice does not return.
        try:
            response = await asyncio.to_thread(
                rpc.call, "listinvoices", {"payment_hash": payment_hash}
            )
        except (RpcError, OSError) as exc:
            logger.warning("Error fetching invoice by payment hash %s: %s", payment_hash, exc)
            return None

        invoices = (response.get("invoices") if isinstance(response, dict) else None) or []
        if not invoices:
            logger.warning("No invoice found for bolt12 payment %s", payment_hash)
            return None
        offer_id = invoices[0].get("local_offer_id")
        if not offer_id:
            logger.warning("Bolt12 payment %s has no local offer id", payment_hash)
            return None
        return PaymentIdentifier.offer_id(offer_id)

    async def _invoice_stream(
        self,
        rpc: Any,
        cursor: InvoiceCursor,
        cancel: asyncio.Event,
    ) -> AsyncIterator[PaymentReceived]:
        self._active_streams += 1
        self.metrics.wait_stream_active.set(self._active_streams)
        try:
            while not cancel.is_set():
                try:
                    invoice = await self._next_invoice(rpc, cursor, cancel)
                except RpcError as exc:
                    if _rpc_error_code(exc) == WAIT_TIMEOUT_CODE:
                        logger.debug("waitanyinvoice timed out, polling again")
                        continue
                    logger.warning("Error fetching invoice: %s", exc)
                    await self._sleep_or_cancel(cancel, self.retry_interval)
                    continue
                except OSError as exc:
                    logger.warning("Error fetching invoice: %s", exc)
                    await self._sleep_or_cancel(cancel, self.retry_interval)
                    continue

                if invoice is None:
                    break
                if not isinstance(invoice, dict) or "payment_hash" not in invoice:
                    logger.warning("Failed to parse waitanyinvoice response: %r", invoice)
                    continue
                if invoice.get("status") != "paid":
                    continue

                cursor.advance(invoice.get("pay_index"))

                lookup_id = await self._resolve_lookup_id(rpc, invoice)
                if lookup_id is None:
                    continue

                try:
                    amount = await self._credited_amount(lookup_id.value, invoice)
                except ReconciliationError as exc:
                    logger.error("%s; refusing to credit", exc)
                    continue
                except PaymentError as exc:
                    logger.warning("Skipping invoice %s: %s", invoice["payment_hash"], exc)
                    continue

                self.metrics.payments_received.inc()
                logger.info("Invoice paid: %s (%s %s)", lookup_id, amount.value, amount.unit.value)
                yield PaymentReceived(
                    lookup_id=lookup_id,
                    amount=amount,
                    payment_id=invoice["payment_hash"],
                )
        finally:
            self._active_streams -= 1
            self.metrics.wait_stream_active.set(self._active_streams)
            logger.info("Invoice stream stopped at pay index %s", cursor.pay_index)

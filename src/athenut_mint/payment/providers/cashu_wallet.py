"""Wallet-backed payment backend.

Incoming payments are bought from an upstream mint through an owned wallet:
the payer settles the upstream mint's invoice, the wallet mints the proofs,
and the settlement engine is credited with the amount recorded in the
QuoteCostLedger at request time.

Outgoing payments do not move money. Spending settlement credit triggers a
single paid action (a search query) and returns its raw response as proof.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import uuid
from typing import AsyncIterator

from athenut_mint.metrics import BridgeMetrics
from athenut_mint.payment.base import (
    Amount,
    Bolt11Settings,
    CreateIncomingPaymentResponse,
    CurrencyUnit,
    IdentifierKind,
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
    AmountOutOfRange,
    PaymentError,
    RailError,
    ReconciliationError,
    UnsupportedPaymentOption,
)
from athenut_mint.payment.events import PaymentReceived
from athenut_mint.payment.services.conversion import MSAT_PER_SAT, CurrencyConverter
from athenut_mint.payment.services.cost_ledger import QuoteCostLedger, QuoteCostRecord
from athenut_mint.payment.services.paid_action import PaidActionClient
from athenut_mint.payment.services.price_oracle import PriceOracle
from athenut_mint.payment.services.wait_pool import PendingWaitPool
from athenut_mint.wallet import MintQuote, MintWallet

logger = logging.getLogger(__name__)

DEFAULT_WAIT_TIMEOUT = 500.0
DEFAULT_RESUME_WAIT_TIMEOUT = 5.0
PAID_ACTION_COST = 1


class CashuWalletBackend:
    """MintPayment backend that buys settlement credit from an upstream mint.

    Usage:
        backend = CashuWalletBackend(wallet, ledger, oracle, converter, paid_action)
        response = await backend.create_incoming_payment_request(
            CurrencyUnit.XSR,
            IncomingPaymentOptions(method=PaymentMethod.BOLT11, amount=3),
        )

        async for event in await backend.wait_payment_events():
            credit(event.lookup_id, event.amount)
    """

    provider_name = "cashu_wallet"

    def __init__(
        self,
        wallet: MintWallet,
        ledger: QuoteCostLedger,
        price_oracle: PriceOracle,
        converter: CurrencyConverter,
        paid_action: PaidActionClient,
        pool: PendingWaitPool | None = None,
        metrics: BridgeMetrics | None = None,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
        resume_wait_timeout: float = DEFAULT_RESUME_WAIT_TIMEOUT,
        mint_min: int = 1,
        mint_max: int = 50,
    ):
        if mint_min < 1 or mint_max < mint_min:
            raise ValueError("mint limits must satisfy 1 <= mint_min <= mint_max")
        self.wallet = wallet
        self.ledger = ledger
        self.price_oracle = price_oracle
        self.converter = converter
        self.paid_action = paid_action
        self.pool = pool if pool is not None else PendingWaitPool()
        self.metrics = metrics or BridgeMetrics()
        self.wait_timeout = wait_timeout
        self.resume_wait_timeout = resume_wait_timeout
        self.mint_min = mint_min
        self.mint_max = mint_max
        self.unit = converter.settlement_unit

        self._active_streams = 0
        self._cancel = asyncio.Event()

    async def get_settings(self) -> SettingsResponse:
        return SettingsResponse(
            unit=self.unit,
            bolt11=Bolt11Settings(mpp=False, amountless=False, invoice_description=True),
        )

    # ------------------------------------------------------------------
    # Incoming
    # ------------------------------------------------------------------

    async def create_incoming_payment_request(
        self,
        unit: CurrencyUnit,
        options: IncomingPaymentOptions,
    ) -> CreateIncomingPaymentResponse:
        """Buy `options.amount` settlement units from the upstream mint.

        The cost record is persisted before the invoice is returned. If it
        cannot be persisted the upstream quote is forgotten and no invoice is
        handed out.
        """
        try:
            response = await self._create_incoming(unit, options)
        except PaymentError:
            self.metrics.incoming_failed.inc()
            raise
        self.metrics.incoming_created.inc()
        return response

    async def _create_incoming(
        self,
        unit: CurrencyUnit,
        options: IncomingPaymentOptions,
    ) -> CreateIncomingPaymentResponse:
        if options.method != PaymentMethod.BOLT11:
            raise UnsupportedPaymentOption(options.method.value)
        if unit != self.unit:
            raise UnsupportedPaymentOption(unit.value)
        if not self.mint_min <= options.amount <= self.mint_max:
            raise AmountOutOfRange(options.amount, self.mint_min, self.mint_max)

        price = await self.price_oracle.fetch_reference_rate()
        msats = self.converter.fee_to_rail_amount(options.amount, price)
        sats = msats // MSAT_PER_SAT

        quote = await self.wallet.mint_quote(sats, options.description)

        record = QuoteCostRecord(
            quote_id=quote.id,
            cost=sats,
            cost_unit=CurrencyUnit.SAT,
            credited_amount=options.amount,
            credited_unit=self.unit,
        )
        try:
            await self.ledger.write(record)
        except Exception:
            logger.error("Could not record cost for quote %s; dropping quote", quote.id)
            await self.wallet.remove_mint_quote(quote.id)
            raise

        await self._register(quote, self.wait_timeout)

        logger.info(
            "Incoming request %s: %s %s for %s sat at %s/BTC",
            quote.id,
            options.amount,
            self.unit.value,
            sats,
            price,
        )
        return CreateIncomingPaymentResponse(
            request_lookup_id=PaymentIdentifier.custom(quote.id),
            request=quote.request,
            expiry=quote.expiry,
        )

    async def _register(self, quote: MintQuote, timeout: float) -> None:
        await self.pool.register(quote.id, functools.partial(self._wait_for_quote, quote, timeout))
        self.metrics.pending_waits.set(len(self.pool))

    async def _wait_for_quote(self, quote: MintQuote, timeout: float) -> WaitPaymentResponse | None:
        """Wait for the upstream mint to confirm, mint, then read the credit.

        Timeouts, rail failures and missing cost records resolve to None.
        """
        try:
            await self.wallet.wait_and_mint_quote(quote, timeout)
        except TimeoutError:
            logger.info("Quote %s not paid within %ss", quote.id, timeout)
            self.metrics.waits_expired.inc()
            return None
        except RailError as exc:
            logger.warning("Waiting on quote %s failed: %s", quote.id, exc)
            self.metrics.waits_expired.inc()
            return None

        try:
            record = await self.ledger.require(quote.id)
        except ReconciliationError as exc:
            logger.error("%s; refusing to credit", exc)
            self.metrics.reconciliation_failures.inc()
            return None

        return WaitPaymentResponse(
            payment_identifier=PaymentIdentifier.custom(quote.id),
            payment_amount=record.credit,
            payment_id=quote.id,
        )

    async def wait_payment_events(self) -> AsyncIterator[PaymentReceived]:
        """Re-register unissued quotes, then stream confirmations from the pool.

        Callers must keep a single logical reader; two concurrent subscribers
        compete for the same pool. Every live stream shares one cancellation
        event, so a single `cancel_wait()` stops all of them.
        """
        try:
            unissued = await self.wallet.get_unissued_mint_quotes()
        except PaymentError as exc:
            logger.warning("Could not rescan unissued quotes: %s", exc)
            unissued = []

        for quote in unissued:
            if quote.id not in self.pool:
                await self._register(quote, self.resume_wait_timeout)
        if unissued:
            logger.info("Resumed waits for %d unissued quote(s)", len(unissued))

        if self._cancel.is_set():
            self._cancel = asyncio.Event()
        return self._stream(self._cancel)

    async def _stream(self, cancel: asyncio.Event) -> AsyncIterator[PaymentReceived]:
        self._active_streams += 1
        self.metrics.wait_stream_active.set(self._active_streams)
        try:
            async for event in self.pool.events(should_stop=cancel.is_set):
                self.metrics.payments_received.inc()
                self.metrics.pending_waits.set(len(self.pool))
                logger.info(
                    "Payment received for quote %s: %s %s",
                    event.lookup_id,
                    event.amount.value,
                    event.amount.unit.value,
                )
                yield event
        finally:
            self._active_streams -= 1
            self.metrics.wait_stream_active.set(self._active_streams)

    def is_wait_active(self) -> bool:
        return self._active_streams > 0

    def cancel_wait(self) -> None:
        self._cancel.set()

    async def aclose(self) -> None:
        """Stop the stream, cancel outstanding waits, close the wallet."""
        self.cancel_wait()
        await self.pool.aclose()
        await self.wallet.aclose()

    async def check_incoming_payment_status(
        self,
        identifier: PaymentIdentifier,
    ) -> list[WaitPaymentResponse]:
        """Mint a paid quote and report the credit recorded for it.

        Raises:
            UnsupportedPaymentOption: for identifiers that are not quote ids.
            ReconciliationError: if the paid quote has no cost record.
        """
        if identifier.kind != IdentifierKind.CUSTOM_ID:
            raise UnsupportedPaymentOption(identifier.kind.value)

        quote = await self.wallet.check_mint_quote_status(identifier.value)
        if quote.state != MintQuoteState.PAID:
            return []

        await self.wallet.mint(quote.id)
        try:
            record = await self.ledger.require(quote.id)
        except ReconciliationError:
            self.metrics.reconciliation_failures.inc()
            raise

        return [
            WaitPaymentResponse(
                payment_identifier=identifier,
                payment_amount=record.credit,
                payment_id=quote.id,
            )
        ]

    # ------------------------------------------------------------------
    # Outgoing
    # ------------------------------------------------------------------

    async def get_payment_quote(
        self,
        unit: CurrencyUnit,
        options: OutgoingPaymentOptions,
    ) -> PaymentQuoteResponse:
        """A paid action always costs one settlement unit, no fee."""
        return PaymentQuoteResponse(
            request_lookup_id=None,
            amount=Amount(PAID_ACTION_COST, self.unit),
            fee=Amount(0, self.unit),
            state=MeltQuoteState.UNPAID,
        )

    async def make_payment(
        self,
        unit: CurrencyUnit,
        options: OutgoingPaymentOptions,
    ) -> MakePaymentResponse:
        if options.method != PaymentMethod.CUSTOM:
            raise UnsupportedPaymentOption(options.method.value)
        return await self.execute_paid_action(options)

    async def execute_paid_action(self, options: OutgoingPaymentOptions) -> MakePaymentResponse:
        """Run the paid action and return its raw response as proof."""
        result = await self.paid_action.run(options.request)
        self.metrics.paid_actions.inc()
        self.metrics.record_outgoing(MeltQuoteState.PAID.value)
        return MakePaymentResponse(
            payment_lookup_id=PaymentIdentifier.custom(str(uuid.uuid4())),
            payment_proof=json.dumps(result),
            status=MeltQuoteState.PAID,
            total_spent=Amount(PAID_ACTION_COST, self.unit),
        )

    async def check_outgoing_payment(self, identifier: PaymentIdentifier) -> MakePaymentResponse:
        """Paid actions complete synchronously and are not recorded."""
        return MakePaymentResponse(
            payment_lookup_id=identifier,
            payment_proof=None,
            status=MeltQuoteState.UNKNOWN,
            total_spent=Amount(0, self.unit),
        )

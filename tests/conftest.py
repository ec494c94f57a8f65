"""Pytest fixtures for athenut mint bridge tests."""

from __future__ import annotations

import asyncio
import itertools
import queue
import time
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from pyln.client import RpcError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from athenut_mint.database import create_tables
from athenut_mint.metrics import BridgeMetrics
from athenut_mint.payment.base import CurrencyUnit, MintQuoteState
from athenut_mint.payment.errors import RailError
from athenut_mint.payment.services.conversion import CurrencyConverter
from athenut_mint.payment.services.cost_ledger import QuoteCostLedger
from athenut_mint.storage import SqlKVStore
from athenut_mint.wallet import MintQuote

BTC_PRICE = 60_000
COST_PER_XSR_CENTS = 3


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """File-backed SQLite database with the kv_store table."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.sqlite'}", echo=False)
    await create_tables(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory) -> SqlKVStore:
    return SqlKVStore(session_factory)


@pytest.fixture
def ledger(store) -> QuoteCostLedger:
    return QuoteCostLedger(store)


@pytest.fixture
def converter() -> CurrencyConverter:
    return CurrencyConverter(COST_PER_XSR_CENTS, CurrencyUnit.XSR)


@pytest.fixture
def metrics() -> BridgeMetrics:
    return BridgeMetrics()


# =============================================================================
# Price and paid action
# =============================================================================


class StaticPriceOracle:
    """Price oracle returning a fixed price, or raising a configured error."""

    def __init__(self, price: int = BTC_PRICE):
        self.price = price
        self.error: Exception | None = None
        self.calls = 0

    async def fetch_reference_rate(self) -> int:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.price


class RecordingPaidAction:
    """Paid action that records queries and returns a canned response."""

    def __init__(self) -> None:
        self.queries: list[str] = []

    async def run(self, query: str) -> Any:
        self.queries.append(query)
        return {"meta": {"ms": 12}, "data": [{"title": f"result for {query}"}]}


@pytest.fixture
def price_oracle() -> StaticPriceOracle:
    return StaticPriceOracle()


@pytest.fixture
def paid_action() -> RecordingPaidAction:
    return RecordingPaidAction()


# =============================================================================
# Delegated wallet
# =============================================================================


class FakeMintWallet:
    """In-memory MintWallet; tests settle quotes with `pay()`."""

    def __init__(self, store) -> None:
        self.store = store
        self.quotes: dict[str, MintQuote] = {}
        self.minted: list[str] = []
        self.fail_quotes = False
        self._ids = itertools.count(1)
        self._paid: dict[str, asyncio.Event] = {}

    def _event(self, quote_id: str) -> asyncio.Event:
        return self._paid.setdefault(quote_id, asyncio.Event())

    def add_quote(self, quote: MintQuote) -> MintQuote:
        self.quotes[quote.id] = quote
        return quote

    def pay(self, quote_id: str) -> None:
        quote = self.quotes[quote_id]
        self.quotes[quote_id] = MintQuote(
            quote.id, quote.request, quote.amount, quote.unit, MintQuoteState.PAID, quote.expiry
        )
        self._event(quote_id).set()

    async def mint_quote(self, amount: int, description: str | None = None) -> MintQuote:
        if self.fail_quotes:
            raise RailError("upstream mint unavailable")
        quote_id = f"quote-{next(self._ids)}"
        return self.add_quote(
            MintQuote(
                id=quote_id,
                request=f"lnbc{amount}n1{quote_id}",
                amount=amount,
                unit=CurrencyUnit.SAT,
                state=MintQuoteState.UNPAID,
                expiry=int(time.time()) + 600,
            )
        )

    async def check_mint_quote_status(self, quote_id: str) -> MintQuote:
        if quote_id not in self.quotes:
            raise RailError(f"unknown quote {quote_id}")
        return self.quotes[quote_id]

    async def mint(self, quote_id: str) -> int:
        quote = self.quotes[quote_id]
        if quote.state != MintQuoteState.PAID:
            raise RailError(f"quote {quote_id} is {quote.state.value}")
        self.quotes[quote_id] = MintQuote(
            quote.id, quote.request, quote.amount, quote.unit, MintQuoteState.ISSUED, quote.expiry
        )
        self.minted.append(quote_id)
        return quote.amount

    async def wait_and_mint_quote(self, quote: MintQuote, timeout: float) -> int:
        if self.quotes[quote.id].state == MintQuoteState.UNPAID:
            try:
                await asyncio.wait_for(self._event(quote.id).wait(), timeout)
            except asyncio.TimeoutError:
                raise TimeoutError(f"quote {quote.id} not paid") from None
        return await self.mint(quote.id)

    async def get_unissued_mint_quotes(self) -> list[MintQuote]:
        return [q for q in self.quotes.values() if q.state != MintQuoteState.ISSUED]

    async def remove_mint_quote(self, quote_id: str) -> None:
        self.quotes.pop(quote_id, None)

    async def aclose(self) -> None:
        pass


@pytest.fixture
def wallet(store) -> FakeMintWallet:
    return FakeMintWallet(store)


# =============================================================================
# Lightning node
# =============================================================================


class FakeNode:
    """State shared by every FakeLightningRpc connection."""

    def __init__(self) -> None:
        self.invoices: list[dict[str, Any]] = []
        self.pays: list[dict[str, Any]] = []
        self.decoded: dict[str, dict[str, Any]] = {}
        self.pay_result: dict[str, Any] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.notifications: queue.Queue[Any] = queue.Queue()
        self.listinvoices_error: Exception | None = None
        self.wait_poll_seconds = 0.05

    def methods_called(self) -> list[str]:
        return [method for method, _ in self.calls]

    def notify(self, item: Any) -> None:
        """Queue a waitanyinvoice result (dict) or error (exception)."""
        self.notifications.put(item)


class FakeLightningRpc:
    """Stands in for pyln.client.LightningRpc."""

    def __init__(self, node: FakeNode) -> None:
        self.node = node

    def call(self, method: str, payload: dict[str, Any] | None = None) -> Any:
        payload = payload or {}
        self.node.calls.append((method, payload))
        handler = getattr(self, f"_{method}")
        return handler(payload)

    def _invoice(self, payload: dict[str, Any]) -> dict[str, Any]:
        index = len(self.node.invoices) + 1
        payment_hash = f"{index:064x}"
        invoice = {
            "label": payload["label"],
            "payment_hash": payment_hash,
            "bolt11": f"lnbcrt{payload['amount_msat']}msat1{payment_hash[-8:]}",
            "amount_msat": payload["amount_msat"],
            "status": "unpaid",
            "expires_at": int(time.time()) + payload.get("expiry", 604800),
        }
        self.node.invoices.append(invoice)
        return {k: invoice[k] for k in ("payment_hash", "bolt11", "expires_at")}

    def _delinvoice(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.node.invoices = [i for i in self.node.invoices if i["label"] != payload["label"]]
        return {}

    def _listinvoices(self, payload: dict[str, Any]) -> dict[str, Any]:
        if self.node.listinvoices_error is not None and "payment_hash" in payload:
            raise self.node.listinvoices_error
        invoices = self.node.invoices
        if "payment_hash" in payload:
            invoices = [i for i in invoices if i["payment_hash"] == payload["payment_hash"]]
        return {"invoices": list(invoices)}

    def _decode(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self.node.decoded[payload["string"]]

    def _pay(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self.node.pay_result

    def _listpays(self, payload: dict[str, Any]) -> dict[str, Any]:
        pays = [p for p in self.node.pays if p["payment_hash"] == payload["payment_hash"]]
        return {"pays": pays}

    def _waitanyinvoice(self, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            item = self.node.notifications.get(timeout=self.node.wait_poll_seconds)
        except queue.Empty:
            raise RpcError(
                "waitanyinvoice", payload, {"code": 904, "message": "Timed out"}
            ) from None
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture
def rpc_factory(node):
    """rpc_factory for ClnBackend; every connection talks to the same node."""
    return lambda _path: FakeLightningRpc(node)

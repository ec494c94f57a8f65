"""Delegated ecash wallet against an upstream mint.

The wallet buys settlement credit from an upstream mint with real Lightning
payments: it requests a mint quote (a bolt11 invoice), waits until the
upstream mint reports the quote paid, then mints the proofs into itself.

HttpMintWallet speaks the quote side of the upstream mint's NUT-04 REST
interface. Proof issuance (blinding outputs, unblinding signatures, storing
proofs) is delegated to a ProofMinter; athenut_mint.minter.NutshellMinter
is the default one.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass, replace
from typing import Any, Protocol

import httpx

from athenut_mint.payment.base import CurrencyUnit, MintQuoteState
from athenut_mint.payment.errors import RailError, WrongRailResponse
from athenut_mint.storage import KVStore

logger = logging.getLogger(__name__)

QUOTE_PRIMARY_NAMESPACE = "wallet"
QUOTE_SECONDARY_NAMESPACE = "mint_quotes"


@dataclass(frozen=True)
class MintQuote:
    """A quote issued by the upstream mint."""

    id: str
    request: str
    amount: int
    unit: CurrencyUnit
    state: MintQuoteState
    expiry: int | None = None

    def is_expired(self, now: float | None = None) -> bool:
        if self.expiry is None:
            return False
        return (now if now is not None else time.time()) >= self.expiry

    def to_bytes(self) -> bytes:
        data = asdict(self)
        data["unit"] = self.unit.value
        data["state"] = self.state.value
        return json.dumps(data, sort_keys=True).encode()

    @classmethod
    def from_bytes(cls, raw: bytes) -> MintQuote:
        data = json.loads(raw)
        return cls(
            id=data["id"],
            request=data["request"],
            amount=int(data["amount"]),
            unit=CurrencyUnit(data["unit"]),
            state=MintQuoteState(data["state"]),
            expiry=data.get("expiry"),
        )


class MintWallet(Protocol):
    """Protocol for the wallet the cashu-wallet backend delegates to."""

    store: KVStore

    async def mint_quote(self, amount: int, description: str | None = None) -> MintQuote:
        """Ask the upstream mint for an invoice of `amount` sats."""
        ...

    async def check_mint_quote_status(self, quote_id: str) -> MintQuote:
        """Fetch the upstream mint's current view of a quote."""
        ...

    async def wait_and_mint_quote(self, quote: MintQuote, timeout: float) -> int:
        """Block until the quote is paid, mint it, return the minted amount.

        Raises:
            TimeoutError: if the quote is not paid in time.
            RailError: on upstream failure.
        """
        ...

    async def mint(self, quote_id: str) -> int:
        """Mint proofs for a paid quote."""
        ...

    async def get_unissued_mint_quotes(self) -> list[MintQuote]:
        """Quotes this wallet requested that were never minted."""
        ...

    async def remove_mint_quote(self, quote_id: str) -> None:
        """Forget a quote."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...


class ProofMinter(Protocol):
    """Issues proofs for a paid quote (blind-signature protocol)."""

    async def mint_proofs(self, quote: MintQuote) -> int:
        """Mint proofs worth `quote.amount`; return the amount minted."""
        ...


class HttpMintWallet:
    """MintWallet speaking to an upstream mint over HTTP.

    Quotes are kept in the KV store so unissued ones survive a restart.
    """

    def __init__(
        self,
        mint_url: str,
        store: KVStore,
        minter: ProofMinter,
        unit: CurrencyUnit = CurrencyUnit.SAT,
        poll_interval: float = 2.0,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.mint_url = mint_url.rstrip("/")
        self.store = store
        self.minter = minter
        self.unit = unit
        self.poll_interval = poll_interval
        self.timeout_seconds = timeout_seconds
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._mint_lock = asyncio.Lock()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        url = f"{self.mint_url}{path}"
        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise RailError(f"Upstream mint request {method} {path} failed: {exc}") from exc
        if not isinstance(payload, dict):
            raise WrongRailResponse(f"Upstream mint returned {type(payload).__name__} for {path}")
        return payload

    def _parse_quote(self, payload: dict[str, Any], fallback: MintQuote | None = None) -> MintQuote:
        try:
            state = MintQuoteState(str(payload.get("state", "unpaid")).lower())
            return MintQuote(
                id=str(payload["quote"]),
                request=str(payload.get("request") or (fallback.request if fallback else "")),
                amount=int(payload.get("amount") or (fallback.amount if fallback else 0)),
                unit=CurrencyUnit(payload.get("unit") or self.unit.value),
                state=state,
                expiry=payload.get("expiry"),
            )
        except (KeyError, ValueError) as exc:
            raise WrongRailResponse(f"Malformed mint quote: {exc}") from exc

    async def _save(self, quote: MintQuote) -> None:
        await self.store.kv_write(
            QUOTE_PRIMARY_NAMESPACE, QUOTE_SECONDARY_NAMESPACE, quote.id, quote.to_bytes()
        )

    async def _load(self, quote_id: str) -> MintQuote | None:
        raw = await self.store.kv_read(QUOTE_PRIMARY_NAMESPACE, QUOTE_SECONDARY_NAMESPACE, quote_id)
        return MintQuote.from_bytes(raw) if raw is not None else None

    async def mint_quote(self, amount: int, description: str | None = None) -> MintQuote:
        body: dict[str, Any] = {"amount": amount, "unit": self.unit.value}
        if description:
            body["description"] = description
        payload = await self._request("POST", "/v1/mint/quote/bolt11", json=body)
        quote = self._parse_quote(payload)
        if not quote.request:
            raise WrongRailResponse("Upstream mint quote has no payment request")
        await self._save(quote)
        logger.info("Upstream mint quote %s for %s %s", quote.id, amount, self.unit.value)
        return quote

    async def check_mint_quote_status(self, quote_id: str) -> MintQuote:
        known = await self._load(quote_id)
        payload = await self._request("GET", f"/v1/mint/quote/bolt11/{quote_id}")
        quote = self._parse_quote(payload, fallback=known)
        if known is not None and known.state == MintQuoteState.ISSUED:
            # Our own record of issuance wins over a lagging upstream view.
            quote = replace(quote, state=MintQuoteState.ISSUED)
        await self._save(quote)
        return quote

    async def mint(self, quote_id: str) -> int:
        async with self._mint_lock:
            quote = await self._load(quote_id)
            if quote is None:
                quote = await self.check_mint_quote_status(quote_id)
            if quote.state == MintQuoteState.ISSUED:
                raise RailError(f"Quote {quote_id} already issued")
            amount = await self.minter.mint_proofs(quote)
            await self._save(replace(quote, state=MintQuoteState.ISSUED))
        logger.info("Minted %s %s from quote %s", amount, quote.unit.value, quote_id)
        return amount

    async def wait_and_mint_quote(self, quote: MintQuote, timeout: float) -> int:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            current = await self.check_mint_quote_status(quote.id)
            if current.state == MintQuoteState.PAID:
                return await self.mint(quote.id)
            if current.state == MintQuoteState.ISSUED:
                raise RailError(f"Quote {quote.id} already issued")
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TimeoutError(f"Quote {quote.id} not paid within {timeout}s")
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def get_unissued_mint_quotes(self) -> list[MintQuote]:
        quotes: list[MintQuote] = []
        now = time.time()
        for quote_id in await self.store.kv_list(QUOTE_PRIMARY_NAMESPACE, QUOTE_SECONDARY_NAMESPACE):
            quote = await self._load(quote_id)
            if quote is None or quote.state == MintQuoteState.ISSUED:
                continue
            if quote.state == MintQuoteState.UNPAID and quote.is_expired(now):
                continue
            quotes.append(quote)
        return quotes

    async def remove_mint_quote(self, quote_id: str) -> None:
        await self.store.kv_remove(QUOTE_PRIMARY_NAMESPACE, QUOTE_SECONDARY_NAMESPACE, quote_id)

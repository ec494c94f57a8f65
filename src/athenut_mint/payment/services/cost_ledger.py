"""Quote cost ledger.

Records, per quote, what the rail actually charged versus the settlement
amount to credit. The two differ on the delegated-wallet rail, which buys
credit at a derived price rather than 1:1.

Rules:
    1. A record is written before its invoice is returned to the caller.
    2. A record is read when the quote's payment is confirmed.
    3. A missing record at confirmation is fatal for that quote:
       never credit an unknown amount.
    4. Records are never mutated after they are written.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from athenut_mint.payment.base import Amount, CurrencyUnit
from athenut_mint.payment.errors import ReconciliationError
from athenut_mint.storage import KVStore

logger = logging.getLogger(__name__)

PRIMARY_NAMESPACE = "athenut"
SECONDARY_NAMESPACE = "incoming_payment"


@dataclass(frozen=True)
class QuoteCostRecord:
    """Cost paid on the rail and amount credited for one quote."""

    quote_id: str
    cost: int
    cost_unit: CurrencyUnit
    credited_amount: int
    credited_unit: CurrencyUnit

    @property
    def credit(self) -> Amount:
        return Amount(self.credited_amount, self.credited_unit)

    def to_bytes(self) -> bytes:
        return json.dumps(
            {
                "cost": self.cost,
                "cost_unit": self.cost_unit.value,
                "credited_amount": self.credited_amount,
                "credited_unit": self.credited_unit.value,
            },
            sort_keys=True,
        ).encode()

    @classmethod
    def from_bytes(cls, quote_id: str, raw: bytes) -> QuoteCostRecord:
        data = json.loads(raw)
        return cls(
            quote_id=quote_id,
            cost=int(data["cost"]),
            cost_unit=CurrencyUnit(data["cost_unit"]),
            credited_amount=int(data["credited_amount"]),
            credited_unit=CurrencyUnit(data["credited_unit"]),
        )


class QuoteCostLedger:
    """KV-backed store of QuoteCostRecords keyed by quote id."""

    def __init__(
        self,
        store: KVStore,
        primary_namespace: str = PRIMARY_NAMESPACE,
        secondary_namespace: str = SECONDARY_NAMESPACE,
    ):
        self.store = store
        self.primary_namespace = primary_namespace
        self.secondary_namespace = secondary_namespace

    async def write(self, record: QuoteCostRecord) -> None:
        """Persist a record.

        Raises:
            ReconciliationError: if a different record already exists for the quote.
        """
        existing = await self.read(record.quote_id)
        if existing is not None:
            if existing == record:
                return
            raise ReconciliationError(record.quote_id, "cost record already written")

        await self.store.kv_write(
            self.primary_namespace,
            self.secondary_namespace,
            record.quote_id,
            record.to_bytes(),
        )
        logger.debug(
            "Recorded cost for quote %s: %s %s -> %s %s",
            record.quote_id,
            record.cost,
            record.cost_unit.value,
            record.credited_amount,
            record.credited_unit.value,
        )

    async def read(self, quote_id: str) -> QuoteCostRecord | None:
        """Return the record for a quote, or None."""
        raw = await self.store.kv_read(self.primary_namespace, self.secondary_namespace, quote_id)
        if raw is None:
            return None
        try:
            return QuoteCostRecord.from_bytes(quote_id, raw)
        except (ValueError, KeyError, TypeError) as exc:
            raise ReconciliationError(quote_id, f"corrupt cost record: {exc}") from exc

    async def require(self, quote_id: str) -> QuoteCostRecord:
        """Return the record for a confirmed quote.

        Raises:
            ReconciliationError: if no record exists.
        """
        record = await self.read(quote_id)
        if record is None:
            raise ReconciliationError(quote_id)
        return record

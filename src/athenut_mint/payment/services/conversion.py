"""Currency conversion between fiat cents, Lightning amounts and settlement units.

Rounding policy:
- Amounts the payer is charged (settlement -> rail) are rounded UP twice:
  first to a whole millisatoshi, then to a whole satoshi. The invoice never
  undercharges; the overcharge is strictly less than one satoshi.
- Inverse conversions (rail -> settlement) truncate. They only affect
  internal accounting, never money collected.

All arithmetic is exact integer arithmetic.
"""

from __future__ import annotations

from dataclasses import dataclass

from athenut_mint.payment.base import Amount, CurrencyUnit
from athenut_mint.payment.errors import ConversionError

MSAT_PER_SAT = 1000
SAT_PER_BTC = 100_000_000
MSAT_PER_BTC = SAT_PER_BTC * MSAT_PER_SAT
CENTS_PER_DOLLAR = 100


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def cents_to_msats(cents: int, btc_price_dollars: int) -> int:
    """Convert a fiat cost in cents to a whole-satoshi amount expressed in msat.

    Args:
        cents: Cost in fiat cents.
        btc_price_dollars: Reference price of one bitcoin in whole dollars.

    Returns:
        Millisatoshis, a multiple of 1000, never less than the exact cost.

    Raises:
        ConversionError: if the price is missing or not positive.
    """
    if cents < 0:
        raise ConversionError("Cannot convert a negative fiat amount")
    if not btc_price_dollars or btc_price_dollars <= 0:
        raise ConversionError("Reference price unavailable")

    bitcoin_price_cents = btc_price_dollars * CENTS_PER_DOLLAR
    msats = _ceil_div(cents * MSAT_PER_BTC, bitcoin_price_cents)
    sats = _ceil_div(msats, MSAT_PER_SAT)
    return sats * MSAT_PER_SAT


def msats_to_cents(msats: int, btc_price_dollars: int) -> int:
    """Truncating inverse of cents_to_msats."""
    if not btc_price_dollars or btc_price_dollars <= 0:
        raise ConversionError("Reference price unavailable")
    return (msats * btc_price_dollars * CENTS_PER_DOLLAR) // MSAT_PER_BTC


def to_unit(value: int, from_unit: CurrencyUnit, to: CurrencyUnit) -> int:
    """Convert between Lightning units. msat -> sat truncates."""
    if from_unit == to:
        return value
    if from_unit == CurrencyUnit.SAT and to == CurrencyUnit.MSAT:
        return value * MSAT_PER_SAT
    if from_unit == CurrencyUnit.MSAT and to == CurrencyUnit.SAT:
        return value // MSAT_PER_SAT
    raise ConversionError(f"Cannot convert {from_unit.value} to {to.value} without a price")


def convert_amount(amount: Amount, to: CurrencyUnit) -> Amount:
    """Amount-typed wrapper around to_unit."""
    return Amount(to_unit(amount.value, amount.unit, to), to)


@dataclass(frozen=True)
class CurrencyConverter:
    """Prices settlement units in Lightning terms.

    Attributes:
        cost_per_unit_cents: Fiat cost of one settlement unit, in cents.
        settlement_unit: The priced settlement unit.
    """

    cost_per_unit_cents: int
    settlement_unit: CurrencyUnit = CurrencyUnit.XSR

    def __post_init__(self) -> None:
        if self.cost_per_unit_cents <= 0:
            raise ValueError("cost_per_unit_cents must be positive")

    def fee_to_rail_amount(self, quantity: int, btc_price_dollars: int) -> int:
        """Millisatoshis the payer must send for `quantity` settlement units."""
        if quantity < 0:
            raise ConversionError("Settlement quantity must not be negative")
        return cents_to_msats(quantity * self.cost_per_unit_cents, btc_price_dollars)

    def rail_to_settlement(self, msats: int, btc_price_dollars: int) -> int:
        """Settlement units covered by `msats`, truncated."""
        cents = msats_to_cents(msats, btc_price_dollars)
        return cents // self.cost_per_unit_cents

    def is_priced(self, unit: CurrencyUnit) -> bool:
        """True when `unit` needs a reference price to reach the rail."""
        return unit == self.settlement_unit

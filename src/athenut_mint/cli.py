"""Athenut mint bridge command line interface.

Provides operational tools for:
- Reference price lookup
- Settlement-to-rail conversion
- Quote cost inspection
- Configuration checks
- Running the operational API

Usage:
    python -m athenut_mint.cli price
    python -m athenut_mint.cli convert --xsr 3 --price 60000
    python -m athenut_mint.cli quote-cost QUOTE_ID
    python -m athenut_mint.cli check-settings
    python -m athenut_mint.cli serve
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Callable

from athenut_mint.config import Settings, get_settings, validate_settings
from athenut_mint.logging_config import configure_logging
from athenut_mint.payment.base import CurrencyUnit
from athenut_mint.payment.errors import PaymentError
from athenut_mint.payment.services.conversion import MSAT_PER_SAT, CurrencyConverter


def positive_int(s: str) -> int:
    """Parse a positive integer argument."""
    value = int(s)
    if value <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {s}")
    return value


class AthenutCli:
    """Athenut mint bridge Command Line Interface."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings
        self.parser = self._build_parser()

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="athenut-mint",
            description="Athenut mint payment bridge tools",
        )
        parser.add_argument(
            "--log-level",
            type=str,
            default=None,
            help="Logging level (default: $LOG_LEVEL)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser(
            "price",
            help="Fetch the current reference price",
        )

        convert = subparsers.add_parser(
            "convert",
            help="Rail amount charged for a number of searches",
        )
        convert.add_argument(
            "--xsr",
            type=positive_int,
            required=True,
            help="Number of settlement units (searches)",
        )
        convert.add_argument(
            "--price",
            type=positive_int,
            help="Reference price in whole dollars (default: fetch it)",
        )

        quote_cost = subparsers.add_parser(
            "quote-cost",
            help="Show the cost record of a quote",
        )
        quote_cost.add_argument("quote_id", type=str, help="Quote id or payment hash")

        subparsers.add_parser(
            "check-settings",
            help="Validate configuration for production use",
        )

        subparsers.add_parser(
            "serve",
            help="Run the operational API",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        configure_logging(parsed.log_level or self.settings.log_level)

        handlers: dict[str, Callable[..., int]] = {
            "price": self._cmd_price,
            "convert": self._cmd_convert,
            "quote-cost": self._cmd_quote_cost,
            "check-settings": self._cmd_check_settings,
            "serve": self._cmd_serve,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return handler(parsed)
        except PaymentError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 2

    def _fetch_price(self) -> int:
        from athenut_mint.bootstrap import build_price_oracle

        return asyncio.run(build_price_oracle(self.settings).fetch_reference_rate())

    def _cmd_price(self, args: argparse.Namespace) -> int:
        """Fetch the reference price."""
        price = self._fetch_price()
        print(f"1 BTC = {price} {self.settings.price.currency}")
        return 0

    def _cmd_convert(self, args: argparse.Namespace) -> int:
        """Convert settlement units to the invoice amount."""
        price = args.price if args.price is not None else self._fetch_price()
        converter = CurrencyConverter(
            self.settings.cashu_wallet.cost_per_xsr_cents, CurrencyUnit.XSR
        )
        msats = converter.fee_to_rail_amount(args.xsr, price)
        print(
            json.dumps(
                {
                    "xsr": args.xsr,
                    "cost_cents": args.xsr * converter.cost_per_unit_cents,
                    "price": price,
                    "msat": msats,
                    "sat": msats // MSAT_PER_SAT,
                },
                indent=2,
            )
        )
        return 0

    def _cmd_quote_cost(self, args: argparse.Namespace) -> int:
        """Look up a quote's cost record."""
        record = asyncio.run(self._read_quote_cost(args.quote_id))
        if record is None:
            print(f"No cost record for quote {args.quote_id}", file=sys.stderr)
            return 1
        print(
            json.dumps(
                {
                    "quote_id": record.quote_id,
                    "cost": record.cost,
                    "cost_unit": record.cost_unit.value,
                    "credited_amount": record.credited_amount,
                    "credited_unit": record.credited_unit.value,
                },
                indent=2,
            )
        )
        return 0

    async def _read_quote_cost(self, quote_id: str):
        from athenut_mint.database import create_tables, dispose_db, init_db
        from athenut_mint.payment.services.cost_ledger import QuoteCostLedger
        from athenut_mint.storage import SqlKVStore

        engine, factory = init_db(self.settings.database_url)
        try:
            await create_tables(engine)
            return await QuoteCostLedger(SqlKVStore(factory)).read(quote_id)
        finally:
            await dispose_db()

    def _cmd_check_settings(self, args: argparse.Namespace) -> int:
        """Validate the configuration."""
        print(f"Backend: {self.settings.backend}")
        issues = validate_settings(self.settings)
        if not issues:
            print("Configuration OK")
            return 0
        for issue in issues:
            print(f"  {issue}")
        return 1 if any(issue.startswith("CRITICAL") for issue in issues) else 0

    def _cmd_serve(self, args: argparse.Namespace) -> int:
        """Run the operational API."""
        import uvicorn

        from athenut_mint.api.app import create_app

        uvicorn.run(
            create_app(),
            host=self.settings.host,
            port=self.settings.port,
            log_config=None,
        )
        return 0


def main(args: list[str] | None = None) -> int:
    """CLI entry point."""
    return AthenutCli().run(args)


if __name__ == "__main__":
    sys.exit(main())

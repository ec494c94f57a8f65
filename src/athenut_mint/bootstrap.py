"""Wire a payment backend from settings."""

from __future__ import annotations

import importlib
import logging
from typing import Callable

from athenut_mint.config import Settings
from athenut_mint.metrics import BridgeMetrics
from athenut_mint.minter import NutshellMinter
from athenut_mint.payment.base import CurrencyUnit
from athenut_mint.payment.providers.cashu_wallet import CashuWalletBackend
from athenut_mint.payment.providers.cln import ClnBackend, FeeReserve
from athenut_mint.payment.services.conversion import CurrencyConverter
from athenut_mint.payment.services.cost_ledger import QuoteCostLedger
from athenut_mint.payment.services.paid_action import PaidActionClient
from athenut_mint.payment.services.price_oracle import PriceOracle
from athenut_mint.storage import KVStore
from athenut_mint.wallet import HttpMintWallet, ProofMinter

logger = logging.getLogger(__name__)


def load_minter(path: str, settings: Settings) -> ProofMinter:
    """Import a ProofMinter factory given as "package.module:factory" and call it."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Minter must be given as 'module:factory', got {path!r}")
    factory: Callable[[Settings], ProofMinter] = getattr(importlib.import_module(module_name), attr)
    return factory(settings)


def build_price_oracle(settings: Settings) -> PriceOracle:
    return PriceOracle(
        url=settings.price.url,
        currency=settings.price.currency,
        timeout_seconds=settings.price.timeout_seconds,
    )


def build_backend(
    settings: Settings,
    store: KVStore,
    metrics: BridgeMetrics | None = None,
    minter: ProofMinter | None = None,
) -> CashuWalletBackend | ClnBackend:
    """Build the backend named by `settings.backend`."""
    metrics = metrics or BridgeMetrics()
    ledger = QuoteCostLedger(store)
    converter = CurrencyConverter(settings.cashu_wallet.cost_per_xsr_cents, CurrencyUnit.XSR)

    if settings.backend == "cln":
        logger.info("Using CLN backend at %s", settings.cln.rpc_path)
        return ClnBackend(
            rpc_path=settings.cln.rpc_path,
            fee_reserve=FeeReserve(settings.ln.fee_percent, settings.ln.reserve_fee_min),
            unit=settings.cln.unit,
            ledger=ledger,
            price_oracle=build_price_oracle(settings),
            converter=converter,
            poll_timeout=settings.cln.poll_timeout_seconds,
            retry_interval=settings.cln.retry_interval_seconds,
            metrics=metrics,
        )

    cfg = settings.cashu_wallet
    if minter is None:
        if cfg.minter:
            minter = load_minter(cfg.minter, settings)
        else:
            minter = NutshellMinter(cfg.mint_url, cfg.wallet_db_dir)

    wallet = HttpMintWallet(
        mint_url=cfg.mint_url,
        store=store,
        minter=minter,
        poll_interval=cfg.poll_interval_seconds,
    )
    logger.info("Using cashu wallet backend against %s", cfg.mint_url)
    return CashuWalletBackend(
        wallet=wallet,
        ledger=ledger,
        price_oracle=build_price_oracle(settings),
        converter=converter,
        paid_action=PaidActionClient(settings.search.kagi_auth_token, settings.search.endpoint),
        metrics=metrics,
        wait_timeout=cfg.wait_timeout_seconds,
        resume_wait_timeout=cfg.resume_wait_timeout_seconds,
        mint_min=cfg.mint_min,
        mint_max=cfg.mint_max,
    )

"""Default ProofMinter built on the nutshell cashu wallet.

Nutshell ships as the [wallet] extra:

    pip install athenut-mint[wallet]

Without it, point CASHU_WALLET_MINTER at another "module:factory".
"""

from __future__ import annotations

import asyncio
import logging
import os
from importlib.util import find_spec
from typing import Any, Awaitable, Callable

from athenut_mint.payment.base import CurrencyUnit
from athenut_mint.payment.errors import RailError
from athenut_mint.wallet import MintQuote

logger = logging.getLogger(__name__)

WALLET_DB_NAME = "athenut"

WalletFactory = Callable[[str, str, str], Awaitable[Any]]


class WalletDepsNotInstalledError(ImportError):
    """Raised when the nutshell minter is requested but the [wallet] extra is missing."""

    def __init__(self) -> None:
        super().__init__(
            "The default minter requires the cashu wallet library.\n"
            "Install with: pip install athenut-mint[wallet]\n\n"
            "Alternatively, set CASHU_WALLET_MINTER to a 'module:factory' minter."
        )


def check_wallet_deps_installed() -> bool:
    return find_spec("cashu") is not None


def require_wallet_deps() -> None:
    """
    Raises:
        WalletDepsNotInstalledError: If nutshell is not importable.
    """
    if not check_wallet_deps_installed():
        raise WalletDepsNotInstalledError()


async def open_nutshell_wallet(mint_url: str, db_dir: str, unit: str) -> Any:
    """Open (or create) the sqlite-backed nutshell wallet and load the mint's keysets."""
    from cashu.wallet.wallet import Wallet

    wallet = await Wallet.with_db(url=mint_url, db=db_dir, name=WALLET_DB_NAME, unit=unit)
    await wallet.load_mint()
    return wallet


class NutshellMinter:
    """ProofMinter that blinds, requests and stores proofs with a nutshell Wallet.

    The wallet is opened on first use, so building a minter never touches the
    network or the disk.
    """

    def __init__(
        self,
        mint_url: str,
        db_dir: str,
        unit: CurrencyUnit = CurrencyUnit.SAT,
        wallet_factory: WalletFactory | None = None,
    ):
        if wallet_factory is None:
            require_wallet_deps()
            wallet_factory = open_nutshell_wallet
        self.mint_url = mint_url
        self.db_dir = db_dir
        self.unit = unit
        self._wallet_factory = wallet_factory
        self._wallet: Any = None
        self._open_lock = asyncio.Lock()

    async def _get_wallet(self) -> Any:
        async with self._open_lock:
            if self._wallet is None:
                os.makedirs(self.db_dir, exist_ok=True)
                try:
                    self._wallet = await self._wallet_factory(self.mint_url, self.db_dir, self.unit.value)
                except Exception as exc:
                    raise RailError(f"Could not open wallet for {self.mint_url}: {exc}") from exc
                logger.info("Opened wallet for %s in %s", self.mint_url, self.db_dir)
            return self._wallet

    async def mint_proofs(self, quote: MintQuote) -> int:
        wallet = await self._get_wallet()
        try:
            proofs = await wallet.mint(quote.amount, quote_id=quote.id)
        except Exception as exc:
            logger.error("Minting quote %s failed: %s", quote.id, exc)
            raise RailError(f"Minting quote {quote.id} failed: {exc}") from exc

        minted = sum(proof.amount for proof in proofs)
        logger.info("Minted %d %s for quote %s", minted, self.unit.value, quote.id)
        return minted

"""Tests for the nutshell-backed proof minter."""

import asyncio
from types import SimpleNamespace

import pytest

from athenut_mint import minter
from athenut_mint.minter import NutshellMinter, WalletDepsNotInstalledError
from athenut_mint.payment.base import CurrencyUnit, MintQuoteState
from athenut_mint.payment.errors import RailError
from athenut_mint.wallet import MintQuote

MINT_URL = "https://mint.example.com"


def paid_quote(quote_id: str = "q1", amount: int = 150) -> MintQuote:
    return MintQuote(
        id=quote_id,
        request="lnbc1500n1test",
        amount=amount,
        unit=CurrencyUnit.SAT,
        state=MintQuoteState.PAID,
        expiry=None,
    )


class FakeNutshellWallet:
    """Stands in for cashu.wallet.wallet.Wallet."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.minted: list[tuple[int, str]] = []

    async def mint(self, amount: int, quote_id: str):
        if self.error is not None:
            raise self.error
        self.minted.append((amount, quote_id))
        # power-of-two split, as the mint's keyset denominations
        return [SimpleNamespace(amount=1 << bit) for bit in range(amount.bit_length()) if amount >> bit & 1]


class WalletOpener:
    def __init__(self, wallet: FakeNutshellWallet, error: Exception | None = None) -> None:
        self.wallet = wallet
        self.error = error
        self.opened: list[tuple[str, str, str]] = []

    async def __call__(self, mint_url: str, db_dir: str, unit: str):
        self.opened.append((mint_url, db_dir, unit))
        await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        return self.wallet


@pytest.fixture
def nutshell_wallet() -> FakeNutshellWallet:
    return FakeNutshellWallet()


@pytest.fixture
def opener(nutshell_wallet) -> WalletOpener:
    return WalletOpener(nutshell_wallet)


@pytest.mark.asyncio
class TestNutshellMinter:
    """NutshellMinter.mint_proofs."""

    async def test_mints_quote_amount(self, tmp_path, opener, nutshell_wallet):
        db_dir = str(tmp_path / "wallet")
        proof_minter = NutshellMinter(MINT_URL, db_dir, wallet_factory=opener)

        assert await proof_minter.mint_proofs(paid_quote(amount=150)) == 150

        assert nutshell_wallet.minted == [(150, "q1")]
        assert opener.opened == [(MINT_URL, db_dir, "sat")]
        assert (tmp_path / "wallet").is_dir()

    async def test_wallet_opened_once(self, tmp_path, opener, nutshell_wallet):
        proof_minter = NutshellMinter(MINT_URL, str(tmp_path), wallet_factory=opener)

        await asyncio.gather(
            proof_minter.mint_proofs(paid_quote("q1")),
            proof_minter.mint_proofs(paid_quote("q2")),
        )

        assert len(opener.opened) == 1
        assert sorted(quote_id for _, quote_id in nutshell_wallet.minted) == ["q1", "q2"]

    async def test_mint_failure_becomes_rail_error(self, tmp_path):
        wallet = FakeNutshellWallet(error=Exception("outputs have already been signed before"))
        proof_minter = NutshellMinter(MINT_URL, str(tmp_path), wallet_factory=WalletOpener(wallet))

        with pytest.raises(RailError) as exc_info:
            await proof_minter.mint_proofs(paid_quote())
        assert "q1" in str(exc_info.value)

    async def test_unreachable_mint_becomes_rail_error(self, tmp_path, nutshell_wallet):
        opener = WalletOpener(nutshell_wallet, error=OSError("connection refused"))
        proof_minter = NutshellMinter(MINT_URL, str(tmp_path), wallet_factory=opener)

        with pytest.raises(RailError):
            await proof_minter.mint_proofs(paid_quote())

        opener.error = None
        assert await proof_minter.mint_proofs(paid_quote()) == 150
        assert len(opener.opened) == 2


class TestWalletDeps:
    def test_missing_extra_is_reported_on_construction(self, monkeypatch, tmp_path):
        monkeypatch.setattr(minter, "check_wallet_deps_installed", lambda: False)

        with pytest.raises(WalletDepsNotInstalledError) as exc_info:
            NutshellMinter(MINT_URL, str(tmp_path))
        assert "athenut-mint[wallet]" in str(exc_info.value)

    def test_injected_wallet_needs_no_extra(self, monkeypatch, tmp_path, opener):
        monkeypatch.setattr(minter, "check_wallet_deps_installed", lambda: False)

        proof_minter = NutshellMinter(MINT_URL, str(tmp_path), wallet_factory=opener)

        assert proof_minter.unit == CurrencyUnit.SAT
        assert opener.opened == []

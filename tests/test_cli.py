"""Tests for the command line interface."""

import json

import pytest

from athenut_mint import cli as cli_module
from athenut_mint.cli import AthenutCli
from athenut_mint.config import CashuWalletConfig, SearchConfig, Settings
from athenut_mint.payment.errors import RailError


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli_module, "configure_logging", lambda level: None)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'cli.sqlite'}",
        backend="cashu_wallet",
        host="127.0.0.1",
        port=8085,
        debug=False,
        cashu_wallet=CashuWalletConfig(mint_url="https://mint.example.com", minter="pkg:factory"),
        search=SearchConfig(kagi_auth_token="token"),
    )


class TestAthenutCli:
    """Subcommands."""

    def test_no_command_prints_help(self, settings, capsys):
        assert AthenutCli(settings).run([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_convert_with_explicit_price(self, settings, capsys):
        assert AthenutCli(settings).run(["convert", "--xsr", "3", "--price", "60000"]) == 0

        output = json.loads(capsys.readouterr().out)
        assert output == {
            "xsr": 3,
            "cost_cents": 9,
            "price": 60000,
            "msat": 150_000,
            "sat": 150,
        }

    def test_convert_rejects_non_positive(self, settings):
        with pytest.raises(SystemExit):
            AthenutCli(settings).run(["convert", "--xsr", "0", "--price", "60000"])

    def test_check_settings_clean(self, settings, capsys):
        assert AthenutCli(settings).run(["check-settings"]) == 0
        assert "Configuration OK" in capsys.readouterr().out

    def test_check_settings_critical(self, capsys):
        settings = Settings(
            database_url="sqlite+aiosqlite:///:memory:",
            backend="cln",
            host="127.0.0.1",
            port=8085,
            debug=False,
        )

        assert AthenutCli(settings).run(["check-settings"]) == 1
        assert "CLN_RPC_PATH" in capsys.readouterr().out

    def test_quote_cost_missing(self, settings, capsys):
        assert AthenutCli(settings).run(["quote-cost", "quote-1"]) == 1
        assert "No cost record" in capsys.readouterr().err

    def test_price_failure_exit_code(self, settings, monkeypatch, capsys):
        def fail(self):
            raise RailError("price service down")

        monkeypatch.setattr(AthenutCli, "_fetch_price", fail)

        assert AthenutCli(settings).run(["price"]) == 2
        assert "price service down" in capsys.readouterr().err

    def test_price(self, settings, monkeypatch, capsys):
        monkeypatch.setattr(AthenutCli, "_fetch_price", lambda self: 61_234)

        assert AthenutCli(settings).run(["price"]) == 0
        assert capsys.readouterr().out.strip() == "1 BTC = 61234 USD"

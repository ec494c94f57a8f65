"""Configuration management for the athenut mint bridge.

All settings come from environment variables (a `.env` file is honoured).
Sections are frozen dataclasses that validate themselves on construction.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv

from athenut_mint.minter import check_wallet_deps_installed
from athenut_mint.payment.base import CurrencyUnit
from athenut_mint.payment.services.paid_action import DEFAULT_SEARCH_ENDPOINT
from athenut_mint.payment.services.price_oracle import DEFAULT_PRICE_URL

BACKENDS = ("cashu_wallet", "cln")

DEFAULT_WORK_DIR = os.path.join(os.path.expanduser("~"), ".athenut-mint")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


# =============================================================================
# Sections
# =============================================================================


@dataclass(frozen=True)
class LnConfig:
    """Lightning fee reserve.

    Attributes:
        fee_percent: Relative reserve as a fraction of the amount.
        reserve_fee_min: Absolute reserve floor in msat.
    """

    fee_percent: float = 0.02
    reserve_fee_min: int = 4000

    def __post_init__(self) -> None:
        if not 0 <= self.fee_percent <= 1:
            raise ValueError("fee_percent must be between 0 and 1")
        if self.reserve_fee_min < 0:
            raise ValueError("reserve_fee_min must not be negative")


@dataclass(frozen=True)
class ClnConfig:
    """Core Lightning node connection."""

    rpc_path: str = ""
    unit: CurrencyUnit = CurrencyUnit.MSAT
    poll_timeout_seconds: int = 60
    retry_interval_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.unit not in (CurrencyUnit.MSAT, CurrencyUnit.SAT, CurrencyUnit.XSR):
            raise ValueError("unit must be msat, sat or xsr")
        if self.poll_timeout_seconds < 1:
            raise ValueError("poll_timeout_seconds must be at least 1")
        if self.retry_interval_seconds <= 0:
            raise ValueError("retry_interval_seconds must be positive")


@dataclass(frozen=True)
class CashuWalletConfig:
    """Delegated wallet against an upstream mint.

    Attributes:
        mint_url: Upstream mint the wallet buys credit from.
        cost_per_xsr_cents: Fiat price of one search, in cents.
        wait_timeout_seconds: How long a fresh quote is waited on.
        resume_wait_timeout_seconds: How long a rescanned quote is waited on.
        mint_min: Smallest number of searches per request.
        mint_max: Largest number of searches per request.
        poll_interval_seconds: Interval between upstream quote status checks.
        minter: "module:factory" path of a ProofMinter factory. Empty means
            the nutshell wallet minter.
        wallet_db_dir: Directory holding the nutshell wallet database.
    """

    mint_url: str = ""
    cost_per_xsr_cents: int = 3
    wait_timeout_seconds: float = 500.0
    resume_wait_timeout_seconds: float = 5.0
    mint_min: int = 1
    mint_max: int = 50
    poll_interval_seconds: float = 2.0
    minter: str = ""
    wallet_db_dir: str = os.path.join(DEFAULT_WORK_DIR, "wallet")

    def __post_init__(self) -> None:
        if self.cost_per_xsr_cents <= 0:
            raise ValueError("cost_per_xsr_cents must be positive")
        if self.mint_min < 1 or self.mint_max < self.mint_min:
            raise ValueError("mint limits must satisfy 1 <= mint_min <= mint_max")
        if self.wait_timeout_seconds <= 0 or self.resume_wait_timeout_seconds <= 0:
            raise ValueError("wait timeouts must be positive")
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")


@dataclass(frozen=True)
class SearchConfig:
    """Paid search action."""

    kagi_auth_token: str = field(default="", repr=False)
    endpoint: str = DEFAULT_SEARCH_ENDPOINT


@dataclass(frozen=True)
class PriceConfig:
    """Reference price service."""

    url: str = DEFAULT_PRICE_URL
    currency: str = "USD"
    timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")


# =============================================================================
# Top level
# =============================================================================


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment."""

    database_url: str
    backend: str
    host: str
    port: int
    debug: bool
    log_level: str = "INFO"
    ln: LnConfig = field(default_factory=LnConfig)
    cln: ClnConfig = field(default_factory=ClnConfig)
    cashu_wallet: CashuWalletConfig = field(default_factory=CashuWalletConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    price: PriceConfig = field(default_factory=PriceConfig)

    def __post_init__(self) -> None:
        if self.backend not in BACKENDS:
            raise ValueError(f"backend must be one of {BACKENDS}")

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment variables."""
        load_dotenv()

        work_dir = os.getenv("ATHENUT_WORK_DIR", DEFAULT_WORK_DIR)
        return cls(
            database_url=os.getenv(
                "DATABASE_URL",
                f"sqlite+aiosqlite:///{os.path.join(work_dir, 'athenut-mint.sqlite')}",
            ),
            backend=os.getenv("ATHENUT_BACKEND", "cashu_wallet"),
            host=os.getenv("HOST", "127.0.0.1"),
            port=int(os.getenv("PORT", "8085")),
            debug=_env_bool("DEBUG"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            ln=LnConfig(
                fee_percent=float(os.getenv("LN_FEE_PERCENT", "0.02")),
                reserve_fee_min=int(os.getenv("LN_RESERVE_FEE_MIN", "4000")),
            ),
            cln=ClnConfig(
                rpc_path=os.getenv("CLN_RPC_PATH", ""),
                unit=CurrencyUnit(os.getenv("CLN_UNIT", "msat").lower()),
                poll_timeout_seconds=int(os.getenv("CLN_POLL_TIMEOUT", "60")),
                retry_interval_seconds=float(os.getenv("CLN_RETRY_INTERVAL", "1.0")),
            ),
            cashu_wallet=CashuWalletConfig(
                mint_url=os.getenv("CASHU_WALLET_MINT_URL", ""),
                cost_per_xsr_cents=int(os.getenv("CASHU_WALLET_COST_PER_XSR_CENTS", "3")),
                wait_timeout_seconds=float(os.getenv("CASHU_WALLET_WAIT_TIMEOUT", "500")),
                resume_wait_timeout_seconds=float(
                    os.getenv("CASHU_WALLET_RESUME_WAIT_TIMEOUT", "5")
                ),
                mint_min=int(os.getenv("CASHU_WALLET_MINT_MIN", "1")),
                mint_max=int(os.getenv("CASHU_WALLET_MINT_MAX", "50")),
                poll_interval_seconds=float(os.getenv("CASHU_WALLET_POLL_INTERVAL", "2.0")),
                minter=os.getenv("CASHU_WALLET_MINTER", ""),
                wallet_db_dir=os.getenv("CASHU_WALLET_DB_DIR", os.path.join(work_dir, "wallet")),
            ),
            search=SearchConfig(
                kagi_auth_token=os.getenv("KAGI_AUTH_TOKEN", ""),
                endpoint=os.getenv("SEARCH_ENDPOINT", DEFAULT_SEARCH_ENDPOINT),
            ),
            price=PriceConfig(
                url=os.getenv("PRICE_URL", DEFAULT_PRICE_URL),
                currency=os.getenv("PRICE_CURRENCY", "USD"),
                timeout_seconds=float(os.getenv("PRICE_TIMEOUT", "10")),
            ),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings.from_env()


def validate_settings(settings: Settings) -> list[str]:
    """
    Check that a configuration is safe to run with real money.

    Returns a list of warnings/errors. Empty list = safe.
    """
    issues: list[str] = []

    if settings.backend == "cashu_wallet":
        if not settings.cashu_wallet.mint_url:
            issues.append("CRITICAL: CASHU_WALLET_MINT_URL is not set.")
        elif not settings.cashu_wallet.mint_url.startswith("https://"):
            issues.append("WARNING: Upstream mint URL is not https.")
        if not settings.search.kagi_auth_token:
            issues.append("CRITICAL: KAGI_AUTH_TOKEN is not set. Paid actions will fail.")
        if not settings.cashu_wallet.minter and not check_wallet_deps_installed():
            issues.append(
                "CRITICAL: CASHU_WALLET_MINTER is not set and the [wallet] extra is not installed. "
                "Paid quotes cannot be minted."
            )

    if settings.backend == "cln":
        if not settings.cln.rpc_path:
            issues.append("CRITICAL: CLN_RPC_PATH is not set.")
        if settings.ln.fee_percent == 0 and settings.ln.reserve_fee_min == 0:
            issues.append("WARNING: Fee reserve is zero. Outgoing payments may underpay routing fees.")

    if settings.debug:
        issues.append("WARNING: DEBUG is enabled.")

    return issues

"""
Configuration Management
========================
Handles all environment variables and settings for a copy session.
A settings object is frozen: build a new one to change a running session.
"""

from pathlib import Path
from typing import List, Literal, Optional, Union

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from web3 import Web3

# Load environment variables
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path)

COPY_FACTOR_RANGE = (0.0, 5.0)
SLIPPAGE_BPS_RANGE = (10, 1000)


def _clamp(value, low, high):
    return max(low, min(high, value))


class CopySettings(BaseSettings):
    """Settings for one copy session, loaded from environment variables."""

    # Signing credential & API credentials
    private_key: str = Field(default="", description="Wallet private key used to sign orders")
    api_key: str = Field(default="", description="Previously derived CLOB API key")
    api_secret: str = Field(default="", description="Previously derived CLOB API secret")
    api_passphrase: str = Field(default="", description="Previously derived CLOB API passphrase")
    clob_api_key: str = Field(default="", description="x-api-key header for the raw order transport")

    # Wallet Type: 'metamask' for EOA (signature_type=0) or 'polymarket' for proxy wallet
    wallet_type: Literal["metamask", "polymarket"] = Field(
        default="metamask",
        description="Wallet type: metamask (EOA) or polymarket (proxy)"
    )
    funder_address: str = Field(
        default="",
        description="Funder address (leave empty to use the signer address)"
    )

    # Network
    data_api_url: str = Field(
        default="https://data-api.polymarket.com",
        description="Data API base URL used to read watched wallets' fills"
    )
    clob_api_url: str = Field(
        default="https://clob.polymarket.com",
        description="Trading venue (CLOB) base URL"
    )
    rpc_url: str = Field(default="https://polygon-rpc.com", description="Polygon RPC URL")

    # Watched wallets
    target_addresses: Union[List[str], str] = Field(
        default_factory=list,
        description="Wallet addresses to mirror (JSON list or comma-separated)"
    )

    # Execution
    copy_factor: float = Field(default=1.0, description="Percent-mode multiplier, 0.0 - 5.0")
    max_slippage_bps: int = Field(default=100, description="Slippage tolerance in bps, 10 - 1000")
    dry_run: bool = Field(default=True, description="Simulate orders without contacting the venue")
    poll_interval_ms: int = Field(default=5000, description="Delay between ticks in milliseconds")
    execution_mode: Literal["percent", "fixed"] = Field(
        default="percent",
        description="percent: fill.size * copy_factor, fixed: fixed_size"
    )
    fixed_size: float = Field(default=0.0, ge=0, description="Order size in fixed mode")
    sell_all_on_sell: bool = Field(default=False, description="Liquidate instead of mirroring sells")
    liquidation_size: float = Field(
        default=1.0,
        ge=0,
        description="Size submitted when a sell is mirrored as a full liquidation"
    )

    # Fill source
    fetch_limit: int = Field(default=50, gt=0, description="Fills requested per wallet per tick")
    fill_api_version: str = Field(default="data-api", description="Fill adapter tried first")
    seen_id_retention_ms: Optional[int] = Field(
        default=86_400_000,
        ge=1000,
        description="How far behind the high-water mark fill ids are kept (None keeps all)"
    )
    prime_on_start: bool = Field(
        default=False,
        description="Mark each wallet's existing fills as seen on the first fetch"
    )
    request_timeout_s: float = Field(default=12.0, gt=0)

    # Retry policy
    fetch_retries: int = Field(default=0, ge=0)
    submit_retries: int = Field(default=0, ge=0)
    retry_backoff_ms: int = Field(default=500, ge=0)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        frozen = True

    @field_validator("target_addresses", mode="before")
    @classmethod
    def _split_addresses(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [str(a).strip() for a in value if str(a).strip()]

    @field_validator("copy_factor")
    @classmethod
    def _clamp_copy_factor(cls, value: float) -> float:
        return _clamp(value, *COPY_FACTOR_RANGE)

    @field_validator("max_slippage_bps")
    @classmethod
    def _clamp_slippage(cls, value: int) -> int:
        return _clamp(value, *SLIPPAGE_BPS_RANGE)

    @property
    def slippage(self) -> float:
        """Slippage tolerance as a fraction."""
        return self.max_slippage_bps / 10000


# Global settings instance
settings = CopySettings()


def get_settings() -> CopySettings:
    """Get the global settings instance."""
    return settings


def validate_settings(current: Optional[CopySettings] = None) -> tuple[bool, list[str]]:
    """Validate that everything a live session needs is configured."""
    current = current or settings
    errors = []

    if not current.private_key:
        errors.append("PRIVATE_KEY is required to sign mirrored orders")

    # API keys are optional for MetaMask mode (auto-derived)
    if current.wallet_type == "polymarket":
        if not current.api_key:
            errors.append("API_KEY is required for Polymarket proxy wallet mode")
        if not current.api_secret:
            errors.append("API_SECRET is required for Polymarket proxy wallet mode")
        if not current.api_passphrase:
            errors.append("API_PASSPHRASE is required for Polymarket proxy wallet mode")

    if not current.target_addresses:
        errors.append("TARGET_ADDRESSES is required")
    for address in current.target_addresses:
        if not Web3.is_address(address):
            errors.append(f"Invalid target address: {address}")

    from copymirror.api.fill_source import ADAPTERS
    if current.fill_api_version not in ADAPTERS:
        errors.append(
            f"FILL_API_VERSION '{current.fill_api_version}' is unknown. "
            f"Known: {', '.join(sorted(ADAPTERS))}"
        )

    return len(errors) == 0, errors

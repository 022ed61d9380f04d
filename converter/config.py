from pathlib import Path
from typing import Any, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Normalise addresses so registry lookups can compare them directly."""

        super().model_post_init(__context)

        for name in (
            "account_address",
            "market_maker_address",
            "bonded_token_address",
            "collateral_token_address",
            "reserve_address",
            "formula_address",
        ):
            value = getattr(self, name)
            if value:
                object.__setattr__(self, name, value.strip().lower())

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: Optional[bool] = Field(default=None, description="Force JSON (true) or console (false) log output")

    # Network
    rpc_url: str = Field(
        default="http://127.0.0.1:8545",
        description="JSON-RPC endpoint used for reads and submissions",
        validation_alias=AliasChoices("rpc_url", "eth_rpc_url", "RPC_URL", "ETH_RPC_URL"),
    )
    chain_id: int = Field(default=1, description="Chain ID the contracts live on")
    request_timeout_seconds: int = Field(default=30, description="RPC request timeout")

    # Account performing the conversion (signing happens in the node/wallet)
    account_address: str = Field(default="", description="Converting account address")

    # Contracts
    market_maker_address: str = Field(default="", description="Bonding curve market maker")
    bonded_token_address: str = Field(default="", description="Bonded token contract")
    collateral_token_address: str = Field(default="", description="Collateral token contract")
    reserve_address: str = Field(default="", description="Reserve holding the collateral balance")
    formula_address: str = Field(default="", description="On-chain Bancor formula contract")

    # Tokens
    collateral_symbol: str = Field(default="ANT", description="Collateral token symbol")
    collateral_decimals: int = Field(default=18, ge=0, le=77, description="Collateral token decimals")
    bonded_symbol: str = Field(default="ANJ", description="Bonded token symbol")
    bonded_decimals: int = Field(default=18, ge=0, le=77, description="Bonded token decimals")

    # Quote policy
    slippage_pct: int = Field(
        default=1,
        ge=0,
        le=100,
        description="Slippage tolerance applied to the tribute-adjusted estimate",
    )
    quote_retry_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Delay before retrying a failed price read",
    )
    use_onchain_formula: bool = Field(
        default=True,
        description="Evaluate the curve with the formula contract instead of locally",
    )

    # Execution
    plan_display_delay_seconds: float = Field(
        default=0.9,
        ge=0,
        description="Pause between plan construction and first publication (0 for headless)",
    )
    receipt_poll_seconds: float = Field(default=2.0, gt=0, description="Receipt polling interval")
    receipt_timeout_seconds: int = Field(default=300, ge=1, description="Max wait for the order to be mined")
    buy_order_gas_limit: int = Field(default=650_000, description="Gas limit for buy orders")
    sell_order_gas_limit: int = Field(default=850_000, description="Gas limit for sell orders")

    @property
    def has_account(self) -> bool:
        return bool(self.account_address)

    @property
    def has_contracts(self) -> bool:
        return all(
            (
                self.market_maker_address,
                self.bonded_token_address,
                self.collateral_token_address,
                self.reserve_address,
            )
        )


# Global settings instance
settings = Settings()

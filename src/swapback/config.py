"""Application configuration using pydantic-settings.

Chain endpoints, token addresses and the custodial wallet are all read from
the environment (or a local .env file).
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/swapback.db",
        description="Database connection URL",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug mode")

    # ======================
    # API
    # ======================
    api_enabled: bool = Field(default=True, description="Serve the read-only swap API")
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=3000, description="API server port")

    # ======================
    # Source chain (Optimism)
    # ======================
    source_rpc_url: str = Field(
        default="https://mainnet.optimism.io", description="Optimism RPC URL"
    )
    source_token_address: str = Field(
        default="0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85",
        description="USDC contract on Optimism",
    )
    listener_address: str = Field(
        default="0x123c058C58102a4eE0E24a3c7F0Cee2590e1c0f4",
        description="Address that receives USDC",
    )
    genesis_block: int = Field(
        default=116103990, description="First block considered by the recovery scan"
    )

    # ======================
    # Target chain (Arbitrum)
    # ======================
    target_rpc_url: str = Field(
        default="https://arb1.arbitrum.io/rpc", description="Arbitrum RPC URL"
    )
    target_chain_id: int = Field(default=42161, description="Arbitrum chain ID")
    payout_token_address: str = Field(
        default="0x912CE59144191C1204E64559FE8253a0e49E6548",
        description="ARB contract on Arbitrum",
    )

    # ======================
    # Custodial wallet
    # ======================
    payout_private_key: Optional[str] = Field(
        default=None, description="Hex private key of the payout wallet"
    )
    wallet_seed_phrase: Optional[str] = Field(
        default=None, description="Seed phrase used when no private key is set (BIP-44 index 0)"
    )

    # ======================
    # Pricing
    # ======================
    coingecko_api_url: str = Field(
        default="https://api.coingecko.com/api/v3", description="CoinGecko API base URL"
    )
    coingecko_coin_id: str = Field(default="arbitrum", description="CoinGecko ID of the payout asset")
    coingecko_api_key: str = Field(default="", description="CoinGecko demo API key")

    # ======================
    # Timeouts and scheduling
    # ======================
    rpc_timeout_seconds: float = Field(default=30.0, description="Per-call RPC timeout")
    price_timeout_seconds: float = Field(default=15.0, description="Per-call price API timeout")
    confirmation_timeout_seconds: float = Field(
        default=180.0, description="Maximum wait for a payout receipt"
    )
    confirmation_poll_seconds: float = Field(default=2.0, description="Receipt polling interval")
    watcher_poll_seconds: float = Field(default=4.0, description="Seconds between head polls")
    max_block_range: int = Field(default=2000, description="Maximum blocks per eth_getLogs call")
    recovery_concurrency: int = Field(
        default=3, description="Parallel existence checks during recovery"
    )
    reclaim_interval_seconds: int = Field(
        default=120, description="Seconds between failed-attempt sweeps"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def has_wallet(self) -> bool:
        """Check if a payout key or seed phrase is configured."""
        if self.payout_private_key:
            return True
        return bool(self.wallet_seed_phrase and len(self.wallet_seed_phrase.split()) >= 12)

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "database_url": self._redact_url(self.database_url),
            "wallet_configured": self.has_wallet,
            "source": {
                "rpc": self._redact_url(self.source_rpc_url),
                "token": self.source_token_address,
                "listener": self.listener_address,
                "genesis_block": self.genesis_block,
            },
            "target": {
                "rpc": self._redact_url(self.target_rpc_url),
                "chain_id": self.target_chain_id,
                "token": self.payout_token_address,
            },
            "pricing": {
                "api": self.coingecko_api_url,
                "coin": self.coingecko_coin_id,
                "api_key": "***" if self.coingecko_api_key else "(not set)",
            },
            "schedule": {
                "watcher_poll_seconds": self.watcher_poll_seconds,
                "reclaim_interval_seconds": self.reclaim_interval_seconds,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact credentials embedded in a URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

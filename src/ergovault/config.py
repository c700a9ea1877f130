"""Application configuration using pydantic-settings.

Values are read from environment variables (or a local .env file) so the
engine can be pointed at a different explorer or database without code changes.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/ergovault.db",
        description="Database connection URL",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")
    network: str = Field(default="mainnet", description="Ergo network: mainnet or testnet")

    # ======================
    # Chain / price endpoints
    # ======================
    explorer_api_url: str = Field(
        default="https://api.ergoplatform.com", description="Ergo explorer API base URL"
    )
    market_rates_url: str = Field(
        default="https://api.spectrum.fi/v1/price-tracking/markets",
        description="DEX market endpoint used for token rates in ERG",
    )
    price_api_url: str = Field(
        default="https://api.coingecko.com/api/v3", description="CoinGecko API base URL"
    )
    price_currency: str = Field(default="usd", description="Fiat currency for ERG price")
    http_timeout: float = Field(default=15.0, description="HTTP timeout in seconds")
    used_address_concurrency: int = Field(
        default=5, description="Parallel explorer requests while checking address usage"
    )

    # ======================
    # Wallet engine
    # ======================
    gap_limit: int = Field(
        default=20, description="Consecutive unused addresses tolerated while scanning"
    )
    signing_header_count: int = Field(
        default=10, description="Number of recent block headers bound into a signing context"
    )
    wallet_lock_timeout: float = Field(
        default=30.0, description="Seconds to wait for a per-wallet operation lock"
    )

    # ======================
    # Encryption
    # ======================
    mnemonic_cipher: str = Field(
        default="legacy",
        description="Cipher for newly stored mnemonics: legacy (CryptoJS AES) or fernet",
    )
    kdf_iterations: int = Field(
        default=100000, description="PBKDF2 iterations for the fernet mnemonic cipher"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_testnet(self) -> bool:
        return self.network.lower() == "testnet"

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "network": self.network,
            "database_url": self._redact_url(self.database_url),
            "explorer_api_url": self.explorer_api_url,
            "market_rates_url": self.market_rates_url,
            "price_api_url": self.price_api_url,
            "engine": {
                "gap_limit": self.gap_limit,
                "signing_header_count": self.signing_header_count,
                "wallet_lock_timeout": self.wallet_lock_timeout,
            },
            "mnemonic_cipher": self.mnemonic_cipher,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
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

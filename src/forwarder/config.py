"""Application configuration using pydantic-settings.

Settings are loaded once at startup and passed by reference into every
component. The model is frozen, so no component can mutate thresholds
or endpoints at runtime.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from forwarder.units import sol_to_lamports


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ======================
    # Runtime
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=3443, description="API server port")
    log_level: Optional[str] = Field(
        default=None, description="Log level override (DEBUG when debug is set, else INFO)"
    )

    # ======================
    # Archive
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/forwarder.db",
        description="Archive database connection URL",
    )

    # ======================
    # Ledger
    # ======================
    solana_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", description="Solana HTTP RPC URL"
    )
    solana_ws_url: str = Field(
        default="wss://api.mainnet-beta.solana.com", description="Solana websocket URL"
    )
    rpc_rate_limit_every: float = Field(
        default=1.0, description="Seconds between RPC token refills"
    )
    rpc_rate_limit_burst: int = Field(default=5, description="RPC burst size")
    dry_run: bool = Field(default=True, description="Use the simulated ledger (no real transactions)")

    # ======================
    # Forwarder
    # ======================
    forward_address: str = Field(default="", description="Treasury address receiving sweeps")
    min_forward: Decimal = Field(
        default=Decimal("0.01"), description="Minimum payment amount in SOL"
    )
    slippage_tolerance: Decimal = Field(
        default=Decimal("0.05"), description="Fraction below desired still counted as paid in full"
    )
    ignore_threshold: Decimal = Field(
        default=Decimal("0.02"), description="Fraction of desired below which transfers are noise"
    )
    payment_window_minutes: int = Field(default=30, description="Minutes a session stays open")
    simulate_sweeps: bool = Field(default=False, description="Simulate sweeps before submitting")

    # ======================
    # Keys
    # ======================
    wallet_dir: str = Field(default="./wal", description="Directory for disposable key slots")
    master_key: Optional[str] = Field(
        default=None, description="Fernet key for encrypting key slots at rest"
    )

    # ======================
    # Callbacks
    # ======================
    allow_local_callbacks: bool = Field(default=False, description="Allow loopback callback hosts")
    callback_dns_check: bool = Field(
        default=False, description="Resolve callback hosts and reject local addresses"
    )
    webhook_timeout: float = Field(default=10.0, description="Callback request timeout (seconds)")
    webhook_secret: Optional[str] = Field(default=None, description="HMAC secret for callbacks")

    # ======================
    # Reaper
    # ======================
    reaper_enabled: bool = Field(default=True, description="Re-check expired session wallets")
    reaper_interval_seconds: int = Field(default=300, description="Seconds between reaper runs")
    reaper_grace_minutes: int = Field(
        default=60, description="Minutes after expiry before an empty wallet is discarded"
    )
    session_retention_minutes: int = Field(
        default=60, description="Minutes after expiry a finished session stays queryable"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def min_forward_lamports(self) -> int:
        """Minimum payment amount in lamports."""
        return sol_to_lamports(self.min_forward)

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "dry_run": self.dry_run,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "ledger": {
                "rpc": self.solana_rpc_url,
                "ws": self.solana_ws_url,
                "rate_limit_every": self.rpc_rate_limit_every,
                "rate_limit_burst": self.rpc_rate_limit_burst,
            },
            "forwarder": {
                "forward_address": self.forward_address or "(not set)",
                "min_forward": str(self.min_forward),
                "slippage_tolerance": str(self.slippage_tolerance),
                "ignore_threshold": str(self.ignore_threshold),
                "payment_window_minutes": self.payment_window_minutes,
            },
            "keys": {
                "wallet_dir": self.wallet_dir,
                "encrypted": bool(self.master_key),
            },
            "webhook_secret": "***" if self.webhook_secret else "(not set)",
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

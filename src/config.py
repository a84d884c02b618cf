"""
MK Volume Bot Configuration Management
Uses pydantic-settings for type-safe environment variable loading
"""

from typing import Literal
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from solders.pubkey import Pubkey

DEFAULT_TREASURY_ADDRESS = "6WgiZL5Aggq2XvTb4BJDkDh81nSmfjb9FTh66EkPKP1F"

Commitment = Literal["processed", "confirmed", "finalized"]


def _validate_address(v: str) -> str:
    try:
        Pubkey.from_string(v)
    except ValueError as e:
        raise ValueError(f"Invalid Solana address: {v}") from e
    return v


class PaymentConfig(BaseSettings):
    """Configuration for the client-side payment flow"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True
    )

    # Destination of every plan purchase
    treasury_address: str = Field(
        default=DEFAULT_TREASURY_ADDRESS,
        description="Treasury wallet receiving payment transfers"
    )

    # RPC Configuration (tried in order)
    rpc_endpoints: list[str] = Field(
        default=[
            "https://api.mainnet-beta.solana.com",
            "https://solana-api.projectserum.com",
            "https://rpc.ankr.com/solana",
        ],
        description="Ordered list of Solana RPC endpoints"
    )
    rpc_probe_timeout: float = Field(default=5.0, description="Liveness probe timeout in seconds")
    rpc_request_timeout: float = Field(default=30.0, description="Timeout for a single RPC request")
    commitment: Commitment = Field(default="confirmed")

    # Confirmation
    confirmation_timeout: float = Field(default=60.0, description="Upper bound on confirmation wait")
    confirmation_poll_interval: float = Field(default=1.0)

    # Fees and balance checks
    estimated_fee_lamports: int = Field(default=5000, ge=0, description="Fee reserved on top of the plan price")
    fresh_balance_check: bool = Field(default=True, description="Re-query balance right before building the transfer")

    # Backend Recorder
    backend_url: str = Field(default="http://localhost:8000", description="URL of the recording backend")
    backend_timeout: float = Field(default=30.0)

    # Local wallet (CLI only)
    wallet_secret_key: str = Field(default="", description="Base58 keypair secret for the local wallet")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="text")

    @field_validator("treasury_address")
    @classmethod
    def validate_treasury_address(cls, v):
        return _validate_address(v)

    @field_validator("rpc_endpoints")
    @classmethod
    def validate_rpc_endpoints(cls, v):
        endpoints = [url.strip() for url in v if url.strip()]
        if not endpoints:
            raise ValueError("At least one RPC endpoint must be configured")
        return endpoints


class BackendConfig(BaseSettings):
    """Configuration for the purchase recording backend"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True
    )

    # Server Configuration
    backend_host: str = Field(default="0.0.0.0", description="Host to bind the server to")
    backend_port: int = Field(default=8000, description="Port to bind the server to")

    # Verification
    treasury_address: str = Field(default=DEFAULT_TREASURY_ADDRESS)
    rpc_url: str = Field(default="https://api.mainnet-beta.solana.com")
    rpc_request_timeout: float = Field(default=30.0)
    verify_transactions: bool = Field(
        default=True,
        description="Check the submitted signature on-chain before recording"
    )
    verify_commitment: Commitment = Field(
        default="confirmed",
        description="Commitment the transaction is looked up at, no stricter than the client's"
    )
    verify_attempts: int = Field(default=3, ge=1, description="Lookups before a signature counts as missing")
    verify_retry_delay: float = Field(default=1.0, ge=0)

    # Processing
    processing_delay_seconds: float = Field(default=1.0, ge=0)
    rate_limit: str = Field(default="10/minute")

    # CORS Configuration
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "text"] = Field(default="json")

    # Development
    debug: bool = Field(default=False)
    reload: bool = Field(default=False)

    @field_validator("treasury_address")
    @classmethod
    def validate_treasury_address(cls, v):
        return _validate_address(v)


# Singleton instances
_payment_config: PaymentConfig | None = None
_backend_config: BackendConfig | None = None


def get_payment_config() -> PaymentConfig:
    """Get or create payment configuration singleton"""
    global _payment_config
    if _payment_config is None:
        _payment_config = PaymentConfig()
    return _payment_config


def get_backend_config() -> BackendConfig:
    """Get or create backend configuration singleton"""
    global _backend_config
    if _backend_config is None:
        _backend_config = BackendConfig()
    return _backend_config

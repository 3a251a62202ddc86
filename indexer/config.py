"""Configuration management for the GSD Hub indexer."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()

DEFAULT_PROGRAM_ID = "Gn3kafdEiBZ51T5ewMTtXLUDYzECk87kPwxDAjspqYhw"
NOOP_PROGRAM_ID = "noopb9bkMVfRPU8AsbpTUg8AQkHtKwMYZiFUjNRtMmV"
SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


@dataclass
class Config:
    """Indexer configuration."""

    # Required
    db_url: str

    # Solana settings
    program_id: str = DEFAULT_PROGRAM_ID
    noop_program_id: str = NOOP_PROGRAM_ID
    rpc_url: str = "https://api.mainnet-beta.solana.com"
    treasury_address: Optional[str] = None
    usdc_mint: str = USDC_MINT
    log_level: str = "INFO"

    # Webhook settings
    webhook_auth: Optional[str] = None
    webhook_host: str = "0.0.0.0"
    webhook_port: int = 8080

    # RabbitMQ settings
    rabbitmq_host: str = "localhost"
    rabbitmq_port: int = 5672
    rabbitmq_user: str = "guest"
    rabbitmq_password: str = "guest"
    rabbitmq_vhost: str = "/"
    rabbitmq_exchange: str = "solana_notifications"
    rabbitmq_prefetch_count: int = 10

    # Consumer settings
    consumer_workers: int = 4
    max_retries: int = 3

    # Governance settings
    vote_timelock_seconds: int = 604800  # 7 days

    # Review settings
    confidence_threshold: int = 6000
    min_reviewers: int = 3
    max_consecutive_reviews: int = 3

    # Buy-and-burn settings
    jupiter_api_base: str = "https://api.jup.ag/swap/v1"
    jupiter_api_key: Optional[str] = None
    gsd_mint: Optional[str] = None
    slippage_bps: int = 150
    burn_authority_keypair: Optional[str] = None
    burn_authority_keypair_path: Optional[str] = None
    confirm_timeout_seconds: int = 60

    # Backfill settings
    backfill_batch_size: int = 15
    backfill_delay_seconds: float = 240.0

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        db_url = os.getenv("DB_URL")
        if not db_url:
            raise ValueError("DB_URL environment variable is required")

        return cls(
            db_url=db_url,
            # Solana settings
            program_id=os.getenv("PROGRAM_ID", DEFAULT_PROGRAM_ID),
            noop_program_id=os.getenv("NOOP_PROGRAM_ID", NOOP_PROGRAM_ID),
            rpc_url=os.getenv("RPC_URL", "https://api.mainnet-beta.solana.com"),
            treasury_address=os.getenv("TREASURY_ADDRESS") or None,
            usdc_mint=os.getenv("USDC_MINT", USDC_MINT),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            # Webhook settings
            webhook_auth=os.getenv("WEBHOOK_AUTH") or None,
            webhook_host=os.getenv("WEBHOOK_HOST", "0.0.0.0"),
            webhook_port=int(os.getenv("WEBHOOK_PORT", "8080")),
            # RabbitMQ settings
            rabbitmq_host=os.getenv("RABBITMQ_HOST", "localhost"),
            rabbitmq_port=int(os.getenv("RABBITMQ_PORT", "5672")),
            rabbitmq_user=os.getenv("RABBITMQ_USER", "guest"),
            rabbitmq_password=os.getenv("RABBITMQ_PASSWORD", "guest"),
            rabbitmq_vhost=os.getenv("RABBITMQ_VHOST", "/"),
            rabbitmq_exchange=os.getenv("RABBITMQ_EXCHANGE", "solana_notifications"),
            rabbitmq_prefetch_count=int(os.getenv("RABBITMQ_PREFETCH_COUNT", "10")),
            # Consumer settings
            consumer_workers=int(os.getenv("CONSUMER_WORKERS", "4")),
            max_retries=int(os.getenv("MAX_RETRIES", "3")),
            # Governance settings
            vote_timelock_seconds=int(os.getenv("VOTE_TIMELOCK_SECONDS", "604800")),
            # Review settings
            confidence_threshold=int(os.getenv("CONFIDENCE_THRESHOLD", "6000")),
            min_reviewers=int(os.getenv("MIN_REVIEWERS", "3")),
            max_consecutive_reviews=int(os.getenv("MAX_CONSECUTIVE_REVIEWS", "3")),
            # Buy-and-burn settings
            jupiter_api_base=os.getenv("JUPITER_API_BASE", "https://api.jup.ag/swap/v1"),
            jupiter_api_key=os.getenv("JUPITER_API_KEY") or None,
            gsd_mint=os.getenv("GSD_MINT") or None,
            slippage_bps=int(os.getenv("SLIPPAGE_BPS", "150")),
            burn_authority_keypair=os.getenv("BURN_AUTHORITY_KEYPAIR") or None,
            burn_authority_keypair_path=os.getenv("BURN_AUTHORITY_KEYPAIR_PATH") or None,
            confirm_timeout_seconds=int(os.getenv("CONFIRM_TIMEOUT_SECONDS", "60")),
            # Backfill settings
            backfill_batch_size=int(os.getenv("BACKFILL_BATCH_SIZE", "15")),
            backfill_delay_seconds=float(os.getenv("BACKFILL_DELAY_SECONDS", "240")),
        )

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.db_url:
            raise ValueError("db_url is required")
        if not self.program_id:
            raise ValueError("program_id is required")
        if self.webhook_port <= 0:
            raise ValueError("webhook_port must be > 0")
        if self.rabbitmq_port <= 0:
            raise ValueError("rabbitmq_port must be > 0")
        if self.rabbitmq_prefetch_count <= 0:
            raise ValueError("rabbitmq_prefetch_count must be > 0")
        if self.consumer_workers <= 0:
            raise ValueError("consumer_workers must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.vote_timelock_seconds < 0:
            raise ValueError("vote_timelock_seconds must be >= 0")
        if not 0 <= self.confidence_threshold <= 10000:
            raise ValueError("confidence_threshold must be between 0 and 10000")
        if self.min_reviewers <= 0:
            raise ValueError("min_reviewers must be > 0")
        if self.slippage_bps < 0:
            raise ValueError("slippage_bps must be >= 0")
        if self.backfill_batch_size <= 0:
            raise ValueError("backfill_batch_size must be > 0")
        if self.backfill_delay_seconds < 0:
            raise ValueError("backfill_delay_seconds must be >= 0")

    def get_rabbitmq_connection_params(self) -> dict:
        """Get RabbitMQ connection parameters as a dictionary."""
        return {
            "host": self.rabbitmq_host,
            "port": self.rabbitmq_port,
            "user": self.rabbitmq_user,
            "password": self.rabbitmq_password,
            "vhost": self.rabbitmq_vhost,
        }

    @property
    def burn_enabled(self) -> bool:
        """Whether buy-and-burn settlement has everything it needs."""
        has_authority = bool(self.burn_authority_keypair or self.burn_authority_keypair_path)
        return has_authority and bool(self.jupiter_api_key) and bool(self.gsd_mint)

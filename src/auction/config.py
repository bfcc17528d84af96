"""
Auction Service Configuration

Connection settings for the ledger database, the shared highest-bid cache,
the expiry sweep, outbound email and the HTTP boundary.
"""

import os
import logging
from typing import Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes", "on")


@dataclass
class AuctionSettings:
    """
    Auction service settings.

    Attributes:
        database_path: SQLite file holding auctions and bids
        redis_url: Shared highest-bid store (None = in-process cache only)
        redis_timeout: Socket timeout for every Redis call, in seconds
        redis_required: Refuse to start without Redis (multi-process mode)
        sweep_interval: Seconds between expiry sweeps
        bid_history_limit: Maximum page size for bid history
        smtp_host: Outbound mail relay (None disables winner emails)
        mail_from: Sender address for winner emails
    """

    database_path: str = ".state/auctions.db"
    redis_url: Optional[str] = None
    redis_timeout: float = 0.5
    redis_required: bool = False
    sweep_interval: float = 30.0
    bid_history_limit: int = 20
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True
    mail_from: Optional[str] = None
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    otlp_endpoint: Optional[str] = None
    log_level: str = "INFO"

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.smtp_host and self.mail_from)

    @classmethod
    def from_env(cls) -> "AuctionSettings":
        """Create settings from environment variables"""
        settings = cls(
            database_path=os.getenv("AUCTION_DB_PATH", ".state/auctions.db"),
            redis_url=os.getenv("REDIS_URL") or None,
            redis_timeout=float(os.getenv("REDIS_TIMEOUT_SECONDS", "0.5")),
            redis_required=_env_flag("REDIS_REQUIRED", "false"),
            sweep_interval=float(os.getenv("EXPIRY_SWEEP_INTERVAL", "30.0")),
            bid_history_limit=int(os.getenv("BID_HISTORY_LIMIT", "20")),
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            smtp_username=os.getenv("SMTP_USERNAME") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            smtp_use_tls=_env_flag("SMTP_USE_TLS", "true"),
            mail_from=os.getenv("MAIL_FROM") or None,
            api_host=os.getenv("AUCTION_API_HOST", "0.0.0.0"),
            api_port=int(os.getenv("AUCTION_API_PORT", "8000")),
            otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Reject settings the service cannot run with"""
        if self.redis_timeout <= 0:
            raise ValueError(f"redis_timeout must be positive: {self.redis_timeout}")
        if self.sweep_interval <= 0:
            raise ValueError(f"sweep_interval must be positive: {self.sweep_interval}")
        if self.bid_history_limit <= 0:
            raise ValueError(f"bid_history_limit must be positive: {self.bid_history_limit}")
        if self.redis_required and not self.redis_url:
            raise ValueError("REDIS_REQUIRED is set but REDIS_URL is empty")
        if self.smtp_host and not self.mail_from:
            logger.warning("SMTP_HOST set without MAIL_FROM; winner emails disabled")

    def describe(self) -> dict:
        """Settings summary safe to expose on the debug endpoint"""
        return {
            "database_path": self.database_path,
            "redis_url": "set" if self.redis_url else "not set",
            "redis_required": self.redis_required,
            "sweep_interval": self.sweep_interval,
            "bid_history_limit": self.bid_history_limit,
            "notifications_enabled": self.notifications_enabled,
        }

"""
Tests for auction service settings.

Verifies environment parsing, defaults, validation and the debug summary.
"""

import sys
from pathlib import Path
from unittest.mock import patch

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from auction.config import AuctionSettings


class TestDefaults:
    """Test defaults without environment"""

    def test_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            settings = AuctionSettings.from_env()

        assert settings.database_path == ".state/auctions.db"
        assert settings.redis_url is None
        assert settings.redis_required is False
        assert settings.redis_timeout == 0.5
        assert settings.sweep_interval == 30.0
        assert settings.bid_history_limit == 20
        assert settings.notifications_enabled is False
        assert settings.api_port == 8000


class TestFromEnv:
    """Test environment parsing"""

    def test_reads_environment(self):
        env = {
            "AUCTION_DB_PATH": "/tmp/a.db",
            "REDIS_URL": "redis://cache:6379/1",
            "REDIS_TIMEOUT_SECONDS": "0.2",
            "REDIS_REQUIRED": "yes",
            "EXPIRY_SWEEP_INTERVAL": "5",
            "BID_HISTORY_LIMIT": "50",
            "SMTP_HOST": "smtp.example.com",
            "SMTP_PORT": "2525",
            "SMTP_USE_TLS": "off",
            "MAIL_FROM": "auctions@example.com",
            "LOG_LEVEL": "debug",
        }
        with patch.dict("os.environ", env, clear=True):
            settings = AuctionSettings.from_env()

        assert settings.database_path == "/tmp/a.db"
        assert settings.redis_url == "redis://cache:6379/1"
        assert settings.redis_timeout == 0.2
        assert settings.redis_required is True
        assert settings.sweep_interval == 5.0
        assert settings.bid_history_limit == 50
        assert settings.smtp_port == 2525
        assert settings.smtp_use_tls is False
        assert settings.notifications_enabled is True
        assert settings.log_level == "DEBUG"

    @pytest.mark.parametrize("value", ["true", "1", "YES", "on"])
    def test_truthy_flags(self, value):
        env = {"REDIS_URL": "redis://cache:6379/0", "REDIS_REQUIRED": value}
        with patch.dict("os.environ", env, clear=True):
            assert AuctionSettings.from_env().redis_required is True

    def test_empty_redis_url_means_unset(self):
        with patch.dict("os.environ", {"REDIS_URL": ""}, clear=True):
            assert AuctionSettings.from_env().redis_url is None


class TestValidation:
    """Test settings the service cannot run with"""

    def test_required_redis_needs_url(self):
        with patch.dict("os.environ", {"REDIS_REQUIRED": "true"}, clear=True):
            with pytest.raises(ValueError):
                AuctionSettings.from_env()

    @pytest.mark.parametrize(
        "field, value",
        [("redis_timeout", 0), ("sweep_interval", -1), ("bid_history_limit", 0)],
    )
    def test_non_positive_values(self, field, value):
        settings = AuctionSettings(**{field: value})
        with pytest.raises(ValueError):
            settings.validate()

    def test_smtp_without_sender_disables_mail(self, caplog):
        settings = AuctionSettings(smtp_host="smtp.example.com")
        settings.validate()

        assert settings.notifications_enabled is False
        assert "MAIL_FROM" in caplog.text

    def test_describe_hides_redis_url(self):
        summary = AuctionSettings(redis_url="redis://:secret@cache:6379/0").describe()

        assert summary["redis_url"] == "set"
        assert "secret" not in str(summary)

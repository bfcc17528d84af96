"""
Tests for the Highest-Bid Cache.

Validates both backends, the compare-and-set contract, transparent
fallback to the in-process mirror when Redis fails, and the factory's
fallback flag.
"""

import sys
import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from unittest.mock import patch

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
import redis

from auction.errors import StoreUnavailableError
from auction.models import HighestBidRecord, Party
from cache.highest_bid import (
    HighestBidCache,
    MemoryHighestBidBackend,
    RedisHighestBidBackend,
    cache_key,
    get_highest_bid_cache,
)


AT = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
ALICE = Party(name="Alice", contact="alice@example.com")
BOB = Party(name="Bob", contact="bob@example.com")


class FakeRedis:
    """In-memory stand-in for redis.Redis with a switchable outage"""

    def __init__(self):
        self.data = {}
        self.down = False

    def _check(self):
        if self.down:
            raise redis.ConnectionError("Connection refused")

    def ping(self):
        self._check()
        return True

    def get(self, key):
        self._check()
        return self.data.get(key)

    def set(self, key, value):
        self._check()
        self.data[key] = value
        return True

    def delete(self, key):
        self._check()
        return 1 if self.data.pop(key, None) is not None else 0

    def register_script(self, source):
        def script(keys, args):
            self._check()
            existing = self.data.get(keys[0])
            if existing is not None and Decimal(json.loads(existing)["amount"]) > Decimal(args[0]):
                return 0
            self.data[keys[0]] = args[1]
            return 1

        return script


def record(amount, bidder=ALICE):
    return HighestBidRecord(amount=Decimal(amount), bidder=bidder, timestamp=AT)


class TestMemoryBackend:
    """Test the in-process backend"""

    def test_get_after_set(self):
        backend = MemoryHighestBidBackend()
        backend.set("a1", record("12.00", BOB))

        assert backend.get("a1") == record("12.00", BOB)
        assert backend.get("a2") is None

    def test_compare_and_set_fails_when_advanced(self):
        backend = MemoryHighestBidBackend()
        backend.set("a1", record("12.00"))

        assert backend.compare_and_set("a1", Decimal("11.00"), record("13.00", BOB)) is False
        assert backend.get("a1").amount == Decimal("12.00")

        assert backend.compare_and_set("a1", Decimal("12.00"), record("13.00", BOB)) is True
        assert backend.get("a1") == record("13.00", BOB)

    def test_compare_and_set_on_cold_key(self):
        backend = MemoryHighestBidBackend()
        assert backend.compare_and_set("a1", Decimal("10.00"), record("11.00")) is True

    def test_delete(self):
        backend = MemoryHighestBidBackend()
        backend.set("a1", record("12.00"))

        backend.delete("a1")
        backend.delete("missing")

        assert backend.get("a1") is None
        assert backend.size() == 0


class TestRedisBackend:
    """Test the Redis backend against a fake client"""

    def test_key_format(self):
        assert cache_key("abc") == "auction:abc:highest_bid"

    def test_round_trip(self):
        client = FakeRedis()
        backend = RedisHighestBidBackend(client)
        backend.set("a1", record("12.00", BOB))

        assert "auction:a1:highest_bid" in client.data
        assert backend.get("a1") == record("12.00", BOB)

    def test_compare_and_set(self):
        backend = RedisHighestBidBackend(FakeRedis())
        backend.set("a1", record("12.00"))

        assert backend.compare_and_set("a1", Decimal("11.00"), record("12.50", BOB)) is False
        assert backend.compare_and_set("a1", Decimal("12.00"), record("13.00", BOB)) is True
        assert backend.get("a1").bidder == BOB

    def test_errors_become_store_unavailable(self):
        client = FakeRedis()
        client.down = True
        backend = RedisHighestBidBackend(client)

        with pytest.raises(StoreUnavailableError) as exc_info:
            backend.get("a1")
        assert exc_info.value.backend == "redis"

        with pytest.raises(StoreUnavailableError):
            backend.ping()

        with pytest.raises(StoreUnavailableError):
            backend.delete("a1")

    def test_delete(self):
        client = FakeRedis()
        backend = RedisHighestBidBackend(client)
        backend.set("a1", record("12.00"))

        backend.delete("a1")

        assert client.data == {}
        assert backend.get("a1") is None


class TestCacheRoundTrip:
    """get after set returns the last-set amount and bidder in both modes"""

    @pytest.mark.parametrize("mode", ["memory", "redis"])
    def test_round_trip(self, mode):
        remote = RedisHighestBidBackend(FakeRedis()) if mode == "redis" else None
        cache = HighestBidCache(remote=remote)

        cache.set("a1", Decimal("10.00"), None, AT)
        cache.set("a1", Decimal("15.00"), BOB, AT)

        current = cache.get("a1")
        assert current.amount == Decimal("15.00")
        assert current.bidder == BOB
        assert cache.backend == mode

    def test_remote_record_preferred_when_higher(self):
        """Another process advanced the shared record"""
        client = FakeRedis()
        cache = HighestBidCache(remote=RedisHighestBidBackend(client))
        cache.set("a1", Decimal("11.00"), ALICE, AT)

        client.data[cache_key("a1")] = json.dumps(record("14.00", BOB).to_dict())

        assert cache.get("a1").amount == Decimal("14.00")


class TestCacheFallback:
    """Redis outages degrade to the in-process mirror without raising"""

    def test_get_and_set_survive_outage(self, caplog):
        client = FakeRedis()
        cache = HighestBidCache(remote=RedisHighestBidBackend(client))
        cache.set("a1", Decimal("11.00"), ALICE, AT)

        client.down = True
        with caplog.at_level("WARNING"):
            assert cache.get("a1").amount == Decimal("11.00")
        assert cache.degraded is True
        assert "falling back to in-process cache" in caplog.text

        cache.set("a1", Decimal("12.00"), BOB, AT)
        assert cache.get("a1").bidder == BOB

    def test_compare_and_set_falls_back(self):
        client = FakeRedis()
        cache = HighestBidCache(remote=RedisHighestBidBackend(client))
        cache.set("a1", Decimal("10.00"), None, AT)

        client.down = True
        assert cache.compare_and_set("a1", Decimal("10.00"), record("11.00")) is True
        assert cache.compare_and_set("a1", Decimal("10.00"), record("11.50", BOB)) is False
        assert cache.get("a1").amount == Decimal("11.00")

    def test_recovers_when_redis_returns(self):
        client = FakeRedis()
        cache = HighestBidCache(remote=RedisHighestBidBackend(client))

        client.down = True
        cache.set("a1", Decimal("11.00"), ALICE, AT)
        assert cache.degraded is True

        client.down = False
        cache.get("a1")
        assert cache.degraded is False
        # Local record wins over the missing remote one
        assert cache.get("a1").amount == Decimal("11.00")

    def test_status(self):
        cache = HighestBidCache()
        cache.set("a1", Decimal("10.00"), None, AT)

        assert cache.status() == {
            "backend": "memory",
            "remote_configured": False,
            "degraded": False,
            "local_size": 1,
        }

    def test_delete_evicts_both_copies(self):
        client = FakeRedis()
        cache = HighestBidCache(remote=RedisHighestBidBackend(client))
        cache.set("a1", Decimal("11.00"), ALICE, AT)

        cache.delete("a1")

        assert client.data == {}
        assert cache.local.size() == 0
        assert cache.get("a1") is None

    def test_delete_during_outage_still_evicts_local(self):
        client = FakeRedis()
        cache = HighestBidCache(remote=RedisHighestBidBackend(client))
        cache.set("a1", Decimal("11.00"), ALICE, AT)

        client.down = True
        cache.delete("a1")

        assert cache.degraded is True
        assert cache.local.size() == 0


class TestCacheFactory:
    """Factory returns (cache, is_remote)"""

    def test_no_url_uses_memory(self):
        cache, is_remote = get_highest_bid_cache(None)

        assert is_remote is False
        assert cache.backend == "memory"

    def test_unreachable_redis_falls_back(self):
        client = FakeRedis()
        client.down = True

        with patch("cache.highest_bid.redis.from_url", return_value=client):
            cache, is_remote = get_highest_bid_cache("redis://localhost:6379/0")

        assert is_remote is False, "Should indicate fallback mode"
        assert cache.remote is None

    def test_unreachable_redis_raises_when_required(self):
        client = FakeRedis()
        client.down = True

        with patch("cache.highest_bid.redis.from_url", return_value=client):
            with pytest.raises(StoreUnavailableError):
                get_highest_bid_cache("redis://localhost:6379/0", required=True)

    def test_required_without_url_raises(self):
        with pytest.raises(StoreUnavailableError):
            get_highest_bid_cache(None, required=True)

    def test_reachable_redis(self):
        with patch("cache.highest_bid.redis.from_url", return_value=FakeRedis()) as from_url:
            cache, is_remote = get_highest_bid_cache("redis://cache:6379/0", timeout=0.25)

        assert is_remote is True
        assert cache.backend == "redis"
        assert from_url.call_args.kwargs["socket_timeout"] == 0.25


@pytest.mark.redis
class TestLiveRedis:
    """Runs only with --redis-url"""

    def test_round_trip_and_cas(self, redis_url):
        backend = RedisHighestBidBackend.from_url(redis_url)
        auction_id = f"test-{uuid.uuid4().hex}"
        try:
            backend.set(auction_id, record("10.00", None))
            assert backend.compare_and_set(auction_id, Decimal("10.00"), record("11.00")) is True
            assert backend.compare_and_set(auction_id, Decimal("10.00"), record("11.50", BOB)) is False
            assert backend.get(auction_id) == record("11.00")
        finally:
            backend.redis.delete(cache_key(auction_id))

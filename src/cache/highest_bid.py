"""
Highest-Bid Cache: fast-path pointer to the current highest bid per auction.

Two backends with identical behaviour:
- Redis (shared across processes, atomic compare-and-set via Lua)
- In-process dictionary (used alone, or as the fallback mirror)

HighestBidCache always writes the local mirror and degrades to it whenever
Redis fails; callers never see a cache failure.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional, Tuple

import redis

from auction.errors import StoreUnavailableError
from auction.models import HighestBidRecord, Party, utc_now
from observability.metrics import metrics_collector

logger = logging.getLogger(__name__)


def cache_key(auction_id: str) -> str:
    return f"auction:{auction_id}:highest_bid"


class HighestBidBackend(ABC):
    """Storage contract shared by both backends"""

    name = "abstract"

    @abstractmethod
    def get(self, auction_id: str) -> Optional[HighestBidRecord]:
        """Return the stored record or None when absent"""

    @abstractmethod
    def set(self, auction_id: str, record: HighestBidRecord) -> None:
        """Store the record unconditionally"""

    @abstractmethod
    def compare_and_set(
        self, auction_id: str, expected_amount: Decimal, record: HighestBidRecord
    ) -> bool:
        """
        Store the record unless the stored amount has advanced beyond
        expected_amount (the amount the caller last observed).
        """

    @abstractmethod
    def delete(self, auction_id: str) -> None:
        """Drop the record; absent keys are ignored"""


class MemoryHighestBidBackend(HighestBidBackend):
    """In-process mapping guarded by a lock"""

    name = "memory"

    def __init__(self):
        self._records: Dict[str, HighestBidRecord] = {}
        self._lock = threading.Lock()

    def get(self, auction_id: str) -> Optional[HighestBidRecord]:
        with self._lock:
            return self._records.get(auction_id)

    def set(self, auction_id: str, record: HighestBidRecord) -> None:
        with self._lock:
            self._records[auction_id] = record

    def compare_and_set(
        self, auction_id: str, expected_amount: Decimal, record: HighestBidRecord
    ) -> bool:
        with self._lock:
            current = self._records.get(auction_id)
            if current is not None and current.amount > expected_amount:
                return False
            self._records[auction_id] = record
            return True

    def delete(self, auction_id: str) -> None:
        with self._lock:
            self._records.pop(auction_id, None)

    def size(self) -> int:
        with self._lock:
            return len(self._records)


class RedisHighestBidBackend(HighestBidBackend):
    """
    Shared key-value backend.

    Every call is bounded by the client's socket timeout; any Redis error
    is raised as StoreUnavailableError.

    The Lua script compares amounts with tonumber, i.e. as doubles. Amounts
    are validated to whole cents below 10**12 (at most 14 significant
    digits), which doubles represent exactly enough to order correctly.
    """

    name = "redis"

    def __init__(self, client: "redis.Redis"):
        self.redis = client

        # Lua script for atomic compare-and-set on the highest amount
        self.cas_script = self.redis.register_script("""
            local existing = redis.call('GET', KEYS[1])
            if existing then
                local current = cjson.decode(existing)
                if tonumber(current.amount) > tonumber(ARGV[1]) then
                    return 0
                end
            end
            redis.call('SET', KEYS[1], ARGV[2])
            return 1
        """)

    @classmethod
    def from_url(cls, redis_url: str, timeout: float = 0.5) -> "RedisHighestBidBackend":
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client)

    def ping(self) -> None:
        try:
            self.redis.ping()
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Redis ping failed: {e}", self.name) from e

    def get(self, auction_id: str) -> Optional[HighestBidRecord]:
        try:
            data = self.redis.get(cache_key(auction_id))
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Redis GET failed: {e}", self.name) from e
        if not data:
            return None
        return HighestBidRecord.from_dict(json.loads(data))

    def set(self, auction_id: str, record: HighestBidRecord) -> None:
        try:
            self.redis.set(cache_key(auction_id), json.dumps(record.to_dict()))
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Redis SET failed: {e}", self.name) from e

    def compare_and_set(
        self, auction_id: str, expected_amount: Decimal, record: HighestBidRecord
    ) -> bool:
        try:
            result = self.cas_script(
                keys=[cache_key(auction_id)],
                args=[str(expected_amount), json.dumps(record.to_dict())],
            )
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Redis CAS failed: {e}", self.name) from e
        return int(result) == 1

    def delete(self, auction_id: str) -> None:
        try:
            self.redis.delete(cache_key(auction_id))
        except redis.RedisError as e:
            raise StoreUnavailableError(f"Redis DEL failed: {e}", self.name) from e


class HighestBidCache:
    """
    Highest-bid cache with transparent fallback to an in-process mirror.

    The highest amount of an auction only ever grows, so when the remote and
    local copies disagree the higher record is the fresher one.
    """

    def __init__(
        self,
        remote: Optional[HighestBidBackend] = None,
        local: Optional[MemoryHighestBidBackend] = None,
    ):
        """
        Initialize cache.

        Args:
            remote: Shared backend (None for single-process, memory only)
            local: Local mirror (created if None)
        """
        self.remote = remote
        self.local = local or MemoryHighestBidBackend()
        self.degraded = False

    @property
    def backend(self) -> str:
        return self.remote.name if self.remote is not None else self.local.name

    def get(self, auction_id: str) -> Optional[HighestBidRecord]:
        """Current highest record, or None when the cache is cold"""
        local_record = self.local.get(auction_id)
        if self.remote is None:
            return local_record

        try:
            remote_record = self.remote.get(auction_id)
        except StoreUnavailableError as e:
            self._degrade("get", e)
            return local_record

        self._recover()
        if remote_record is None:
            return local_record
        if local_record is None or remote_record.amount >= local_record.amount:
            return remote_record
        return local_record

    def set(
        self,
        auction_id: str,
        amount: Decimal,
        bidder: Optional[Party],
        timestamp: Optional[datetime] = None,
    ) -> HighestBidRecord:
        """Store a record unconditionally and return it"""
        record = HighestBidRecord(amount=amount, bidder=bidder, timestamp=timestamp or utc_now())
        self.local.set(auction_id, record)
        if self.remote is not None:
            try:
                self.remote.set(auction_id, record)
                self._recover()
            except StoreUnavailableError as e:
                self._degrade("set", e)
        return record

    def compare_and_set(
        self, auction_id: str, expected_amount: Decimal, record: HighestBidRecord
    ) -> bool:
        """
        Advance the highest record if nobody advanced it past expected_amount.

        Returns:
            False only when another writer got there first
        """
        if self.remote is not None:
            try:
                swapped = self.remote.compare_and_set(auction_id, expected_amount, record)
            except StoreUnavailableError as e:
                self._degrade("compare_and_set", e)
            else:
                self._recover()
                if swapped:
                    self.local.set(auction_id, record)
                else:
                    metrics_collector.record_cache_operation("compare_and_set", "conflict")
                return swapped

        swapped = self.local.compare_and_set(auction_id, expected_amount, record)
        if not swapped:
            metrics_collector.record_cache_operation("compare_and_set", "conflict")
        return swapped

    def delete(self, auction_id: str) -> None:
        """Evict an auction's record from both copies"""
        self.local.delete(auction_id)
        if self.remote is not None:
            try:
                self.remote.delete(auction_id)
                self._recover()
            except StoreUnavailableError as e:
                self._degrade("delete", e)

    def status(self) -> dict:
        """Connection status for the debug endpoint"""
        return {
            "backend": self.backend,
            "remote_configured": self.remote is not None,
            "degraded": self.degraded,
            "local_size": self.local.size(),
        }

    def _degrade(self, operation: str, error: Exception) -> None:
        if not self.degraded:
            logger.warning(
                f"[CACHE] {self.remote.name} unavailable during {operation}, "
                f"falling back to in-process cache: {error}"
            )
        else:
            logger.debug(f"[CACHE] {operation} served from in-process cache: {error}")
        self.degraded = True
        metrics_collector.record_cache_fallback(operation)

    def _recover(self) -> None:
        if self.degraded:
            logger.info(f"[CACHE] {self.remote.name} reachable again")
            self.degraded = False


def get_highest_bid_cache(
    redis_url: Optional[str] = None, timeout: float = 0.5, required: bool = False
) -> Tuple[HighestBidCache, bool]:
    """
    Factory function to build the highest-bid cache.

    Args:
        redis_url: Redis URL (None means in-process only)
        timeout: Socket timeout for Redis calls
        required: Raise instead of falling back when Redis is unreachable

    Returns:
        Tuple of (cache, is_remote)

    Raises:
        StoreUnavailableError: If required and Redis cannot be reached
    """
    if not redis_url:
        if required:
            raise StoreUnavailableError("Redis is required but no URL is configured", "redis")
        logger.info("[CACHE] REDIS_URL not set, using in-process highest-bid cache")
        return (HighestBidCache(), False)

    try:
        remote = RedisHighestBidBackend.from_url(redis_url, timeout=timeout)
        remote.ping()
    except (StoreUnavailableError, redis.RedisError, ValueError) as e:
        if required:
            raise StoreUnavailableError(f"Redis is required but unreachable: {e}", "redis") from e
        logger.error(
            f"[CACHE] Failed to connect to Redis: {e}. Falling back to in-process cache."
        )
        return (HighestBidCache(), False)

    logger.info("[CACHE] Using Redis-backed highest-bid cache")
    return (HighestBidCache(remote=remote), True)

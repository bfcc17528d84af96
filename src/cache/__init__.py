"""
Cache module: highest-bid pointer with Redis and in-process backends.
"""

from .highest_bid import (
    HighestBidCache,
    MemoryHighestBidBackend,
    RedisHighestBidBackend,
    get_highest_bid_cache,
)

__all__ = [
    "HighestBidCache",
    "MemoryHighestBidBackend",
    "RedisHighestBidBackend",
    "get_highest_bid_cache",
]

"""
Auction module: timed auctions, bid acceptance and closure.
"""

from .errors import (
    AuctionError,
    ValidationError,
    NotFoundError,
    AuctionClosedError,
    BidTooLowError,
    StoreUnavailableError,
)
from .models import Auction, AuctionResult, AuctionStatus, Bid, ItemMeta, Party

__all__ = [
    "AuctionError",
    "ValidationError",
    "NotFoundError",
    "AuctionClosedError",
    "BidTooLowError",
    "StoreUnavailableError",
    "Auction",
    "AuctionResult",
    "AuctionStatus",
    "Bid",
    "ItemMeta",
    "Party",
]

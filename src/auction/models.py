"""
Auction records: auctions, bids, highest-bid pointers and closure results.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional
from dataclasses import dataclass


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Default clock for the auction core"""
    return datetime.now(timezone.utc)


def to_ns(moment: datetime) -> int:
    """Convert an aware datetime to integer nanoseconds since the epoch"""
    return ((moment - EPOCH) // timedelta(microseconds=1)) * 1000


def from_ns(value: int) -> datetime:
    """Inverse of to_ns (microsecond precision)"""
    return EPOCH + timedelta(microseconds=value // 1000)


class AuctionStatus(Enum):
    """Lifecycle states. ENDED is terminal."""
    ACTIVE = "active"
    ENDED = "ended"


@dataclass(frozen=True)
class Party:
    """Seller or bidder identity (name + contact email)"""
    name: str
    contact: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "contact": self.contact}


@dataclass(frozen=True)
class ItemMeta:
    """Opaque item metadata"""
    name: str
    description: str = ""


@dataclass(frozen=True)
class AuctionResult:
    """Outcome recorded once, together with the ENDED transition"""
    auction_id: str
    item_name: str
    winner: Optional[Party]
    final_amount: Decimal
    closed_at: datetime

    @property
    def has_winner(self) -> bool:
        return self.winner is not None


@dataclass
class Auction:
    """Auction record. Only the closure transition mutates it."""
    auction_id: str
    item: ItemMeta
    starting_price: Decimal
    bid_increment: Decimal
    duration_minutes: int
    seller: Party
    start_time: datetime
    status: AuctionStatus = AuctionStatus.ACTIVE
    result: Optional[AuctionResult] = None

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)

    @property
    def is_active(self) -> bool:
        return self.status is AuctionStatus.ACTIVE

    def is_expired(self, now: datetime) -> bool:
        return now >= self.end_time

    def time_remaining(self, now: datetime) -> timedelta:
        if not self.is_active:
            return timedelta(0)
        return max(timedelta(0), self.end_time - now)


@dataclass(frozen=True)
class Bid:
    """Accepted bid. Immutable and never deleted."""
    bid_id: str
    auction_id: str
    amount: Decimal
    bidder: Party
    bid_time: datetime


@dataclass(frozen=True)
class HighestBidRecord:
    """
    Denormalized pointer to the current highest bid of one auction.

    bidder is None while no bid has been accepted; amount is then the
    starting price.
    """
    amount: Decimal
    bidder: Optional[Party]
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": str(self.amount),
            "bidder_name": self.bidder.name if self.bidder else None,
            "bidder_contact": self.bidder.contact if self.bidder else None,
            "timestamp_ns": to_ns(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HighestBidRecord":
        bidder = None
        if data.get("bidder_name") is not None:
            bidder = Party(name=data["bidder_name"], contact=data.get("bidder_contact") or "")
        return cls(
            amount=Decimal(data["amount"]),
            bidder=bidder,
            timestamp=from_ns(int(data["timestamp_ns"])),
        )


@dataclass(frozen=True)
class BidReceipt:
    """Returned to the bidder on acceptance"""
    bid: Bid
    next_minimum: Decimal


@dataclass(frozen=True)
class AuctionView:
    """Read model for the query boundary"""
    auction: Auction
    highest: HighestBidRecord
    minimum_next_bid: Decimal
    time_remaining: timedelta

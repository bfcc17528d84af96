"""
Request/response models for the auction HTTP API.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from auction.models import AuctionView, Bid, ItemMeta, Party


# Request models


class CreateAuctionRequest(BaseModel):
    """Request to create an auction"""

    item_name: str = Field(..., description="Item being sold")
    description: str = Field("", description="Free-form item description")
    starting_price: Decimal = Field(..., description="Opening price")
    bid_increment: Decimal = Field(..., description="Minimum raise over the highest bid")
    duration: int = Field(..., description="Auction length in whole minutes")
    seller_name: str = Field(..., description="Seller display name")
    seller_contact: str = Field(..., description="Seller email address")

    def item(self) -> ItemMeta:
        return ItemMeta(name=self.item_name, description=self.description or "")

    def seller(self) -> Party:
        return Party(name=self.seller_name, contact=self.seller_contact)


class PlaceBidRequest(BaseModel):
    """Request to place a bid"""

    amount: Decimal = Field(..., description="Bid amount")
    bidder_name: str = Field(..., description="Bidder display name")
    bidder_contact: str = Field(..., description="Bidder email address")

    def bidder(self) -> Party:
        return Party(name=self.bidder_name, contact=self.bidder_contact)


# Response models


class AuctionResponse(BaseModel):
    """Auction state as seen by clients"""

    auction_id: str
    item_name: str
    description: str
    starting_price: str
    bid_increment: str
    duration: int
    seller_name: str
    seller_contact: str
    start_time: datetime
    end_time: datetime
    status: str
    current_highest_bid: str
    highest_bidder: Optional[str] = None
    minimum_bid: str
    time_remaining_ms: int
    winner: Optional[str] = None

    @classmethod
    def from_view(cls, view: AuctionView) -> "AuctionResponse":
        auction = view.auction
        winner = auction.result.winner if auction.result else None
        return cls(
            auction_id=auction.auction_id,
            item_name=auction.item.name,
            description=auction.item.description,
            starting_price=str(auction.starting_price),
            bid_increment=str(auction.bid_increment),
            duration=auction.duration_minutes,
            seller_name=auction.seller.name,
            seller_contact=auction.seller.contact,
            start_time=auction.start_time,
            end_time=auction.end_time,
            status=auction.status.value,
            current_highest_bid=str(view.highest.amount),
            highest_bidder=view.highest.bidder.name if view.highest.bidder else None,
            minimum_bid=str(view.minimum_next_bid),
            time_remaining_ms=int(view.time_remaining.total_seconds() * 1000),
            winner=winner.name if winner else None,
        )


class CreateAuctionResponse(BaseModel):
    auction_id: str
    auction: AuctionResponse


class BidRecord(BaseModel):
    """Bid in history results"""

    bid_id: str
    amount: str
    bidder_name: str
    bid_time: datetime

    @classmethod
    def from_bid(cls, bid: Bid) -> "BidRecord":
        return cls(
            bid_id=bid.bid_id,
            amount=str(bid.amount),
            bidder_name=bid.bidder.name,
            bid_time=bid.bid_time,
        )


class BidHistoryResponse(BaseModel):
    auction_id: str
    bids: List[BidRecord]


class PlaceBidResponse(BaseModel):
    """Response to an accepted bid"""

    bid: BidRecord
    minimum_bid: str


class AuctionResultResponse(BaseModel):
    """Outcome of a closed auction"""

    auction_id: str
    item_name: str
    winner: Optional[str] = None
    final_amount: str
    closed_at: datetime


class ErrorResponse(BaseModel):
    """Body of every 4xx/5xx response; minimum_bid only for too-low bids"""

    error: str
    minimum_bid: Optional[str] = None

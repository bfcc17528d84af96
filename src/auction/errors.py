"""
Auction errors: every rejection the core reports to a caller.
"""

from decimal import Decimal
from typing import Optional


class AuctionError(Exception):
    """Base class for auction core errors"""


class ValidationError(AuctionError):
    """Raised when a creation or bid field is missing or invalid"""

    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class NotFoundError(AuctionError):
    """Raised when an auction id is unknown"""

    def __init__(self, auction_id: str):
        super().__init__(f"Auction not found: {auction_id}")
        self.auction_id = auction_id


class AuctionClosedError(AuctionError):
    """Raised when a bid arrives after the auction has ended"""

    def __init__(self, auction_id: str):
        super().__init__("Auction has ended")
        self.auction_id = auction_id


class BidTooLowError(AuctionError):
    """
    Raised when a bid is below the minimum acceptable amount.

    Carries the minimum so the client can resubmit a corrected bid.
    """

    def __init__(self, amount: Decimal, minimum: Decimal):
        super().__init__(f"Bid must be at least ${minimum:.2f}")
        self.amount = amount
        self.minimum = minimum


class StoreUnavailableError(AuctionError):
    """Raised when the ledger or the external cache cannot be reached"""

    def __init__(self, message: str, backend: Optional[str] = None):
        super().__init__(message)
        self.backend = backend

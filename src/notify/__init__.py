"""
Notify module: real-time fan-out and closing emails.
"""

from .fanout import AuctionClosed, BidAccepted, NotificationFanout, Subscription
from .mailer import EmailNotifier

__all__ = [
    "AuctionClosed",
    "BidAccepted",
    "NotificationFanout",
    "Subscription",
    "EmailNotifier",
]

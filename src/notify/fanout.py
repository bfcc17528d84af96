"""
Notification Fan-out: best-effort broadcast of auction state changes.

Observers subscribe to an auction's topic (auction_<id>). Delivery is
synchronous to in-process callbacks, with no retry and no replay; a
reconnecting observer re-fetches current state instead.
"""

import itertools
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Union

from auction.models import AuctionResult, Party
from observability.metrics import metrics_collector

logger = logging.getLogger(__name__)


def topic_for(auction_id: str) -> str:
    return f"auction_{auction_id}"


@dataclass(frozen=True)
class BidAccepted:
    """A new highest bid was accepted"""
    auction_id: str
    amount: Decimal
    bidder: Party
    bid_time: datetime
    next_minimum: Decimal

    kind = "newBid"

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "auctionId": self.auction_id,
            "amount": str(self.amount),
            "bidderName": self.bidder.name,
            "bidderContact": self.bidder.contact,
            "bidTime": self.bid_time.isoformat(),
            "minimumBid": str(self.next_minimum),
        }


@dataclass(frozen=True)
class AuctionClosed:
    """The auction ended and its result is final"""
    result: AuctionResult

    kind = "auctionEnded"

    @property
    def auction_id(self) -> str:
        return self.result.auction_id

    def to_message(self) -> Dict[str, Any]:
        winner = self.result.winner
        return {
            "type": self.kind,
            "auctionId": self.result.auction_id,
            "winner": winner.name if winner else None,
            "finalAmount": str(self.result.final_amount),
            "itemName": self.result.item_name,
        }


AuctionEvent = Union[BidAccepted, AuctionClosed]
Observer = Callable[[AuctionEvent], None]


@dataclass(frozen=True)
class Subscription:
    """Handle returned by subscribe(); pass it back to unsubscribe()"""
    subscription_id: int
    topic: str


class NotificationFanout:
    """
    Per-auction topic registry.

    Observers must not block: they run on the thread that changed the
    auction state.
    """

    def __init__(self):
        self._observers: Dict[str, Dict[int, Observer]] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def subscribe(self, auction_id: str, callback: Observer) -> Subscription:
        topic = topic_for(auction_id)
        with self._lock:
            subscription = Subscription(subscription_id=next(self._ids), topic=topic)
            self._observers.setdefault(topic, {})[subscription.subscription_id] = callback
        logger.debug(f"[FANOUT] Subscriber {subscription.subscription_id} joined {topic}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        with self._lock:
            observers = self._observers.get(subscription.topic)
            if not observers or subscription.subscription_id not in observers:
                return False
            del observers[subscription.subscription_id]
            if not observers:
                del self._observers[subscription.topic]
        logger.debug(f"[FANOUT] Subscriber {subscription.subscription_id} left {subscription.topic}")
        return True

    def subscriber_count(self, auction_id: str) -> int:
        with self._lock:
            return len(self._observers.get(topic_for(auction_id), {}))

    def broadcast(self, auction_id: str, event: AuctionEvent) -> int:
        """
        Deliver event to every current observer of the auction.

        Returns:
            Number of observers that received the event
        """
        topic = topic_for(auction_id)
        with self._lock:
            observers: List[Observer] = list(self._observers.get(topic, {}).values())

        delivered = 0
        for callback in observers:
            try:
                callback(event)
                delivered += 1
            except Exception as e:
                logger.warning(f"[FANOUT] Observer on {topic} failed for {event.kind}: {e}")

        metrics_collector.record_broadcast(event.kind)
        logger.debug(f"[FANOUT] {event.kind} on {topic} delivered to {delivered}/{len(observers)}")
        return delivered

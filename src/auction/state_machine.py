"""
Auction State Machine: lifecycle and bid acceptance for timed auctions.

Every submit_bid and close_auction on one auction runs under that
auction's lock, so the accept/reject decision, the ledger write and the
cache update never interleave. Different auctions proceed in parallel.
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from decimal import Decimal
from typing import Callable, Dict, Iterator, List, Optional

from auction.errors import (
    AuctionClosedError,
    AuctionError,
    BidTooLowError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from auction.models import (
    Auction,
    AuctionResult,
    AuctionStatus,
    AuctionView,
    Bid,
    BidReceipt,
    HighestBidRecord,
    ItemMeta,
    Party,
    utc_now,
)
from auction.validation import (
    validate_duration,
    validate_item,
    validate_money,
    validate_party,
)
from cache.highest_bid import HighestBidCache
from notify.fanout import AuctionClosed, BidAccepted, NotificationFanout
from observability.metrics import bid_latency, close_latency, metrics_collector, track_time
from observability.tracing import create_span
from storage.ledger_store import BidLedgerStore

logger = logging.getLogger(__name__)


_REJECTION_REASONS = {
    ValidationError: "invalid",
    NotFoundError: "not_found",
    AuctionClosedError: "closed",
    BidTooLowError: "too_low",
    StoreUnavailableError: "store_unavailable",
}


class _LockEntry:
    """Per-auction lock plus the number of threads holding or awaiting it"""

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class AuctionStateMachine:
    """
    Owns the active -> ended lifecycle and the accept/reject decision.

    Responsibilities:
    - Create auctions and arm their expiry
    - Accept or reject bids against the Highest-Bid Cache
    - Close auctions exactly once and determine the winner
    - Close expired auctions lazily on every read and write path
    """

    def __init__(
        self,
        ledger: BidLedgerStore,
        cache: HighestBidCache,
        fanout: Optional[NotificationFanout] = None,
        notifier=None,
        scheduler=None,
        clock: Optional[Callable] = None,
        bid_history_limit: int = 20,
    ):
        """
        Initialize state machine.

        Args:
            ledger: Durable auction and bid store (ground truth)
            cache: Highest-bid cache (fast path)
            fanout: Observer broadcast (created if None)
            notifier: Out-of-band winner notifier (optional)
            scheduler: Expiry scheduler (optional, see attach_scheduler)
            clock: Returns the current aware UTC datetime
            bid_history_limit: Maximum bid history page size
        """
        self.ledger = ledger
        self.cache = cache
        self.fanout = fanout or NotificationFanout()
        self.notifier = notifier
        self.scheduler = scheduler
        self.clock = clock or utc_now
        self.bid_history_limit = bid_history_limit

        self._locks: Dict[str, _LockEntry] = {}
        self._locks_guard = threading.Lock()

    def attach_scheduler(self, scheduler) -> None:
        """Attach the expiry scheduler once it holds a reference to us"""
        self.scheduler = scheduler

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_auction(
        self,
        item: ItemMeta,
        starting_price,
        bid_increment,
        duration,
        seller: Party,
    ) -> str:
        """
        Create an active auction.

        Args:
            item: Item name and description
            starting_price: Positive decimal
            bid_increment: Positive decimal
            duration: Positive whole minutes
            seller: Seller name and contact

        Returns:
            New auction id

        Raises:
            ValidationError: If a field is missing or invalid
        """
        auction = Auction(
            auction_id=uuid.uuid4().hex,
            item=validate_item(item),
            starting_price=validate_money("starting_price", starting_price),
            bid_increment=validate_money("bid_increment", bid_increment),
            duration_minutes=validate_duration(duration),
            seller=validate_party("seller", seller),
            start_time=self.clock(),
        )

        self.ledger.insert_auction(auction)
        self.cache.set(auction.auction_id, auction.starting_price, None, auction.start_time)

        if self.scheduler is not None:
            self.scheduler.arm(auction.auction_id, auction.end_time)

        metrics_collector.record_auction_created()
        logger.info(
            f"[AUCTION] Created auction {auction.auction_id} for {auction.item.name} "
            f"(start ${auction.starting_price}, increment ${auction.bid_increment}, "
            f"{auction.duration_minutes} min)"
        )
        return auction.auction_id

    @track_time(bid_latency)
    def submit_bid(self, auction_id: str, amount, bidder: Party) -> BidReceipt:
        """
        Submit a bid.

        Args:
            auction_id: Target auction
            amount: Bid amount
            bidder: Bidder name and contact

        Returns:
            BidReceipt with the accepted bid and the next minimum

        Raises:
            ValidationError: If amount or bidder is invalid
            NotFoundError: If the auction is unknown
            AuctionClosedError: If the auction ended (a late bid closes it first)
            BidTooLowError: If amount is below highest bid + increment
            StoreUnavailableError: If the ledger write fails
        """
        with create_span("auction.submit_bid", {"auction_id": auction_id}):
            try:
                amount = validate_money("amount", amount)
                bidder = validate_party("bidder", bidder)

                with self._serialized(auction_id):
                    receipt = self._submit_bid_locked(auction_id, amount, bidder)
            except AuctionError as e:
                metrics_collector.record_bid_rejected(_REJECTION_REASONS.get(type(e), "other"))
                raise

        metrics_collector.record_bid_accepted()
        return receipt

    @track_time(close_latency)
    def close_auction(self, auction_id: str, trigger: str = "manual") -> AuctionResult:
        """
        Close an auction and determine the winner. Idempotent.

        Args:
            auction_id: Auction to close
            trigger: What drove the closure (timer, sweep, bid, read, manual)

        Returns:
            The recorded result (the same result on every call)

        Raises:
            NotFoundError: If the auction is unknown
        """
        with create_span("auction.close", {"auction_id": auction_id, "trigger": trigger}):
            with self._serialized(auction_id):
                auction = self._require(auction_id)
                if not auction.is_active:
                    return auction.result
                return self._close_locked(auction, trigger)

    def close_expired(self) -> List[AuctionResult]:
        """Close every active auction whose end time has passed"""
        results = []
        for auction_id in self.ledger.list_expired_active(self.clock()):
            try:
                results.append(self.close_auction(auction_id, trigger="sweep"))
            except StoreUnavailableError as e:
                logger.error(f"[AUCTION] Sweep could not close {auction_id}: {e}")
        return results

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_auction(self, auction_id: str) -> AuctionView:
        """
        Current auction state with live highest bid and time remaining.

        Raises:
            NotFoundError: If the auction is unknown
        """
        auction = self._require(auction_id)
        if auction.is_active and auction.is_expired(self.clock()):
            self.close_auction(auction_id, trigger="read")
            auction = self._require(auction_id)
        return self._view(auction)

    def list_active_auctions(self) -> List[AuctionView]:
        """Active auctions, newest first; silently expired ones are closed and excluded"""
        views = []
        for auction in self.ledger.list_auctions(AuctionStatus.ACTIVE):
            if auction.is_expired(self.clock()):
                self.close_auction(auction.auction_id, trigger="read")
                continue
            views.append(self._view(auction))
        return views

    def list_bids(self, auction_id: str, limit: Optional[int] = None) -> List[Bid]:
        """
        Bid history, most recent first.

        Raises:
            NotFoundError: If the auction is unknown
        """
        self._require(auction_id)
        page = self.bid_history_limit if limit is None else max(1, min(limit, self.bid_history_limit))
        return self.ledger.list_bids(auction_id, page)

    # ------------------------------------------------------------------
    # Serialized sections (caller holds the auction lock)
    # ------------------------------------------------------------------

    def _submit_bid_locked(self, auction_id: str, amount: Decimal, bidder: Party) -> BidReceipt:
        auction = self._require(auction_id)
        if not auction.is_active:
            raise AuctionClosedError(auction_id)

        now = self.clock()
        if auction.is_expired(now):
            logger.info(f"[AUCTION] Late bid on {auction_id}, closing auction")
            self._close_locked(auction, trigger="bid")
            raise AuctionClosedError(auction_id)

        current = self._current_highest(auction)
        minimum = current.amount + auction.bid_increment
        if amount < minimum:
            raise BidTooLowError(amount, minimum)

        bid = Bid(
            bid_id=uuid.uuid4().hex,
            auction_id=auction_id,
            amount=amount,
            bidder=bidder,
            bid_time=now,
        )
        record = HighestBidRecord(amount=amount, bidder=bidder, timestamp=now)
        published = []

        def publish_highest():
            # Another process advanced the highest bid since we read it
            if not self.cache.compare_and_set(auction_id, current.amount, record):
                refreshed = self.cache.get(auction_id) or current
                raise BidTooLowError(amount, refreshed.amount + auction.bid_increment)
            published.append(record)

        try:
            self.ledger.append_bid(bid, before_commit=publish_highest)
        except StoreUnavailableError:
            if published:
                # Commit failed after the swap; drop the record so the next
                # read rebuilds it from the ledger
                self.cache.delete(auction_id)
            logger.error(f"[AUCTION] Ledger write failed for bid on {auction_id}")
            raise

        next_minimum = amount + auction.bid_increment
        logger.info(
            f"[AUCTION] Accepted bid ${amount} from {bidder.name} on {auction_id} "
            f"(next minimum ${next_minimum})"
        )

        self.fanout.broadcast(
            auction_id,
            BidAccepted(
                auction_id=auction_id,
                amount=amount,
                bidder=bidder,
                bid_time=now,
                next_minimum=next_minimum,
            ),
        )
        return BidReceipt(bid=bid, next_minimum=next_minimum)

    def _close_locked(self, auction: Auction, trigger: str) -> AuctionResult:
        # The ledger picks the winner from its own last bid in the same
        # statement that ends the auction; no bid can be appended after it.
        closed_by_us = self.ledger.mark_ended(auction.auction_id, self.clock())
        stored = self._require(auction.auction_id)
        self.cache.delete(auction.auction_id)
        if not closed_by_us:
            # Closed by another process between our read and write
            return stored.result

        result = stored.result
        auction.status = AuctionStatus.ENDED
        auction.result = result

        if self.scheduler is not None:
            self.scheduler.cancel(auction.auction_id)

        metrics_collector.record_auction_closed(result.has_winner, trigger)
        if result.has_winner:
            logger.info(
                f"[AUCTION] Auction {auction.auction_id} ended ({trigger}). "
                f"Winner: {result.winner.name} with ${result.final_amount}"
            )
        else:
            logger.info(f"[AUCTION] Auction {auction.auction_id} ended ({trigger}) with no bids")

        self._announce_closure(auction, result)
        return result

    def _announce_closure(self, auction: Auction, result: AuctionResult) -> None:
        """Closure is final regardless of what happens here"""
        self.fanout.broadcast(auction.auction_id, AuctionClosed(result=result))

        if not result.has_winner or self.notifier is None:
            return
        try:
            self.notifier.notify_auction_closed(auction, result)
        except Exception:
            metrics_collector.record_notification_failed("email")
            logger.exception(f"[AUCTION] Winner notification failed for {auction.auction_id}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _current_highest(self, auction: Auction) -> HighestBidRecord:
        """
        Cached highest bid, rebuilt from the ledger when the cache is cold.

        Caller holds the auction lock. The rebuilt record goes in through
        compare-and-set, so a newer record written meanwhile (by another
        process) is kept rather than lowered.
        """
        record = self.cache.get(auction.auction_id)
        if record is not None:
            metrics_collector.record_cache_operation("get", "hit")
            return record

        metrics_collector.record_cache_operation("get", "rebuilt")
        last_bid = self.ledger.get_last_bid(auction.auction_id)
        if last_bid is None:
            record = HighestBidRecord(
                amount=auction.starting_price, bidder=None, timestamp=auction.start_time
            )
        else:
            record = HighestBidRecord(
                amount=last_bid.amount, bidder=last_bid.bidder, timestamp=last_bid.bid_time
            )

        if not self.cache.compare_and_set(auction.auction_id, record.amount, record):
            newer = self.cache.get(auction.auction_id)
            if newer is not None:
                return newer
        logger.info(f"[AUCTION] Rebuilt highest bid for {auction.auction_id} from ledger: ${record.amount}")
        return record

    def _view(self, auction: Auction) -> AuctionView:
        """Caller must not hold the auction lock"""
        highest = None
        if auction.is_active:
            highest = self.cache.get(auction.auction_id)
            if highest is None:
                with self._serialized(auction.auction_id):
                    # Re-read: the auction may have closed and been evicted
                    auction = self._require(auction.auction_id)
                    if auction.is_active:
                        highest = self._current_highest(auction)
        if highest is None:
            result = auction.result
            highest = HighestBidRecord(
                amount=result.final_amount, bidder=result.winner, timestamp=result.closed_at
            )
        return AuctionView(
            auction=auction,
            highest=highest,
            minimum_next_bid=highest.amount + auction.bid_increment,
            time_remaining=auction.time_remaining(self.clock()),
        )

    def _require(self, auction_id: str) -> Auction:
        auction = self.ledger.get_auction(auction_id)
        if auction is None:
            raise NotFoundError(auction_id)
        return auction

    @contextmanager
    def _serialized(self, auction_id: str) -> Iterator[None]:
        """
        Hold the auction's lock for the duration of the block.

        Entries are reference counted and dropped once no thread holds or
        waits on them, so the registry only contains auctions in use.
        """
        with self._locks_guard:
            entry = self._locks.get(auction_id)
            if entry is None:
                entry = self._locks[auction_id] = _LockEntry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[auction_id]

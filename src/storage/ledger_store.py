"""
Bid Ledger Store: auctions and append-only bids with SQLite persistence.
"""

import sqlite3
import threading
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, List, Optional, Union

from auction.errors import AuctionClosedError, NotFoundError, StoreUnavailableError
from auction.models import (
    Auction,
    AuctionResult,
    AuctionStatus,
    Bid,
    ItemMeta,
    Party,
    from_ns,
    to_ns,
)


_AUCTION_COLUMNS = """
    auction_id, item_name, description, starting_price, bid_increment,
    duration_minutes, seller_name, seller_contact, start_time_ns, status,
    winner_name, winner_contact, final_amount, closed_at_ns
"""

_BID_COLUMNS = "bid_id, auction_id, amount, bidder_name, bidder_contact, bid_time_ns"


class BidLedgerStore:
    """
    Durable record of auctions and accepted bids.

    Bids are append-only. The auction row is written once at creation and
    updated once by the closure transition. Thread-safe writes; every
    sqlite3 failure surfaces as StoreUnavailableError.
    """

    def __init__(self, db_path: Union[Path, str], timeout: float = 5.0):
        """
        Initialize ledger store.

        Args:
            db_path: Path to SQLite database (":memory:" for tests)
            timeout: Seconds to wait on a locked database before failing
        """
        self.db_path = db_path
        try:
            self.conn = sqlite3.connect(
                str(db_path), timeout=timeout, check_same_thread=False
            )
            self.conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open ledger {db_path}: {e}", "sqlite") from e
        self.lock = threading.Lock()
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema"""
        with self.lock, self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS auctions (
                    auction_id TEXT PRIMARY KEY,
                    item_name TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    starting_price TEXT NOT NULL,
                    bid_increment TEXT NOT NULL,
                    duration_minutes INTEGER NOT NULL CHECK(duration_minutes > 0),
                    seller_name TEXT NOT NULL,
                    seller_contact TEXT NOT NULL,
                    start_time_ns INTEGER NOT NULL,
                    end_time_ns INTEGER NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'ended')),
                    winner_name TEXT,
                    winner_contact TEXT,
                    final_amount TEXT,
                    closed_at_ns INTEGER
                )
            """
            )

            # Append-only bid history
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bids (
                    bid_id TEXT PRIMARY KEY,
                    auction_id TEXT NOT NULL REFERENCES auctions(auction_id),
                    amount TEXT NOT NULL,
                    bidder_name TEXT NOT NULL,
                    bidder_contact TEXT NOT NULL,
                    bid_time_ns INTEGER NOT NULL
                )
            """
            )

            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_bids_auction ON bids(auction_id, bid_time_ns)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_auctions_expiry ON auctions(status, end_time_ns)"
            )

    def insert_auction(self, auction: Auction) -> None:
        """Persist a newly created auction"""
        try:
            with self.lock, self.conn:
                self.conn.execute(
                    """
                    INSERT INTO auctions (
                        auction_id, item_name, description, starting_price, bid_increment,
                        duration_minutes, seller_name, seller_contact, start_time_ns,
                        end_time_ns, status
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        auction.auction_id,
                        auction.item.name,
                        auction.item.description,
                        str(auction.starting_price),
                        str(auction.bid_increment),
                        auction.duration_minutes,
                        auction.seller.name,
                        auction.seller.contact,
                        to_ns(auction.start_time),
                        to_ns(auction.end_time),
                        auction.status.value,
                    ),
                )
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Failed to persist auction: {e}", "sqlite") from e

    def get_auction(self, auction_id: str) -> Optional[Auction]:
        """
        Get auction by id.

        Returns:
            Auction or None if not found
        """
        row = self._fetchone(
            f"SELECT {_AUCTION_COLUMNS} FROM auctions WHERE auction_id = ?",
            (auction_id,),
        )
        return self._row_to_auction(row) if row else None

    def list_auctions(self, status: Optional[AuctionStatus] = None) -> List[Auction]:
        """List auctions, newest first, optionally filtered by status"""
        if status is None:
            rows = self._fetchall(
                f"SELECT {_AUCTION_COLUMNS} FROM auctions ORDER BY start_time_ns DESC"
            )
        else:
            rows = self._fetchall(
                f"""
                SELECT {_AUCTION_COLUMNS} FROM auctions
                WHERE status = ?
                ORDER BY start_time_ns DESC
            """,
                (status.value,),
            )
        return [self._row_to_auction(row) for row in rows]

    def list_expired_active(self, now) -> List[str]:
        """Ids of active auctions whose end time is at or before now"""
        rows = self._fetchall(
            """
            SELECT auction_id FROM auctions
            WHERE status = 'active' AND end_time_ns <= ?
            ORDER BY end_time_ns
        """,
            (to_ns(now),),
        )
        return [row[0] for row in rows]

    def append_bid(self, bid: Bid, before_commit: Optional[Callable[[], None]] = None) -> None:
        """
        Append an accepted bid, only while its auction is still active.

        The status check and the insert are one statement, so a bid from
        any process either lands before the closure UPDATE (and is seen by
        it) or is refused.

        Args:
            bid: Bid to record
            before_commit: Runs inside the transaction after the insert; an
                exception from it rolls the insert back and propagates

        Raises:
            NotFoundError: If the auction does not exist
            AuctionClosedError: If the auction has already ended
            StoreUnavailableError: If the write fails
        """
        with self.lock:
            try:
                with self.conn:
                    cursor = self.conn.execute(
                        f"""
                        INSERT INTO bids ({_BID_COLUMNS})
                        SELECT ?, ?, ?, ?, ?, ?
                        WHERE EXISTS (
                            SELECT 1 FROM auctions WHERE auction_id = ? AND status = 'active'
                        )
                    """,
                        (
                            bid.bid_id,
                            bid.auction_id,
                            str(bid.amount),
                            bid.bidder.name,
                            bid.bidder.contact,
                            to_ns(bid.bid_time),
                            bid.auction_id,
                        ),
                    )
                    if cursor.rowcount == 0:
                        exists = self.conn.execute(
                            "SELECT 1 FROM auctions WHERE auction_id = ?", (bid.auction_id,)
                        ).fetchone()
                        if exists is None:
                            raise NotFoundError(bid.auction_id)
                        raise AuctionClosedError(bid.auction_id)
                    if before_commit is not None:
                        before_commit()
            except sqlite3.Error as e:
                raise StoreUnavailableError(f"Failed to record bid: {e}", "sqlite") from e

    def get_last_bid(self, auction_id: str) -> Optional[Bid]:
        """
        Most recently accepted bid, which is also the highest.

        Accepted amounts strictly increase in insertion order, so the last
        row is the ground truth for rebuilding a cold cache.
        """
        row = self._fetchone(
            f"""
            SELECT {_BID_COLUMNS} FROM bids
            WHERE auction_id = ?
            ORDER BY rowid DESC
            LIMIT 1
        """,
            (auction_id,),
        )
        return self._row_to_bid(row) if row else None

    def list_bids(self, auction_id: str, limit: int = 20) -> List[Bid]:
        """Bid history, most recent first"""
        rows = self._fetchall(
            f"""
            SELECT {_BID_COLUMNS} FROM bids
            WHERE auction_id = ?
            ORDER BY bid_time_ns DESC, rowid DESC
            LIMIT ?
        """,
            (auction_id, limit),
        )
        return [self._row_to_bid(row) for row in rows]

    def count_bids(self, auction_id: str) -> int:
        row = self._fetchone("SELECT COUNT(*) FROM bids WHERE auction_id = ?", (auction_id,))
        return row[0] if row else 0

    def mark_ended(self, auction_id: str, closed_at: datetime) -> bool:
        """
        Record the closure transition and its result in one statement.

        The winner and final amount come from the last recorded bid (the
        starting price when there is none), read by the same UPDATE that
        flips the status. Read the stored result back with get_auction.

        Returns:
            True if this call moved the auction from active to ended,
            False if it was already ended (or unknown)
        """
        try:
            with self.lock, self.conn:
                cursor = self.conn.execute(
                    """
                    UPDATE auctions
                    SET status = 'ended',
                        winner_name = (
                            SELECT bidder_name FROM bids
                            WHERE bids.auction_id = auctions.auction_id
                            ORDER BY bids.rowid DESC LIMIT 1
                        ),
                        winner_contact = (
                            SELECT bidder_contact FROM bids
                            WHERE bids.auction_id = auctions.auction_id
                            ORDER BY bids.rowid DESC LIMIT 1
                        ),
                        final_amount = COALESCE(
                            (
                                SELECT amount FROM bids
                                WHERE bids.auction_id = auctions.auction_id
                                ORDER BY bids.rowid DESC LIMIT 1
                            ),
                            starting_price
                        ),
                        closed_at_ns = ?
                    WHERE auction_id = ? AND status = 'active'
                """,
                    (to_ns(closed_at), auction_id),
                )
                return cursor.rowcount == 1
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Failed to close auction: {e}", "sqlite") from e

    def close(self) -> None:
        with self.lock:
            self.conn.close()

    def _fetchone(self, sql: str, params: tuple = ()):
        try:
            with self.lock:
                return self.conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Ledger read failed: {e}", "sqlite") from e

    def _fetchall(self, sql: str, params: tuple = ()):
        try:
            with self.lock:
                return self.conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Ledger read failed: {e}", "sqlite") from e

    @staticmethod
    def _row_to_auction(row) -> Auction:
        (
            auction_id, item_name, description, starting_price, bid_increment,
            duration_minutes, seller_name, seller_contact, start_time_ns, status,
            winner_name, winner_contact, final_amount, closed_at_ns,
        ) = row

        auction = Auction(
            auction_id=auction_id,
            item=ItemMeta(name=item_name, description=description),
            starting_price=Decimal(starting_price),
            bid_increment=Decimal(bid_increment),
            duration_minutes=duration_minutes,
            seller=Party(name=seller_name, contact=seller_contact),
            start_time=from_ns(start_time_ns),
            status=AuctionStatus(status),
        )
        if auction.status is AuctionStatus.ENDED:
            winner = None
            if winner_name is not None:
                winner = Party(name=winner_name, contact=winner_contact)
            auction.result = AuctionResult(
                auction_id=auction_id,
                item_name=item_name,
                winner=winner,
                final_amount=Decimal(final_amount),
                closed_at=from_ns(closed_at_ns),
            )
        return auction

    @staticmethod
    def _row_to_bid(row) -> Bid:
        bid_id, auction_id, amount, bidder_name, bidder_contact, bid_time_ns = row
        return Bid(
            bid_id=bid_id,
            auction_id=auction_id,
            amount=Decimal(amount),
            bidder=Party(name=bidder_name, contact=bidder_contact),
            bid_time=from_ns(bid_time_ns),
        )

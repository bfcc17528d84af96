"""
Tests for the Bid Ledger Store.

Verifies auction persistence, append-only bids, ordering, the
before-commit hook, the single closure transition and refusal of
bids on ended auctions.
"""

import sys
import os
import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import pytest
from auction.errors import AuctionClosedError, NotFoundError, StoreUnavailableError
from auction.models import (
    Auction,
    AuctionResult,
    AuctionStatus,
    Bid,
    ItemMeta,
    Party,
)
from storage.ledger_store import BidLedgerStore


START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
SELLER = Party(name="Sam", contact="sam@example.com")
ALICE = Party(name="Alice", contact="alice@example.com")
BOB = Party(name="Bob", contact="bob@example.com")


def make_auction(auction_id="a1", start=START, minutes=5):
    return Auction(
        auction_id=auction_id,
        item=ItemMeta(name="Lamp", description="Brass"),
        starting_price=Decimal("10.00"),
        bid_increment=Decimal("1.00"),
        duration_minutes=minutes,
        seller=SELLER,
        start_time=start,
    )


def make_bid(bid_id, amount, bidder=ALICE, auction_id="a1", at=START):
    return Bid(
        bid_id=bid_id,
        auction_id=auction_id,
        amount=Decimal(amount),
        bidder=bidder,
        bid_time=at,
    )


@pytest.fixture
def ledger():
    """Create temporary ledger for testing"""
    db_file = tempfile.NamedTemporaryFile(delete=False, suffix='.db')
    db_file.close()

    store = BidLedgerStore(Path(db_file.name))

    yield store

    store.close()
    os.unlink(db_file.name)


class TestAuctionRecords:
    """Test auction persistence"""

    def test_insert_and_get(self, ledger):
        ledger.insert_auction(make_auction())

        auction = ledger.get_auction("a1")

        assert auction is not None
        assert auction.item == ItemMeta(name="Lamp", description="Brass")
        assert auction.starting_price == Decimal("10.00")
        assert auction.bid_increment == Decimal("1.00")
        assert auction.seller == SELLER
        assert auction.start_time == START
        assert auction.end_time == START + timedelta(minutes=5)
        assert auction.status is AuctionStatus.ACTIVE
        assert auction.result is None

    def test_get_unknown_returns_none(self, ledger):
        assert ledger.get_auction("missing") is None

    def test_duplicate_id_is_store_error(self, ledger):
        ledger.insert_auction(make_auction())

        with pytest.raises(StoreUnavailableError):
            ledger.insert_auction(make_auction())

    def test_list_newest_first_with_status_filter(self, ledger):
        ledger.insert_auction(make_auction("old", start=START))
        ledger.insert_auction(make_auction("new", start=START + timedelta(minutes=1)))
        ledger.mark_ended("old", START + timedelta(minutes=5))

        assert [a.auction_id for a in ledger.list_auctions()] == ["new", "old"]
        assert [a.auction_id for a in ledger.list_auctions(AuctionStatus.ACTIVE)] == ["new"]
        assert [a.auction_id for a in ledger.list_auctions(AuctionStatus.ENDED)] == ["old"]

    def test_list_expired_active(self, ledger):
        ledger.insert_auction(make_auction("short", minutes=1))
        ledger.insert_auction(make_auction("long", minutes=60))

        now = START + timedelta(minutes=1)
        assert ledger.list_expired_active(now) == ["short"]
        assert ledger.list_expired_active(START) == []


class TestBids:
    """Test append-only bid history"""

    def test_bids_most_recent_first(self, ledger):
        ledger.insert_auction(make_auction())
        ledger.append_bid(make_bid("b1", "11.00", ALICE, at=START + timedelta(seconds=1)))
        ledger.append_bid(make_bid("b2", "12.00", BOB, at=START + timedelta(seconds=2)))
        ledger.append_bid(make_bid("b3", "13.00", ALICE, at=START + timedelta(seconds=3)))

        bids = ledger.list_bids("a1")

        assert [b.bid_id for b in bids] == ["b3", "b2", "b1"]
        assert bids[1].bidder == BOB
        assert ledger.count_bids("a1") == 3

    def test_list_bids_respects_limit(self, ledger):
        ledger.insert_auction(make_auction())
        for i in range(5):
            ledger.append_bid(make_bid(f"b{i}", str(11 + i), at=START + timedelta(seconds=i)))

        assert [b.bid_id for b in ledger.list_bids("a1", limit=2)] == ["b4", "b3"]

    def test_last_bid_breaks_time_ties_by_arrival(self, ledger):
        ledger.insert_auction(make_auction())
        ledger.append_bid(make_bid("b1", "11.00", ALICE))
        ledger.append_bid(make_bid("b2", "12.00", BOB))

        last = ledger.get_last_bid("a1")

        assert last.bid_id == "b2"
        assert last.amount == Decimal("12.00")

    def test_last_bid_none_without_bids(self, ledger):
        ledger.insert_auction(make_auction())
        assert ledger.get_last_bid("a1") is None

    def test_bid_requires_existing_auction(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.append_bid(make_bid("b1", "11.00", auction_id="nope"))

    def test_before_commit_runs_inside_transaction(self, ledger):
        ledger.insert_auction(make_auction())
        seen = []

        def hook():
            # Insert is visible on the same connection before commit
            seen.append(ledger.conn.execute("SELECT COUNT(*) FROM bids").fetchone()[0])

        ledger.append_bid(make_bid("b1", "11.00"), before_commit=hook)

        assert seen == [1]
        assert ledger.count_bids("a1") == 1

    def test_before_commit_failure_rolls_back(self, ledger):
        ledger.insert_auction(make_auction())

        def veto():
            raise RuntimeError("cache moved")

        with pytest.raises(RuntimeError):
            ledger.append_bid(make_bid("b1", "11.00"), before_commit=veto)

        assert ledger.count_bids("a1") == 0

    def test_closed_connection_is_store_error(self, ledger):
        ledger.insert_auction(make_auction())
        ledger.conn.close()
        ledger.conn = sqlite3.connect(":memory:", check_same_thread=False)

        # Fresh connection has no schema
        with pytest.raises(StoreUnavailableError):
            ledger.append_bid(make_bid("b1", "11.00"))


class TestClosure:
    """Test the closure transition"""

    def test_mark_ended_once(self, ledger):
        ledger.insert_auction(make_auction())
        ledger.append_bid(make_bid("b1", "11.00", ALICE))
        ledger.append_bid(make_bid("b2", "12.00", BOB))
        closed_at = START + timedelta(minutes=5)

        assert ledger.mark_ended("a1", closed_at) is True
        assert ledger.mark_ended("a1", closed_at + timedelta(minutes=1)) is False

        auction = ledger.get_auction("a1")
        assert auction.status is AuctionStatus.ENDED
        assert auction.result == AuctionResult("a1", "Lamp", BOB, Decimal("12.00"), closed_at)

    def test_unsold_result_has_no_winner(self, ledger):
        ledger.insert_auction(make_auction())
        ledger.mark_ended("a1", START)

        result = ledger.get_auction("a1").result

        assert result.winner is None
        assert result.has_winner is False
        assert result.final_amount == Decimal("10.00")

    def test_mark_unknown_auction(self, ledger):
        assert ledger.mark_ended("nope", START) is False

    def test_bid_after_closure_is_refused(self, ledger):
        ledger.insert_auction(make_auction())
        ledger.append_bid(make_bid("b1", "11.00", ALICE))
        ledger.mark_ended("a1", START + timedelta(minutes=5))
        hook_calls = []

        with pytest.raises(AuctionClosedError):
            ledger.append_bid(make_bid("b2", "50.00", BOB), before_commit=lambda: hook_calls.append(1))

        assert hook_calls == []
        assert ledger.count_bids("a1") == 1
        assert ledger.get_auction("a1").result.winner == ALICE

    def test_closure_sees_bids_from_another_connection(self, ledger):
        """Two stores on one file behave like two processes"""
        other = BidLedgerStore(ledger.db_path)
        try:
            ledger.insert_auction(make_auction())
            other.append_bid(make_bid("b1", "11.00", ALICE))
            other.append_bid(make_bid("b2", "12.00", BOB))

            assert ledger.mark_ended("a1", START + timedelta(minutes=1)) is True

            with pytest.raises(AuctionClosedError):
                other.append_bid(make_bid("b3", "13.00", ALICE))
        finally:
            other.close()

        result = ledger.get_auction("a1").result
        assert result.winner == BOB
        assert result.final_amount == Decimal("12.00")

"""
Storage module: durable ledger of auctions and bids.
"""

from .ledger_store import BidLedgerStore

__all__ = ["BidLedgerStore"]

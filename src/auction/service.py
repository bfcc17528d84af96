"""
Auction service: wires the ledger, cache, state machine, scheduler,
sweeper and notifiers from settings.
"""

import logging
from pathlib import Path
from typing import Optional

from auction.config import AuctionSettings
from auction.scheduler import ExpiryScheduler
from auction.state_machine import AuctionStateMachine
from cache.highest_bid import HighestBidCache, get_highest_bid_cache
from daemons.expiry_sweeper import ExpirySweeper
from notify.fanout import NotificationFanout
from notify.mailer import EmailNotifier
from storage.ledger_store import BidLedgerStore

logger = logging.getLogger(__name__)


class AuctionService:
    """Process-wide container for the auction core"""

    def __init__(
        self,
        settings: AuctionSettings,
        ledger: BidLedgerStore,
        cache: HighestBidCache,
        fanout: Optional[NotificationFanout] = None,
        notifier: Optional[EmailNotifier] = None,
        clock=None,
    ):
        self.settings = settings
        self.ledger = ledger
        self.cache = cache
        self.fanout = fanout or NotificationFanout()
        self.notifier = notifier

        self.machine = AuctionStateMachine(
            ledger=ledger,
            cache=cache,
            fanout=self.fanout,
            notifier=notifier,
            clock=clock,
            bid_history_limit=settings.bid_history_limit,
        )
        self.scheduler = ExpiryScheduler(self.machine)
        self.machine.attach_scheduler(self.scheduler)
        self.sweeper = ExpirySweeper(self.machine, interval=settings.sweep_interval)
        self._started = False

    @classmethod
    def from_settings(cls, settings: AuctionSettings, clock=None) -> "AuctionService":
        """
        Build the service from settings.

        Raises:
            StoreUnavailableError: If the ledger cannot be opened, or Redis is
                required and unreachable
        """
        if settings.database_path != ":memory:":
            Path(settings.database_path).parent.mkdir(parents=True, exist_ok=True)
        ledger = BidLedgerStore(settings.database_path)

        cache, is_remote = get_highest_bid_cache(
            settings.redis_url,
            timeout=settings.redis_timeout,
            required=settings.redis_required,
        )

        notifier = EmailNotifier(settings) if settings.notifications_enabled else None
        if notifier is None:
            logger.info("[SERVICE] Email notifications disabled (SMTP_HOST/MAIL_FROM not set)")

        logger.info(
            f"[SERVICE] Ledger at {settings.database_path}, "
            f"cache backend {'redis' if is_remote else 'memory'}"
        )
        return cls(settings, ledger, cache, notifier=notifier, clock=clock)

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        """Close anything that expired while down, then arm timers and the sweeper"""
        if self._started:
            return
        closed = self.machine.close_expired()
        if closed:
            logger.info(f"[SERVICE] Closed {len(closed)} auction(s) that expired while offline")
        self.scheduler.rearm_active()
        self.sweeper.start()
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return
        self.sweeper.stop()
        self.scheduler.shutdown()
        if self.notifier is not None:
            self.notifier.shutdown(wait=True)
        self.ledger.close()
        self._started = False
        logger.info("[SERVICE] Stopped")

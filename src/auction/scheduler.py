"""
Expiry Scheduler: one timer per active auction.

A timer fires close_auction at the auction's end time. Timers are a fast
path only; the expiry sweeper and the lazy checks in the state machine
close auctions whose timer was lost (restart, crash, other process).
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional

from auction.errors import NotFoundError
from auction.models import AuctionStatus, utc_now
from observability.metrics import metrics_collector

logger = logging.getLogger(__name__)


class ExpiryScheduler:
    """Arms and cancels per-auction expiry timers"""

    def __init__(self, machine, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize scheduler.

        Args:
            machine: AuctionStateMachine whose close_auction the timers call
            clock: Returns the current aware UTC datetime (defaults to the machine's)
        """
        self.machine = machine
        self.clock = clock or getattr(machine, "clock", None) or utc_now
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()
        self._shutdown = False

    def arm(self, auction_id: str, fire_at: datetime) -> None:
        """Schedule closure at fire_at, replacing any existing timer"""
        delay = max(0.0, (fire_at - self.clock()).total_seconds())
        timer = threading.Timer(delay, self._fire, args=(auction_id,))
        timer.daemon = True

        with self._lock:
            if self._shutdown:
                logger.debug(f"[SCHEDULER] Shut down, not arming {auction_id}")
                return
            previous = self._timers.pop(auction_id, None)
            if previous is not None:
                previous.cancel()
            self._timers[auction_id] = timer
            pending = len(self._timers)
        timer.start()

        metrics_collector.set_active_auctions(pending)
        logger.debug(f"[SCHEDULER] Armed {auction_id} to close in {delay:.1f}s")

    def cancel(self, auction_id: str) -> bool:
        """Disarm an auction's timer. Returns False when none was armed."""
        with self._lock:
            timer = self._timers.pop(auction_id, None)
            pending = len(self._timers)
        if timer is None:
            return False
        timer.cancel()
        metrics_collector.set_active_auctions(pending)
        return True

    def pending(self) -> List[str]:
        """Ids of auctions with an armed timer"""
        with self._lock:
            return list(self._timers)

    def rearm_active(self) -> int:
        """
        Arm timers for every active auction in the ledger.

        Called on startup; auctions already past their end time fire
        immediately.

        Returns:
            Number of timers armed
        """
        armed = 0
        for auction in self.machine.ledger.list_auctions(AuctionStatus.ACTIVE):
            self.arm(auction.auction_id, auction.end_time)
            armed += 1
        logger.info(f"[SCHEDULER] Re-armed {armed} active auction(s)")
        return armed

    def shutdown(self) -> None:
        """Cancel every pending timer and refuse new ones"""
        with self._lock:
            self._shutdown = True
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        metrics_collector.set_active_auctions(0)
        logger.info(f"[SCHEDULER] Cancelled {len(timers)} pending timer(s)")

    def _fire(self, auction_id: str) -> None:
        with self._lock:
            current = self._timers.get(auction_id)
            if current is not None and current is threading.current_thread():
                del self._timers[auction_id]

        try:
            self.machine.close_auction(auction_id, trigger="timer")
        except NotFoundError:
            logger.warning(f"[SCHEDULER] Auction {auction_id} vanished before its timer fired")
        except Exception as e:
            # The sweeper will retry
            logger.error(f"[SCHEDULER] Failed to close {auction_id}: {e}")

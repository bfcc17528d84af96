"""
Expiry Sweeper Daemon: periodically close auctions whose end time passed.

Backstop for lost timers. Closure is idempotent, so the sweep may race
with a timer or with a late bid without harm.
"""

import logging
import threading
import time
from typing import List, Optional

from auction.models import AuctionResult

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """
    Background daemon that closes expired auctions.

    Every interval:
    - Lists active auctions past their end time
    - Closes each one through the state machine
    """

    # Check interval in seconds
    CHECK_INTERVAL = 30.0

    def __init__(self, machine, interval: Optional[float] = None):
        """
        Initialize expiry sweeper.

        Args:
            machine: AuctionStateMachine instance
            interval: Seconds between sweeps (defaults to CHECK_INTERVAL)
        """
        self.machine = machine
        self.interval = interval if interval is not None else self.CHECK_INTERVAL

        self._running = False
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start the sweeper in a background thread."""
        if self._running:
            logger.info("[EXPIRY_SWEEPER] Already running")
            return

        self._running = True
        self._thread = threading.Thread(
            target=self._sweep_loop, name="expiry-sweeper", daemon=True
        )
        self._thread.start()
        logger.info(f"[EXPIRY_SWEEPER] Started (checking every {self.interval}s)")

    def stop(self):
        """Stop the sweeper and wait for the thread to finish."""
        if not self._running:
            logger.info("[EXPIRY_SWEEPER] Not running")
            return

        self._running = False
        if self._thread:
            self._thread.join(timeout=5.0)
            self._thread = None
        logger.info("[EXPIRY_SWEEPER] Stopped")

    def _sweep_loop(self):
        while self._running:
            try:
                self.sweep_once()
            except Exception as e:
                logger.error(f"[EXPIRY_SWEEPER] ERROR in sweep loop: {e}")

            # Sleep in small increments to allow quick shutdown
            sleep_iterations = max(1, int(self.interval * 10))
            for _ in range(sleep_iterations):
                if not self._running:
                    break
                time.sleep(0.1)

    def sweep_once(self) -> List[AuctionResult]:
        """
        Close every expired active auction.

        Returns:
            Results of the auctions closed (or already closed) in this pass
        """
        results = self.machine.close_expired()
        if results:
            logger.info(f"[EXPIRY_SWEEPER] Closed {len(results)} expired auction(s)")
        return results

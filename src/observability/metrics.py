"""Production Monitoring with Prometheus Metrics

This module provides Prometheus metrics export for the auction core,
including bid latency, accept/reject counts, closures and cache health.
"""

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    REGISTRY,
)
import time
from functools import wraps


# ============================================================================
# CORE METRICS
# ============================================================================

# Bid counters
bids_accepted_total = Counter(
    "auction_bids_accepted_total",
    "Total number of accepted bids",
)

bids_rejected_total = Counter(
    "auction_bids_rejected_total",
    "Total number of rejected bids",
    ["reason"],  # too_low, closed, not_found, invalid, store_unavailable
)

# Lifecycle counters
auctions_created_total = Counter(
    "auction_auctions_created_total", "Total number of auctions created"
)

auctions_closed_total = Counter(
    "auction_auctions_closed_total",
    "Total number of auction closures",
    ["outcome", "trigger"],  # outcome: sold/unsold
)

active_auctions = Gauge("auction_active_auctions", "Number of auctions armed for expiry")

# Latency histograms
bid_latency = Histogram(
    "auction_bid_latency_seconds",
    "Time to decide on a bid, including the ledger write",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)

close_latency = Histogram(
    "auction_close_latency_seconds",
    "Time to close an auction",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)

# Cache metrics
cache_operations_total = Counter(
    "auction_cache_operations_total",
    "Total highest-bid cache operations",
    ["operation", "result"],
)

cache_fallback_total = Counter(
    "auction_cache_fallback_total",
    "Cache operations served by the in-process fallback",
    ["operation"],
)

# Notification metrics
broadcasts_total = Counter(
    "auction_broadcasts_total",
    "Total events broadcast to observers",
    ["event"],
)

notifications_failed_total = Counter(
    "auction_notifications_failed_total",
    "Total failed out-of-band notifications",
    ["channel"],
)

# System health
system_uptime_seconds = Gauge("auction_uptime_seconds", "Service uptime in seconds")

system_info = Info("auction_system", "System information")


# ============================================================================
# HELPER FUNCTIONS & DECORATORS
# ============================================================================


def track_time(histogram):
    """
    Decorator to automatically track execution time.

    Args:
        histogram: Prometheus Histogram to record time

    Example:
        @track_time(bid_latency)
        def submit_bid(...):
            ...
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            finally:
                duration = time.time() - start_time
                histogram.observe(duration)

        return wrapper

    return decorator


# ============================================================================
# METRICS COLLECTOR
# ============================================================================


class MetricsCollector:
    """
    Centralized metrics collection and export.

    Provides methods for recording auction metrics and exposing them
    to Prometheus.
    """

    def __init__(self):
        self.start_time = time.time()
        self._update_system_info()

    def _update_system_info(self):
        """Update system information metric."""
        import platform

        system_info.info(
            {
                "version": "1.0.0",
                "platform": platform.system(),
                "python_version": platform.python_version(),
            }
        )

    def record_auction_created(self):
        auctions_created_total.inc()

    def record_bid_accepted(self):
        bids_accepted_total.inc()

    def record_bid_rejected(self, reason: str):
        """Record a rejected bid by reason."""
        bids_rejected_total.labels(reason=reason).inc()

    def record_auction_closed(self, sold: bool, trigger: str):
        """
        Record an auction closure.

        Args:
            sold: Whether a winner was determined
            trigger: What drove the closure (timer, sweep, bid, read, manual)
        """
        outcome = "sold" if sold else "unsold"
        auctions_closed_total.labels(outcome=outcome, trigger=trigger).inc()

    def set_active_auctions(self, count: int):
        active_auctions.set(count)

    def record_cache_operation(self, operation: str, result: str):
        """
        Record a cache operation.

        Args:
            operation: 'get', 'set' or 'compare_and_set'
            result: 'hit', 'miss', 'conflict' or 'rebuilt'
        """
        cache_operations_total.labels(operation=operation, result=result).inc()

    def record_cache_fallback(self, operation: str):
        cache_fallback_total.labels(operation=operation).inc()

    def record_broadcast(self, event: str):
        broadcasts_total.labels(event=event).inc()

    def record_notification_failed(self, channel: str):
        notifications_failed_total.labels(channel=channel).inc()

    def update_uptime(self):
        """Update system uptime."""
        uptime = time.time() - self.start_time
        system_uptime_seconds.set(uptime)

    def get_metrics(self) -> bytes:
        """
        Get metrics in Prometheus format.

        Returns:
            Metrics as bytes in Prometheus exposition format
        """
        self.update_uptime()
        return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()


# ============================================================================
# HTTP ENDPOINT (for Prometheus scraping)
# ============================================================================


def setup_metrics_endpoint_fastapi(app):
    """
    Setup metrics endpoint for FastAPI app.

    Args:
        app: FastAPI application instance
    """
    from fastapi import Response

    @app.get("/metrics")
    async def metrics():
        return Response(
            content=metrics_collector.get_metrics(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

"""
Observability module for tracing and monitoring.

Provides OpenTelemetry spans and Prometheus metrics for the auction core.
"""

from .tracing import (
    setup_tracing,
    create_span,
    get_tracer,
    shutdown_tracing,
)
from .metrics import metrics_collector

__all__ = [
    'setup_tracing',
    'create_span',
    'get_tracer',
    'shutdown_tracing',
    'metrics_collector',
]

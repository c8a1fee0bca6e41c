"""
Prometheus metrics for the universal gRPC gun.

Design Principles:
1. Metrics live in memory and are updated after a shot is classified
2. Optional separate HTTP server for the /metrics endpoint
3. Histogram buckets sized for RPC latency under load

Usage:
    from grpc_gun.metrics import METRICS, Timer

    with Timer() as t:
        ...
    METRICS.shoot_latency.observe(t.duration)
"""

import time
from typing import Optional

import structlog
from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    REGISTRY,
    start_http_server,
)

logger = structlog.get_logger()

# =============================================================================
# Histogram Buckets (seconds)
# =============================================================================

SHOOT_LATENCY_BUCKETS = (
    0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0,
)


# =============================================================================
# Metrics Definitions
# =============================================================================

class GunMetrics:
    """Container for all gun metrics."""

    def __init__(self):
        # Outcome of every shot, labelled by sample status code (0, 200, 400)
        self.shots_total = Counter(
            'grpc_gun_shots_total',
            'Total number of shots fired, by sample status code',
            ['code'],
        )

        self.shoot_latency = Histogram(
            'grpc_gun_shoot_latency_seconds',
            'Time from sample acquisition to classification',
            buckets=SHOOT_LATENCY_BUCKETS,
        )

        self.active_shots = Gauge(
            'grpc_gun_active_shots',
            'Number of shots currently in flight',
        )

        self.catalog_methods = Gauge(
            'grpc_gun_catalog_methods',
            'Number of methods resolved through server reflection',
        )

        self.setup_errors = Counter(
            'grpc_gun_setup_errors_total',
            'Fatal setup failures',
            ['stage'],  # connect, discover
        )

    def record_shot(self, code: int, elapsed: float):
        self.shots_total.labels(code=str(code)).inc()
        self.shoot_latency.observe(elapsed)


# =============================================================================
# Timer
# =============================================================================

class Timer:
    """
    Monotonic timer for measuring operation latency.

    Usage:
        with Timer() as t:
            # ... do work ...
        METRICS.shoot_latency.observe(t.duration)
    """

    def __init__(self):
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    def start(self):
        self.start_time = time.perf_counter()

    def stop(self):
        self.end_time = time.perf_counter()

    @property
    def duration(self) -> float:
        """Returns duration in seconds."""
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time else time.perf_counter()
        return end - self.start_time

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *args):
        self.stop()


# =============================================================================
# Metrics Server
# =============================================================================

class MetricsServer:
    """Manages the Prometheus metrics HTTP server."""

    def __init__(self, port: int = 8080):
        self.port = port
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def start(self, port: Optional[int] = None):
        """Start the metrics HTTP server (non-blocking, runs in background thread)."""
        if self._started:
            logger.warning("Metrics server already started", port=self.port)
            return
        if port is not None:
            self.port = port

        try:
            start_http_server(self.port)
            self._started = True
            logger.info("Metrics server started", port=self.port)
        except OSError as e:
            logger.error("Failed to start metrics server", port=self.port, error=str(e))
            raise


# =============================================================================
# Global Instances
# =============================================================================

# Single instance of metrics, shared by every gun in the process
METRICS = GunMetrics()

# Metrics server instance
metrics_server = MetricsServer()


def get_metrics_text() -> str:
    """Get current metrics in Prometheus text format (for debugging)."""
    from prometheus_client import generate_latest
    return generate_latest(REGISTRY).decode('utf-8')

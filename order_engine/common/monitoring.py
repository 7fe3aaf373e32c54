"""Monitoring, health checks, and metrics collection."""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import duckdb
from prometheus_client import Counter, Gauge, Histogram, start_http_server
from prometheus_client.core import CollectorRegistry
from redis.asyncio import Redis

from .config import MonitoringConfig
from .logging import get_logger

logger = get_logger(__name__)

# Prometheus metrics
REGISTRY = CollectorRegistry()

PROCESSING_TIME = Histogram(
    "processing_time_seconds", "Processing time in seconds", ["component"], registry=REGISTRY
)

# Order metrics
ORDERS_SUBMITTED = Counter(
    "orders_submitted_total", "Total orders accepted for processing", ["order_type"], registry=REGISTRY
)
ORDER_TRANSITIONS = Counter(
    "order_transitions_total", "Order status transitions", ["status"], registry=REGISTRY
)
ORDERS_COMPLETED = Counter(
    "orders_completed_total", "Orders confirmed", ["venue"], registry=REGISTRY
)
ORDERS_FAILED = Counter(
    "orders_failed_total", "Orders terminally failed", ["kind"], registry=REGISTRY
)
ORDER_RETRIES = Counter(
    "order_retries_total", "Order attempts scheduled for retry", registry=REGISTRY
)

# Routing metrics
QUOTE_LATENCY = Histogram(
    "quote_latency_seconds", "Venue quote latency in seconds", ["venue"], registry=REGISTRY
)
ROUTING_DECISIONS = Counter(
    "routing_decisions_total", "Routing decisions", ["venue", "rule"], registry=REGISTRY
)
EXECUTION_LATENCY = Histogram(
    "execution_latency_seconds", "Settlement simulation latency in seconds", ["venue"], registry=REGISTRY
)

# Notification metrics
NOTIFICATIONS_SENT = Counter(
    "notifications_sent_total", "Status events delivered", ["status"], registry=REGISTRY
)
NOTIFICATIONS_DROPPED = Counter(
    "notifications_dropped_total", "Subscribers dropped during publish", ["reason"], registry=REGISTRY
)
ACTIVE_SUBSCRIPTIONS = Gauge(
    "active_subscriptions", "Live status stream subscriptions", registry=REGISTRY
)

# Persistence and queue metrics
PERSISTENCE_ERRORS = Counter(
    "persistence_errors_total", "Store write errors", ["store"], registry=REGISTRY
)
QUEUE_DEPTH = Gauge(
    "queue_depth", "Jobs by state", ["state"], registry=REGISTRY
)
ERRORS_TOTAL = Counter(
    "errors_total", "Total errors", ["component", "error_type"], registry=REGISTRY
)


class HealthChecker:
    """Health check manager for the backing stores."""

    def __init__(
        self,
        redis_client: Redis,
        duckdb_conn: duckdb.DuckDBPyConnection,
        config: Optional[MonitoringConfig] = None
    ):
        self.redis = redis_client
        self.duckdb = duckdb_conn
        self.config = config or MonitoringConfig()
        self.health_status: Dict[str, bool] = {}
        self.last_check: Dict[str, float] = {}

    async def check_redis_health(self) -> bool:
        """Check Redis connection health."""
        try:
            await asyncio.wait_for(
                self.redis.ping(), timeout=self.config.redis_health_timeout
            )
            return True
        except Exception as e:
            logger.error("Redis health check failed", exception=e)
            return False

    async def check_duckdb_health(self) -> bool:
        """Check DuckDB connection health."""

        def _probe() -> None:
            cursor = self.duckdb.cursor()
            try:
                cursor.execute("SELECT 1").fetchone()
            finally:
                cursor.close()

        try:
            await asyncio.wait_for(
                asyncio.to_thread(_probe),
                timeout=self.config.duckdb_health_timeout
            )
            return True
        except Exception as e:
            logger.error("DuckDB health check failed", exception=e)
            return False

    async def run_all_checks(self) -> Dict[str, bool]:
        """Run all health checks."""
        results = {
            "redis": await self.check_redis_health(),
            "duckdb": await self.check_duckdb_health(),
        }

        now = time.time()
        for name, healthy in results.items():
            self.health_status[name] = healthy
            self.last_check[name] = now

        return results

    def is_healthy(self) -> bool:
        """Check if all components are healthy."""
        return bool(self.health_status) and all(self.health_status.values())

    def get_status(self) -> Dict[str, Any]:
        """Get detailed health status."""
        return {
            "healthy": self.is_healthy(),
            "components": {
                name: {
                    "healthy": status,
                    "last_check": self.last_check.get(name, 0),
                }
                for name, status in self.health_status.items()
            },
        }


@asynccontextmanager
async def measure_time(component: str) -> AsyncGenerator[None, None]:
    """Context manager to measure processing time."""
    start_time = time.perf_counter()
    try:
        yield
    finally:
        duration = time.perf_counter() - start_time
        PROCESSING_TIME.labels(component=component).observe(duration)


def increment_counter(metric: Counter, **labels: str) -> None:
    """Safely increment a counter metric."""
    try:
        if labels:
            metric.labels(**labels).inc()
        else:
            metric.inc()
    except Exception as e:
        logger.error(f"Error incrementing counter {metric._name}", exception=e)


def set_gauge(metric: Gauge, value: float, **labels: str) -> None:
    """Safely set a gauge metric."""
    try:
        if labels:
            metric.labels(**labels).set(value)
        else:
            metric.set(value)
    except Exception as e:
        logger.error(f"Error setting gauge {metric._name}", exception=e)


def observe_histogram(metric: Histogram, value: float, **labels: str) -> None:
    """Safely observe a histogram metric."""
    try:
        if labels:
            metric.labels(**labels).observe(value)
        else:
            metric.observe(value)
    except Exception as e:
        logger.error(f"Error observing histogram {metric._name}", exception=e)


def setup_metrics_server(port: Optional[int] = None) -> None:
    """Setup and start the Prometheus metrics server.

    Args:
        port: Port to run the metrics server on. Zero or None disables it.
    """
    if port:
        try:
            start_http_server(port, registry=REGISTRY)
            logger.info(f"Prometheus metrics server started on port {port}")
        except Exception as e:
            logger.error(f"Failed to start metrics server on port {port}", exception=e)

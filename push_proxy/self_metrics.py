"""Self-monitoring metrics for the relay, using prometheus_client."""
import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

CYCLE_RESULTS = ("success", "scrape_error", "push_error", "transport_error", "error")


class SelfMetrics:
    """Operational counters of the relay itself.

    Kept in a private registry so they never leak into the relayed payload.
    """

    def __init__(self, registry=None, prefix="push_proxy_"):
        if registry is None:
            registry = CollectorRegistry()
        self.registry = registry

        self.cycles_total = Counter(
            f"{prefix}cycles_total",
            "Total number of scrape-push cycles by result",
            ["result"],
            registry=registry
        )

        self.cycle_duration_seconds = Histogram(
            f"{prefix}cycle_duration_seconds",
            "Duration of each scrape-push cycle in seconds",
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=registry
        )

        self.skipped_ticks_total = Counter(
            f"{prefix}skipped_ticks_total",
            "Ticks skipped because the previous cycle overran the interval",
            registry=registry
        )

        self.last_success_timestamp = Gauge(
            f"{prefix}last_success_timestamp_seconds",
            "Unix time of the last successful push",
            registry=registry
        )

        self.cleanup_total = Counter(
            f"{prefix}cleanup_total",
            "Shutdown cleanup attempts by result",
            ["result"],
            registry=registry
        )

        # Pre-create label children so every result is exported from the start
        for result in CYCLE_RESULTS:
            self.cycles_total.labels(result=result)

    def record_cycle(self, result: str, duration: float):
        """Record a finished cycle."""
        self.cycles_total.labels(result=result).inc()
        self.cycle_duration_seconds.observe(duration)

    def record_success(self):
        """Mark the current time as the last successful push."""
        self.last_success_timestamp.set_to_current_time()

    def record_skipped_ticks(self, count: int):
        """Record ticks dropped after an overrunning cycle."""
        self.skipped_ticks_total.inc(count)

    def record_cleanup(self, result: str):
        """Record a cleanup attempt."""
        self.cleanup_total.labels(result=result).inc()

    def get_value(self, name: str, labels=None) -> float:
        value = self.registry.get_sample_value(name, labels or {})
        return 0.0 if value is None else value

    def serve(self, port: int, addr: str = "0.0.0.0"):
        """Expose the registry over HTTP."""
        try:
            start_http_server(port, addr=addr, registry=self.registry)
            logger.info(f"Self-metrics listening on {addr}:{port}/metrics")
        except OSError as e:
            logger.error(f"Failed to start self-metrics HTTP server: {e}")
            raise

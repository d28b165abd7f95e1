"""Relay loop: scrape the target on a timer and push to the gateway."""
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Tuple
import logging
import threading
import time

import httpx

from push_proxy import gateway
from push_proxy.config import RelayConfig
from push_proxy.errors import CleanupError, PushError, ScrapeError, TransportError
from push_proxy.self_metrics import SelfMetrics

logger = logging.getLogger(__name__)


class RelayState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


def schedule_next(next_tick: float, now: float, interval: float) -> Tuple[float, int]:
    """Advance ``next_tick`` past a finished cycle.

    Returns the new deadline and how many ticks were skipped because the
    cycle ran past them.
    """
    next_tick += interval
    if now < next_tick:
        return next_tick, 0
    skipped = int((now - next_tick) // interval) + 1
    return next_tick + skipped * interval, skipped


class RelayLoop:
    """Runs serialized scrape-push cycles until stopped, then cleans up."""

    def __init__(
        self,
        config: RelayConfig,
        client: Optional[httpx.Client] = None,
        self_metrics: Optional[SelfMetrics] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        # Computed once so cleanup deletes exactly what was pushed
        self.push_url = config.push_url()
        self._owns_client = client is None
        self.client = client if client is not None else httpx.Client()
        self.self_metrics = self_metrics if self_metrics is not None else SelfMetrics()
        self.clock = clock

        self.state = RelayState.IDLE
        self.cycle_count = 0
        self._stop_event = threading.Event()

    def run_cycle(self) -> str:
        """Scrape once and forward the body; returns the cycle result."""
        cycle_start = time.monotonic()
        # scrape, body transfer and push share one budget
        deadline = gateway.Deadline(self.config.effective_request_timeout_s)
        result = "error"

        try:
            response = gateway.scrape(self.client, self.config.target_addr, deadline=deadline)
            try:
                gateway.push(
                    self.client,
                    self.push_url,
                    response.iter_bytes(),
                    auth=self.config.credentials,
                    deadline=deadline,
                )
            finally:
                response.close()
            timestamp = datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")
            logger.info(f"[{timestamp}] Metrics pushed successfully")
            self.self_metrics.record_success()
            result = "success"
        except ScrapeError as e:
            logger.error(f"Failed to fetch metrics: {e}")
            result = "scrape_error"
        except PushError as e:
            logger.error(str(e))
            result = "push_error"
        except TransportError as e:
            logger.error(f"Transport error: {e}")
            result = "transport_error"
        except Exception as e:
            logger.error(f"Error in cycle: {e}", exc_info=True)
        finally:
            self.cycle_count += 1
            self.self_metrics.record_cycle(result, time.monotonic() - cycle_start)

        return result

    def run(self):
        """Block until stop() is called, then run cleanup if enabled."""
        interval = self.config.interval_s
        self.state = RelayState.RUNNING
        logger.info("Starting relay loop")

        try:
            next_tick = self.clock() + interval
            while not self._stop_event.is_set():
                wait_s = max(0.0, next_tick - self.clock())
                # A pending stop wins over a tick that is due at the same time
                if self._stop_event.wait(wait_s):
                    break

                cycle_start = self.clock()
                self.run_cycle()

                now = self.clock()
                next_tick, skipped = schedule_next(next_tick, now, interval)
                if skipped:
                    logger.warning(
                        f"Cycle took {now - cycle_start:.3f}s, longer than interval {interval}s; "
                        f"skipped {skipped} tick(s)"
                    )
                    self.self_metrics.record_skipped_ticks(skipped)
        finally:
            self.state = RelayState.SHUTTING_DOWN
            logger.info("Shutting down push-proxy")
            try:
                if self.config.auto_cleanup:
                    self.cleanup()
            finally:
                if self._owns_client:
                    self.client.close()
                self.state = RelayState.TERMINATED

    def stop(self):
        """Signal the loop to stop; safe to call from a signal handler."""
        self._stop_event.set()

    def cleanup(self) -> bool:
        """Delete this instance's group from the gateway.

        Uses its own deadline, independent of the stop signal that has
        usually already fired by now. Failures are logged, never raised.
        """
        try:
            gateway.delete(
                self.client,
                self.push_url,
                auth=self.config.credentials,
                timeout=self.config.cleanup_timeout_s,
            )
        except CleanupError as e:
            logger.error(f"Cleanup failed for {self.push_url}: {e}")
            self.self_metrics.record_cleanup("failure")
            return False

        logger.info(
            f"Cleanup successful for job={self.config.job}, instance={self.config.instance}"
        )
        self.self_metrics.record_cleanup("success")
        return True

from __future__ import annotations

import logging
import math
import threading
import time
from typing import Optional

from huawei_ont_client import OntClient
from huawei_ont_client_exceptions import ScrapeError
from huawei_ont_metrics import MetricsStore
from huawei_ont_models import SchedulerState, ScrapeErrorKind, TelemetrySample

logger = logging.getLogger(__name__)


def next_deadline(tick_at: float, interval: float, now: float) -> tuple[float, int]:
    """
    Next tick strictly after ``now`` on the fixed-rate grid through ``tick_at``.

    Returns:
        The deadline and the number of ticks skipped because the cycle started
        at ``tick_at`` overran.
    """
    elapsed_ticks = max(0, math.floor((now - tick_at) / interval))
    deadline = tick_at + (elapsed_ticks + 1) * interval
    return deadline, elapsed_ticks


class ScrapeScheduler:
    """
    Runs one scrape cycle per interval on a background thread.

    Cycles never overlap: a cycle that overruns its interval causes the missed
    ticks to be skipped. Stopping lets the in-flight cycle finish so the
    device session is always logged out.
    """

    def __init__(self, client: OntClient, store: MetricsStore, interval: float,
                 cycle_timeout: Optional[float] = None):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.client = client
        self.store = store
        self.interval = interval
        self.cycle_timeout = cycle_timeout if cycle_timeout is not None else interval
        self._state = SchedulerState.IDLE
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    def run_once(self) -> Optional[TelemetrySample]:
        """Run a single cycle and record its outcome. Never raises for scrape failures."""
        self._state = SchedulerState.SCRAPING
        start = time.monotonic()
        try:
            logger.debug("Scraping metrics...")
            try:
                sample = self.client.scrape(budget=self.cycle_timeout)
            except ScrapeError as e:
                duration = time.monotonic() - start
                self.store.record_failure(e.kind, duration)
                logger.error(f"Scrape failed ({e.kind.value}) after {duration:.2f}s: {e}")
                return None
            except Exception as e:
                duration = time.monotonic() - start
                self.store.record_failure(ScrapeErrorKind.UNEXPECTED, duration)
                logger.exception(f"Unexpected error during scrape: {e}")
                return None

            duration = time.monotonic() - start
            self.store.record_success(sample, duration)
            logger.info(
                f"Scrape successful in {duration:.2f}s: tx={sample.tx_power_dbm}dBm "
                f"rx={sample.rx_power_dbm}dBm voltage={sample.voltage_mv}mV "
                f"bias={sample.bias_current_ma}mA temp={sample.temperature_celsius}°C"
            )
            return sample
        finally:
            self._state = SchedulerState.IDLE

    def _run(self) -> None:
        tick_at = time.monotonic()
        while not self._stop_event.is_set():
            self.run_once()
            deadline, missed = next_deadline(tick_at, self.interval, time.monotonic())
            if missed:
                logger.warning(f"Scrape cycle overran the {self.interval}s interval, skipping {missed} tick(s)")
            tick_at = deadline
            self._stop_event.wait(max(0.0, deadline - time.monotonic()))
        logger.info("Scrape scheduler stopped")

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("scheduler already started")
        self._thread = threading.Thread(target=self._run, name="ont-scraper")
        self._thread.start()
        logger.info(f"Scrape scheduler started, interval {self.interval}s")

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Scrape cycle still running after stop timeout")

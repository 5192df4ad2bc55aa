"""
Shared metrics state for the exporter.

The store is written by the scrape scheduler and read by every ``/metrics``
request. Writes and renders are serialised through a reader/writer lock so a
render never sees a sample together with counters from a different update;
the sample itself is an immutable object swapped in with a single assignment.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from prometheus_client.core import GaugeMetricFamily, InfoMetricFamily
from prometheus_client.registry import Collector

from huawei_ont_models import HttpOutcome, ScrapeErrorKind, TelemetrySample

logger = logging.getLogger(__name__)

SCRAPE_DURATION_BUCKETS = (0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0)


class ReadWriteLock:
    """Many readers or one writer; a waiting writer blocks new readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class _SampleCollector(Collector):
    """Emits the telemetry gauges from whatever sample the store holds; nothing before the first success."""

    def __init__(self, store: MetricsStore):
        self._store = store

    def collect(self):
        sample, success_ts = self._store._snapshot()
        if sample is None:
            return

        readings = (
            ("huawei_ont_optical_tx_power_dbm", "Transmit optical power in dBm", sample.tx_power_dbm),
            ("huawei_ont_optical_rx_power_dbm", "Receive optical power in dBm", sample.rx_power_dbm),
            ("huawei_ont_working_voltage_mv", "Working voltage in mV", sample.voltage_mv),
            ("huawei_ont_bias_current_ma", "Bias current in mA", sample.bias_current_ma),
            ("huawei_ont_working_temperature_celsius", "Working temperature in Celsius",
             sample.temperature_celsius),
        )
        for name, documentation, value in readings:
            yield GaugeMetricFamily(name, documentation, value=float(value))

        yield GaugeMetricFamily(
            "huawei_ont_last_successful_scrape_timestamp_seconds",
            "Unix time of the last successful scrape",
            value=success_ts,
        )

        module = sample.module
        if module is not None:
            yield InfoMetricFamily(
                "huawei_ont_optical_module",
                "Optical module identity as reported by the ONT",
                value={
                    "link_status": module.link_status,
                    "vendor": module.vendor,
                    "serial": module.serial,
                    "manufacture_date": module.manufacture_date,
                    "tx_wavelength_nm": module.tx_wavelength_nm,
                    "rx_wavelength_nm": module.rx_wavelength_nm,
                },
            )


class MetricsStore:
    """Latest telemetry sample plus operational counters, rendered in Prometheus text format."""

    def __init__(self):
        self.registry = CollectorRegistry()
        self._lock = ReadWriteLock()
        self._sample: Optional[TelemetrySample] = None
        self._success_ts = 0.0

        self.scrapes_total = Counter(
            "huawei_ont_scrapes_total",
            "Total number of scrapes attempted",
            registry=self.registry,
        )
        self.scrape_errors_total = Counter(
            "huawei_ont_scrape_errors_total",
            "Total number of scrape errors",
            ["kind"],
            registry=self.registry,
        )
        self.logout_errors_total = Counter(
            "huawei_ont_logout_errors_total",
            "Total number of failed logouts",
            registry=self.registry,
        )
        self.scrape_duration_seconds = Histogram(
            "huawei_ont_scrape_duration_seconds",
            "Duration of ONT scrape in seconds",
            buckets=SCRAPE_DURATION_BUCKETS,
            registry=self.registry,
        )
        self.http_requests_total = Counter(
            "huawei_ont_http_requests_total",
            "Total number of HTTP requests",
            registry=self.registry,
        )
        self.http_requests_errors_total = Counter(
            "huawei_ont_http_requests_errors_total",
            "Total number of HTTP request errors",
            registry=self.registry,
        )

        # expose every kind at zero so rate() works from the first scrape
        for kind in ScrapeErrorKind.cycle_outcomes():
            self.scrape_errors_total.labels(kind=kind.value)

        self.registry.register(_SampleCollector(self))

    @property
    def sample(self) -> Optional[TelemetrySample]:
        return self._sample

    def _snapshot(self) -> tuple[Optional[TelemetrySample], float]:
        return self._sample, self._success_ts

    def record_success(self, sample: TelemetrySample, duration: float) -> None:
        with self._lock.write():
            self._sample = sample
            self._success_ts = time.time()
            self.scrapes_total.inc()
            self.scrape_duration_seconds.observe(duration)

    def record_failure(self, kind: ScrapeErrorKind, duration: float) -> None:
        with self._lock.write():
            self.scrapes_total.inc()
            self.scrape_errors_total.labels(kind=kind.value).inc()
            self.scrape_duration_seconds.observe(duration)

    def record_logout_failure(self) -> None:
        with self._lock.write():
            self.logout_errors_total.inc()

    def record_http(self, outcome: HttpOutcome) -> None:
        # Counter increments are atomic; the two counters need not move together for a render.
        self.http_requests_total.inc()
        if outcome is HttpOutcome.ERROR:
            self.http_requests_errors_total.inc()

    def render(self) -> str:
        with self._lock.read():
            payload = generate_latest(self.registry)
        return payload.decode("utf-8")

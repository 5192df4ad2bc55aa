import threading
import time

import pytest

from conftest import metric_samples, metric_value
from huawei_ont_metrics import MetricsStore, ReadWriteLock
from huawei_ont_models import HttpOutcome, OpticModuleInfo, ScrapeErrorKind, TelemetrySample

GAUGES = (
    "huawei_ont_optical_tx_power_dbm",
    "huawei_ont_optical_rx_power_dbm",
    "huawei_ont_working_voltage_mv",
    "huawei_ont_bias_current_ma",
    "huawei_ont_working_temperature_celsius",
)


def _uniform_sample(value: int) -> TelemetrySample:
    return TelemetrySample(float(value), float(value), value, float(value), float(value))


def test_render_before_first_success_omits_gauges():
    text = MetricsStore().render()
    samples = metric_samples(text)
    names = {name for name, _ in samples}

    for gauge in GAUGES:
        assert gauge not in names
    assert "huawei_ont_last_successful_scrape_timestamp_seconds" not in names
    assert metric_value(text, "huawei_ont_scrapes_total") == 0
    assert metric_value(text, "huawei_ont_http_requests_total") == 0
    assert metric_value(text, "huawei_ont_http_requests_errors_total") == 0
    assert metric_value(text, "huawei_ont_scrape_duration_seconds_count") == 0
    for kind in ScrapeErrorKind.cycle_outcomes():
        assert metric_value(text, "huawei_ont_scrape_errors_total", kind=kind.value) == 0


def test_record_success_publishes_sample(sample):
    store = MetricsStore()

    store.record_success(sample, 0.42)
    text = store.render()

    assert store.sample is sample
    assert metric_value(text, "huawei_ont_optical_tx_power_dbm") == 2.33
    assert metric_value(text, "huawei_ont_optical_rx_power_dbm") == -24.09
    assert metric_value(text, "huawei_ont_working_voltage_mv") == 3364
    assert metric_value(text, "huawei_ont_bias_current_ma") == 10
    assert metric_value(text, "huawei_ont_working_temperature_celsius") == 47
    assert metric_value(text, "huawei_ont_scrapes_total") == 1
    assert metric_value(text, "huawei_ont_scrape_duration_seconds_sum") == pytest.approx(0.42)
    assert metric_value(text, "huawei_ont_scrape_duration_seconds_bucket", le="0.5") == 1
    assert metric_value(text, "huawei_ont_scrape_duration_seconds_bucket", le="0.1") == 0
    assert metric_value(text, "huawei_ont_last_successful_scrape_timestamp_seconds") > 0


def test_failure_keeps_previous_sample(sample):
    store = MetricsStore()
    store.record_success(sample, 0.1)
    before = {g: metric_value(store.render(), g) for g in GAUGES}

    store.record_failure(ScrapeErrorKind.AUTH_FAILED, 0.2)
    text = store.render()

    assert store.sample is sample
    assert {g: metric_value(text, g) for g in GAUGES} == before
    assert metric_value(text, "huawei_ont_scrape_errors_total", kind="auth_failed") == 1
    assert metric_value(text, "huawei_ont_scrape_errors_total", kind="parse_failed") == 0
    assert metric_value(text, "huawei_ont_scrapes_total") == 2
    assert metric_value(text, "huawei_ont_scrape_duration_seconds_count") == 2


def test_failure_without_sample_keeps_gauges_absent():
    store = MetricsStore()

    store.record_failure(ScrapeErrorKind.TIMEOUT, 10.0)
    text = store.render()

    assert store.sample is None
    assert metric_value(text, "huawei_ont_optical_tx_power_dbm") is None
    assert metric_value(text, "huawei_ont_scrape_errors_total", kind="timeout") == 1


def test_optical_module_info():
    store = MetricsStore()
    module = OpticModuleInfo(link_status="ok", vendor="HUAWEI", serial="2416R080776AS",
                             manufacture_date="240529", tx_wavelength_nm="1310", rx_wavelength_nm="1490")

    store.record_success(TelemetrySample(2.0, -20.0, 3300, 9.5, 45.0, module=module), 0.3)

    assert metric_value(store.render(), "huawei_ont_optical_module_info",
                        link_status="ok", vendor="HUAWEI", serial="2416R080776AS",
                        manufacture_date="240529", tx_wavelength_nm="1310", rx_wavelength_nm="1490") == 1


def test_record_http_and_logout_counters():
    store = MetricsStore()

    store.record_http(HttpOutcome.OK)
    store.record_http(HttpOutcome.ERROR)
    store.record_logout_failure()
    text = store.render()

    assert metric_value(text, "huawei_ont_http_requests_total") == 2
    assert metric_value(text, "huawei_ont_http_requests_errors_total") == 1
    assert metric_value(text, "huawei_ont_logout_errors_total") == 1


def test_record_http_does_not_wait_for_render():
    store = MetricsStore()
    done = threading.Event()

    def count():
        store.record_http(HttpOutcome.OK)
        done.set()

    with store._lock.read():
        threading.Thread(target=count).start()
        assert done.wait(2)

    assert metric_value(store.render(), "huawei_ont_http_requests_total") == 1


def test_stores_are_independent(sample):
    first, second = MetricsStore(), MetricsStore()

    first.record_success(sample, 0.1)

    assert metric_value(second.render(), "huawei_ont_scrapes_total") == 0


def test_concurrent_renders_never_see_torn_sample():
    store = MetricsStore()
    store.record_success(_uniform_sample(1), 0.01)
    done = threading.Event()
    problems = []

    def writer():
        for i in range(400):
            store.record_success(_uniform_sample(1 + i % 2), 0.01)
            store.record_failure(ScrapeErrorKind.PAGE_FETCH, 0.01)
        done.set()

    def reader():
        last_scrapes = last_errors = 0
        while not done.is_set():
            text = store.render()
            values = {metric_value(text, g) for g in GAUGES}
            if len(values) != 1:
                problems.append(f"torn sample: {values}")
            scrapes = metric_value(text, "huawei_ont_scrapes_total")
            errors = metric_value(text, "huawei_ont_scrape_errors_total", kind="page_fetch")
            if scrapes < last_scrapes or errors < last_errors:
                problems.append("counter went backwards")
            if metric_value(text, "huawei_ont_scrape_duration_seconds_count") != scrapes:
                problems.append("histogram and attempts out of step")
            last_scrapes, last_errors = scrapes, errors

    readers = [threading.Thread(target=reader) for _ in range(4)]
    for t in readers:
        t.start()
    writer_thread = threading.Thread(target=writer)
    writer_thread.start()
    writer_thread.join(30)
    for t in readers:
        t.join(30)

    assert problems == []
    assert metric_value(store.render(), "huawei_ont_scrapes_total") == 801


def test_read_write_lock_allows_concurrent_readers():
    lock = ReadWriteLock()
    barrier = threading.Barrier(2, timeout=5)
    results = []

    def reader():
        with lock.read():
            barrier.wait()
            results.append(True)

    threads = [threading.Thread(target=reader) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)

    assert results == [True, True]


def test_read_write_lock_writer_excludes_readers():
    lock = ReadWriteLock()
    events = []
    writer_inside = threading.Event()

    def writer():
        with lock.write():
            writer_inside.set()
            time.sleep(0.1)
            events.append("writer done")

    def reader():
        writer_inside.wait(5)
        with lock.read():
            events.append("reader")

    w = threading.Thread(target=writer)
    r = threading.Thread(target=reader)
    w.start()
    r.start()
    w.join(5)
    r.join(5)

    assert events == ["writer done", "reader"]


def test_read_write_lock_waiting_writer_blocks_new_readers():
    lock = ReadWriteLock()
    events = []
    reader_inside = threading.Event()
    release_reader = threading.Event()

    def first_reader():
        with lock.read():
            reader_inside.set()
            release_reader.wait(5)
        events.append("first reader out")

    def writer():
        with lock.write():
            events.append("writer")

    def late_reader():
        with lock.read():
            events.append("late reader")

    r1 = threading.Thread(target=first_reader)
    r1.start()
    reader_inside.wait(5)
    w = threading.Thread(target=writer)
    w.start()
    while not lock._writers_waiting:
        time.sleep(0.001)
    r2 = threading.Thread(target=late_reader)
    r2.start()
    time.sleep(0.05)
    release_reader.set()
    for t in (r1, w, r2):
        t.join(5)

    assert events.index("writer") < events.index("late reader")

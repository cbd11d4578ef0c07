import threading

import pytest

from sysstatsmon.metrics import (
    DEVICE_NAME_LABEL,
    DIRECTION_LABEL,
    STATE_LABEL,
    Aggregation,
    Metric,
    MetricID,
    MetricRecord,
    new_metric,
)


def test_new_metric_without_view_name_is_none():
    assert new_metric(MetricID.CPU_LOAD_1M, "", "load", "1", Aggregation.LAST_VALUE, []) is None


def test_new_metric_accepts_id_string():
    metric = new_metric("cpu/load_1m", "cpu/load_1m", "load", "1", Aggregation.LAST_VALUE, [])
    assert metric.metric_id is MetricID.CPU_LOAD_1M
    assert metric.view_name == "cpu/load_1m"


def test_metric_rejects_unknown_id():
    with pytest.raises(ValueError):
        Metric("no/such_metric", "view", "d", "1", Aggregation.SUM, [])


def test_metric_rejects_empty_view_name():
    with pytest.raises(ValueError):
        Metric(MetricID.HOST_UPTIME, "", "d", "second", Aggregation.LAST_VALUE, [])


def test_last_value_keeps_latest():
    metric = Metric(
        MetricID.MEMORY_BYTES_USED, "memory/bytes_used", "d", "Byte",
        Aggregation.LAST_VALUE, [STATE_LABEL],
    )
    metric.record({STATE_LABEL: "free"}, 10)
    metric.record({STATE_LABEL: "free"}, 4)
    assert metric.list_metrics() == [MetricRecord({STATE_LABEL: "free"}, 4)]


def test_sum_adds_recorded_values():
    metric = Metric(
        MetricID.DISK_IO_TIME, "disk/io_time", "d", "ms", Aggregation.SUM, [DEVICE_NAME_LABEL]
    )
    values = [3, 8, 1]
    for value in values:
        metric.record({DEVICE_NAME_LABEL: "sda"}, value)
    [record] = metric.list_metrics()
    assert record.value == sum(values)
    assert record.labels == {DEVICE_NAME_LABEL: "sda"}


def test_label_sets_are_kept_apart():
    metric = Metric(
        MetricID.DISK_OPS_COUNT, "disk/operation_count", "d", "1", Aggregation.SUM,
        [DEVICE_NAME_LABEL, DIRECTION_LABEL],
    )
    metric.record({DEVICE_NAME_LABEL: "sda", DIRECTION_LABEL: "read"}, 2)
    metric.record({DEVICE_NAME_LABEL: "sda", DIRECTION_LABEL: "write"}, 5)
    by_direction = {r.labels[DIRECTION_LABEL]: r.value for r in metric.list_metrics()}
    assert by_direction == {"read": 2, "write": 5}


def test_tags_outside_view_are_dropped():
    metric = Metric(
        MetricID.CPU_USAGE_TIME, "cpu/usage_time", "d", "s", Aggregation.SUM, [STATE_LABEL]
    )
    metric.record({STATE_LABEL: "user", "extra": "x"}, 1.5)
    assert metric.list_metrics() == [MetricRecord({STATE_LABEL: "user"}, 1.5)]


def test_list_metrics_returns_copies():
    metric = Metric(
        MetricID.HOST_UPTIME, "host/uptime", "d", "second", Aggregation.LAST_VALUE, [STATE_LABEL]
    )
    metric.record({STATE_LABEL: "up"}, 1)
    metric.list_metrics()[0].labels[STATE_LABEL] = "changed"
    assert metric.list_metrics()[0].labels == {STATE_LABEL: "up"}


def test_concurrent_sum_records_every_value():
    metric = Metric(MetricID.SYSTEM_PROCESSES_TOTAL, "p", "d", "1", Aggregation.SUM, [])
    per_thread = 500
    threads = [
        threading.Thread(target=lambda: [metric.record({}, 1) for _ in range(per_thread)])
        for _ in range(4)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert metric.list_metrics()[0].value == per_thread * len(threads)
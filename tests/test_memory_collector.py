import sys
from collections import namedtuple
from unittest import mock

import pytest

from sysstatsmon.config import MemoryStatsConfig, MetricConfig
from sysstatsmon.memory_collector import MemoryCollector, parse_meminfo
from sysstatsmon.metrics import MetricID

MEMINFO = """MemTotal:       16000 kB
MemFree:         4000 kB
Buffers:          500 kB
Cached:          3000 kB
Slab:             700 kB
Dirty:             12 kB
Writeback:          3 kB
Active(anon):    2000 kB
Inactive(anon):   900 kB
Active(file):    1500 kB
Inactive(file):  1100 kB
Unevictable:       64 kB
HugePages_Total:    0
"""


def _full_config():
    ids = [
        MetricID.MEMORY_BYTES_USED,
        MetricID.MEMORY_ANONYMOUS_USED,
        MetricID.MEMORY_PAGE_CACHE_USED,
        MetricID.MEMORY_UNEVICTABLE_USED,
        MetricID.MEMORY_DIRTY_USED,
    ]
    return MemoryStatsConfig({m.value: MetricConfig(m.value) for m in ids})


def _values(metric):
    return {r.labels.get("state"): r.value for r in metric.list_metrics()}


def test_empty_config_creates_no_metrics():
    mc = MemoryCollector(MemoryStatsConfig())
    mc.collect()
    assert [
        mc.bytes_used,
        mc.anonymous_used,
        mc.page_cache_used,
        mc.unevictable_used,
        mc.dirty_used,
    ] == [None] * 5


def test_parse_meminfo():
    info = parse_meminfo(MEMINFO)
    assert info["MemTotal"] == 16000
    assert info["Active(anon)"] == 2000
    assert info["HugePages_Total"] == 0


@pytest.mark.parametrize("line", ["MemTotal 16000 kB", "MemTotal: abc kB", "MemTotal: 1 MB", "X:"])
def test_parse_meminfo_rejects_malformed(line):
    with pytest.raises(ValueError):
        parse_meminfo(line)


def test_record_values():
    mc = MemoryCollector(_full_config())
    mc.record(parse_meminfo(MEMINFO))
    assert _values(mc.bytes_used) == {
        "free": 4000 * 1024,
        "buffered": 500 * 1024,
        "cached": 3000 * 1024,
        "slab": 700 * 1024,
        "used": (16000 - 4000 - 500 - 3000 - 700) * 1024,
    }
    assert _values(mc.dirty_used) == {"dirty": 12 * 1024, "writeback": 3 * 1024}
    assert _values(mc.anonymous_used) == {"active": 2000 * 1024, "inactive": 900 * 1024}
    assert _values(mc.page_cache_used) == {"active": 1500 * 1024, "inactive": 1100 * 1024}
    assert [r.value for r in mc.unevictable_used.list_metrics()] == [64 * 1024]


def test_record_skips_used_when_field_missing():
    mc = MemoryCollector(_full_config())
    mc.record({"MemFree": 10, "MemTotal": 100})
    assert _values(mc.bytes_used) == {"free": 10 * 1024}


def test_collect_reads_meminfo(tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    (tmp_path / "meminfo").write_text(MEMINFO)
    mc = MemoryCollector(_full_config(), str(tmp_path))
    mc.collect()
    assert _values(mc.bytes_used)["free"] == 4000 * 1024


def test_collect_missing_file_records_nothing(tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "platform", "linux")
    mc = MemoryCollector(_full_config(), str(tmp_path))
    mc.collect()
    assert mc.bytes_used.list_metrics() == []


def test_collect_windows(monkeypatch):
    monkeypatch.setattr(sys, "platform", "win32")
    fake = namedtuple("vmem", "available used")(7, 9)
    mc = MemoryCollector(_full_config())
    with mock.patch("psutil.virtual_memory", return_value=fake):
        mc.collect()
    assert _values(mc.bytes_used) == {"free": 7 * 1024, "used": 9 * 1024}
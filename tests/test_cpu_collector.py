from types import SimpleNamespace
from unittest import mock

import pytest

from sysstatsmon.config import CPUStatsConfig, SystemStatsConfig
from sysstatsmon.cpu_collector import CPUCollector, CPUTimes, ProcStat, parse_proc_stat

FAKE_CPU_CONFIG = {
    "metricsConfigs": {
        "cpu/load_15m": {"displayName": "cpu/load_15m"},
        "cpu/load_1m": {"displayName": "cpu/load_1m"},
        "cpu/load_5m": {"displayName": "cpu/load_5m"},
        "cpu/runnable_task_count": {"displayName": "cpu/runnable_task_count"},
        "cpu/usage_time": {"displayName": "cpu/usage_time"},
        "system/cpu_stat": {"displayName": "system/cpu_stat"},
        "system/interrupts_total": {"displayName": "system/interrupts_total"},
        "system/processes_total": {"displayName": "system/processes_total"},
        "system/procs_blocked": {"displayName": "system/procs_blocked"},
        "system/procs_running": {"displayName": "system/procs_running"},
    }
}

FAKE_STAT = """cpu  100 20 300 4000 50 6 7 8 9 10
cpu0 50 10 150 2000 25 3 4 4 5 5
cpu1 50 10 150 2000 25 3 3 4 4 5
intr 12345 1 2 3
ctxt 999
btime 1700000000
processes 4242
procs_running 3
procs_blocked 1
softirq 10 1 2
"""


def _times(**values):
    base = dict(
        user=0.0, system=0.0, idle=0.0, nice=0.0, iowait=0.0, irq=0.0,
        softirq=0.0, steal=0.0, guest=0.0, guest_nice=0.0,
    )
    base.update(values)
    return SimpleNamespace(**base)


@pytest.fixture
def cpu_config():
    return SystemStatsConfig.from_dict({"cpu": FAKE_CPU_CONFIG}).cpu_config


@pytest.fixture
def proc_dir(tmp_path):
    (tmp_path / "stat").write_text(FAKE_STAT)
    return tmp_path


def _values(metric):
    return {tuple(sorted(r.labels.items())): r.value for r in metric.list_metrics()}


def test_parse_proc_stat():
    stat = parse_proc_stat(FAKE_STAT)
    assert len(stat.cpu) == 2
    assert stat.cpu[0].user == pytest.approx(0.5)
    assert stat.cpu[1].softirq == pytest.approx(0.03)
    assert stat.cpu_total.idle == pytest.approx(40.0)
    assert stat.irq_total == 12345
    assert stat.context_switches == 999
    assert stat.boot_time == 1700000000
    assert stat.processes_created == 4242
    assert stat.processes_running == 3
    assert stat.processes_blocked == 1


def test_parse_proc_stat_fills_cpu_gaps_and_short_lines():
    stat = parse_proc_stat("cpu2 100 200\n")
    assert stat.cpu == [CPUTimes(), CPUTimes(), CPUTimes(user=1.0, nice=2.0)]


def test_parse_proc_stat_empty():
    assert parse_proc_stat("") == ProcStat()


@pytest.mark.parametrize("text", ["processes abc\n", "cpu0 1 x 3\n", "procs_running\n"])
def test_parse_proc_stat_malformed(text):
    with pytest.raises(ValueError):
        parse_proc_stat(text)


def test_cpu_collector_collect(cpu_config, proc_dir):
    collector = CPUCollector(cpu_config, str(proc_dir))
    with mock.patch("psutil.getloadavg", return_value=(1.0, 2.0, 3.0)), mock.patch(
        "psutil.cpu_times", return_value=_times(user=1.0, idle=2.0)
    ):
        collector.collect()
    assert _values(collector.runnable_task_count) == {(): 1.0}
    assert _values(collector.load_1m) == {(): 1.0}
    assert _values(collector.load_5m) == {(): 2.0}
    assert _values(collector.load_15m) == {(): 3.0}
    assert _values(collector.usage_time)[(("state", "user"),)] == pytest.approx(100.0)
    assert _values(collector.processes_total) == {(): 4242}
    assert _values(collector.procs_running) == {(): 3}
    assert _values(collector.procs_blocked) == {(): 1}
    assert _values(collector.interrupts_total) == {(): 12345}


def test_record_system_stats_per_cpu(cpu_config, proc_dir):
    collector = CPUCollector(cpu_config, str(proc_dir))
    collector.record_system_stats()
    values = _values(collector.cpu_stat)
    assert len(values) == 20
    assert values[(("cpu", "cpu0"), ("stage", "user"))] == pytest.approx(0.5)
    assert values[(("cpu", "cpu1"), ("stage", "softIRQ"))] == pytest.approx(0.03)
    assert values[(("cpu", "cpu1"), ("stage", "guestNice"))] == pytest.approx(0.05)
    assert values[(("cpu", "cpu0"), ("stage", "iRQ"))] == pytest.approx(0.03)


def test_record_usage_records_deltas(cpu_config, proc_dir):
    collector = CPUCollector(cpu_config, str(proc_dir))
    with mock.patch("psutil.cpu_times", return_value=_times(user=1.0, system=0.5)):
        collector.record_usage()
    with mock.patch("psutil.cpu_times", return_value=_times(user=1.5, system=0.5)):
        collector.record_usage()
    values = _values(collector.usage_time)
    assert values[(("state", "user"),)] == pytest.approx(150.0)
    assert values[(("state", "system"),)] == pytest.approx(50.0)
    assert collector.last_usage_time["user"] == pytest.approx(150.0)
    assert set(collector.last_usage_time) == {
        "user", "system", "idle", "nice", "iowait", "irq",
        "softirq", "steal", "guest", "guest_nice",
    }


def test_missing_stat_file_records_nothing(cpu_config, tmp_path):
    collector = CPUCollector(cpu_config, str(tmp_path / "missing"))
    collector.record_system_stats()
    assert collector.processes_total.list_metrics() == []
    assert collector.cpu_stat.list_metrics() == []


def test_unconfigured_collector_has_no_metrics(tmp_path):
    collector = CPUCollector(CPUStatsConfig(), str(tmp_path))
    collector.collect()
    assert collector.usage_time is None
    assert collector.load_1m is None
    assert collector.cpu_stat is None
    assert collector.last_usage_time == {}


def test_load_error_is_swallowed(cpu_config, proc_dir):
    collector = CPUCollector(cpu_config, str(proc_dir))
    with mock.patch("psutil.getloadavg", side_effect=OSError("unsupported")):
        collector.record_load()
    assert collector.load_1m.list_metrics() == []
"""CPU load, usage time and kernel process/interrupt statistics."""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field, fields
from typing import Optional

import psutil

from .config import CPUStatsConfig, MetricConfig
from .metrics import (
    CPU_LABEL,
    STAGE_LABEL,
    STATE_LABEL,
    Aggregation,
    Metric,
    MetricID,
    new_metric,
)

logger = logging.getLogger(__name__)

# Ratio between one second and one USER_HZ clock tick; 100 on almost every architecture.
CLOCK_TICK = 100.0

_USAGE_STATES = (
    "user",
    "system",
    "idle",
    "nice",
    "iowait",
    "irq",
    "softirq",
    "steal",
    "guest",
    "guest_nice",
)

# Stage label value and the CPUTimes attribute it reports.
_CPU_STAGES = (
    ("user", "user"),
    ("nice", "nice"),
    ("system", "system"),
    ("idle", "idle"),
    ("iowait", "iowait"),
    ("iRQ", "irq"),
    ("softIRQ", "softirq"),
    ("steal", "steal"),
    ("guest", "guest"),
    ("guestNice", "guest_nice"),
)


@dataclass
class CPUTimes:
    """Time a CPU spent in each kernel stage, in seconds."""

    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0
    guest: float = 0.0
    guest_nice: float = 0.0


@dataclass
class ProcStat:
    """The parts of the kernel's ``stat`` file that the collector uses."""

    cpu_total: CPUTimes = field(default_factory=CPUTimes)
    cpu: list[CPUTimes] = field(default_factory=list)
    irq_total: int = 0
    context_switches: int = 0
    boot_time: int = 0
    processes_created: int = 0
    processes_running: int = 0
    processes_blocked: int = 0


_CPU_FIELD_COUNT = len(fields(CPUTimes))

_COUNTERS = {
    "intr": "irq_total",
    "ctxt": "context_switches",
    "btime": "boot_time",
    "processes": "processes_created",
    "procs_running": "processes_running",
    "procs_blocked": "processes_blocked",
}


def _parse_cpu_values(values: list[str]) -> CPUTimes:
    ticks = [float(value) for value in values[:_CPU_FIELD_COUNT]]
    ticks.extend([0.0] * (_CPU_FIELD_COUNT - len(ticks)))
    return CPUTimes(*(tick / CLOCK_TICK for tick in ticks))


def parse_proc_stat(text: str) -> ProcStat:
    """Parse the contents of the kernel's ``stat`` file; raise ValueError if malformed."""
    stat = ProcStat()
    for line in text.splitlines():
        parts = line.split()
        if not parts:
            continue
        key = parts[0]
        try:
            if key == "cpu":
                stat.cpu_total = _parse_cpu_values(parts[1:])
            elif key.startswith("cpu"):
                index = int(key[3:])
                if index < 0:
                    raise ValueError(f"negative cpu index {index}")
                if index >= len(stat.cpu):
                    stat.cpu.extend(CPUTimes() for _ in range(index + 1 - len(stat.cpu)))
                stat.cpu[index] = _parse_cpu_values(parts[1:])
            elif key in _COUNTERS:
                setattr(stat, _COUNTERS[key], int(parts[1]))
        except (ValueError, IndexError) as exc:
            raise ValueError(f"couldn't parse stat line {line!r}: {exc}") from exc
    return stat


class CPUCollector:
    """Records CPU load averages, CPU usage time and per-CPU kernel statistics."""

    def __init__(self, cpu_config: CPUStatsConfig, proc_path: str) -> None:
        self.config = cpu_config
        self.proc_path = proc_path
        self.last_usage_time: dict[str, float] = {}

        self.runnable_task_count = self._metric(
            MetricID.CPU_RUNNABLE_TASK_COUNT,
            "The average number of runnable tasks in the run-queue during the last minute",
            "1",
            Aggregation.LAST_VALUE,
            [],
        )
        self.usage_time = self._metric(
            MetricID.CPU_USAGE_TIME, "CPU usage, in seconds", "s", Aggregation.SUM, [STATE_LABEL]
        )
        self.load_1m = self._metric(
            MetricID.CPU_LOAD_1M, "CPU average load (1m)", "1", Aggregation.LAST_VALUE, []
        )
        self.load_5m = self._metric(
            MetricID.CPU_LOAD_5M, "CPU average load (5m)", "1", Aggregation.LAST_VALUE, []
        )
        self.load_15m = self._metric(
            MetricID.CPU_LOAD_15M, "CPU average load (15m)", "1", Aggregation.LAST_VALUE, []
        )
        self.processes_total = self._metric(
            MetricID.SYSTEM_PROCESSES_TOTAL,
            "Number of forks since boot.",
            "1",
            Aggregation.SUM,
            [],
        )
        self.procs_running = self._metric(
            MetricID.SYSTEM_PROCS_RUNNING,
            "Number of processes currently running.",
            "1",
            Aggregation.LAST_VALUE,
            [],
        )
        self.procs_blocked = self._metric(
            MetricID.SYSTEM_PROCS_BLOCKED,
            "Number of processes currently blocked.",
            "1",
            Aggregation.LAST_VALUE,
            [],
        )
        self.interrupts_total = self._metric(
            MetricID.SYSTEM_INTERRUPTS_TOTAL,
            "Total number of interrupts serviced (cumulative).",
            "1",
            Aggregation.SUM,
            [],
        )
        self.cpu_stat = self._metric(
            MetricID.SYSTEM_CPU_STAT,
            "Cumulative time each cpu spent in various stages.",
            "ns",
            Aggregation.SUM,
            [CPU_LABEL, STAGE_LABEL],
        )

    def _metric(
        self,
        metric_id: MetricID,
        description: str,
        unit: str,
        aggregation: Aggregation,
        tag_names: list[str],
    ) -> Optional[Metric]:
        display_name = self.config.metrics_configs.get(metric_id.value, MetricConfig()).display_name
        return new_metric(metric_id, display_name, description, unit, aggregation, tag_names)

    def record_load(self) -> None:
        """Record the 1, 5 and 15 minute load averages."""
        if sys.platform == "win32":
            return
        if not any((self.runnable_task_count, self.load_1m, self.load_5m, self.load_15m)):
            return
        try:
            load1, load5, load15 = psutil.getloadavg()
        except OSError as exc:
            logger.error("Failed to retrieve average CPU load: %s", exc)
            return

        if self.runnable_task_count is not None:
            self.runnable_task_count.record({}, load1)
        if self.load_1m is not None:
            self.load_1m.record({}, load1)
        if self.load_5m is not None:
            self.load_5m.record({}, load5)
        if self.load_15m is not None:
            self.load_15m.record({}, load15)

    def record_usage(self) -> None:
        """Record the CPU time spent in each state since the previous call."""
        if self.usage_time is None:
            return
        try:
            times = psutil.cpu_times(percpu=False)
        except (OSError, psutil.Error) as exc:
            logger.error("Failed to retrieve CPU timers stat: %s", exc)
            return

        for state in _USAGE_STATES:
            current = CLOCK_TICK * getattr(times, state, 0.0)
            self.usage_time.record(
                {STATE_LABEL: state}, current - self.last_usage_time.get(state, 0.0)
            )
            self.last_usage_time[state] = current

    def record_system_stats(self) -> None:
        """Record process, interrupt and per-CPU statistics from the kernel's stat file."""
        if sys.platform == "win32":
            return
        if not any(
            (
                self.cpu_stat,
                self.interrupts_total,
                self.processes_total,
                self.procs_blocked,
                self.procs_running,
            )
        ):
            return
        try:
            with open(os.path.join(self.proc_path, "stat"), encoding="utf-8") as handle:
                stats = parse_proc_stat(handle.read())
        except (OSError, ValueError) as exc:
            logger.error("Failed to retrieve cpu/process stats: %s", exc)
            return

        if self.processes_total is not None:
            self.processes_total.record({}, stats.processes_created)
        if self.procs_running is not None:
            self.procs_running.record({}, stats.processes_running)
        if self.procs_blocked is not None:
            self.procs_blocked.record({}, stats.processes_blocked)
        if self.interrupts_total is not None:
            self.interrupts_total.record({}, stats.irq_total)

        if self.cpu_stat is not None:
            for index, times in enumerate(stats.cpu):
                for stage, attribute in _CPU_STAGES:
                    self.cpu_stat.record(
                        {CPU_LABEL: f"cpu{index}", STAGE_LABEL: stage},
                        getattr(times, attribute),
                    )

    def collect(self) -> None:
        """Record every configured CPU metric once."""
        self.record_load()
        self.record_usage()
        self.record_system_stats()
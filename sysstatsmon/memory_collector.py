"""Memory usage by state, anonymous memory, page cache and dirty pages."""

from __future__ import annotations

import logging
import os
import sys
from typing import Mapping, Optional

import psutil

from .config import MemoryStatsConfig, MetricConfig
from .metrics import STATE_LABEL, Aggregation, Metric, MetricID, new_metric

logger = logging.getLogger(__name__)

DEFAULT_PROC_PATH = "/proc"

_KIB = 1024


def parse_meminfo(text: str) -> dict[str, int]:
    """Parse the kernel's ``meminfo`` file into field name -> value (kB or count).

    Raise ValueError on a malformed line.
    """
    info: dict[str, int] = {}
    for line in text.splitlines():
        if not line.strip():
            continue
        name, sep, rest = line.partition(":")
        parts = rest.split()
        if not sep or not name.strip() or not 1 <= len(parts) <= 2:
            raise ValueError(f"malformed meminfo line {line!r}")
        if len(parts) == 2 and parts[1] != "kB":
            raise ValueError(f"unsupported unit {parts[1]!r} in meminfo line {line!r}")
        try:
            value = int(parts[0])
        except ValueError as exc:
            raise ValueError(f"invalid value in meminfo line {line!r}") from exc
        info[name.strip()] = value
    return info


class MemoryCollector:
    """Records memory usage metrics."""

    def __init__(self, memory_config: MemoryStatsConfig, proc_path: str = DEFAULT_PROC_PATH) -> None:
        self.config = memory_config
        self.proc_path = proc_path

        self.bytes_used = self._metric(
            MetricID.MEMORY_BYTES_USED,
            "Memory usage by each memory state, in Bytes. Summing values of all states "
            "yields the total memory on the node.",
            [STATE_LABEL],
        )
        self.anonymous_used = self._metric(
            MetricID.MEMORY_ANONYMOUS_USED,
            "Anonymous memory usage, in Bytes. Summing values of all states yields the "
            "total anonymous memory used.",
            [STATE_LABEL],
        )
        self.page_cache_used = self._metric(
            MetricID.MEMORY_PAGE_CACHE_USED,
            "Page cache memory usage, in Bytes. Summing values of all states yields the "
            "total anonymous memory used.",
            [STATE_LABEL],
        )
        self.unevictable_used = self._metric(
            MetricID.MEMORY_UNEVICTABLE_USED,
            "Unevictable memory usage, in Bytes",
            [],
        )
        self.dirty_used = self._metric(
            MetricID.MEMORY_DIRTY_USED,
            "Dirty pages usage, in Bytes. Dirty means the memory is waiting to be written "
            "back to disk, and writeback means the memory is actively being written back "
            "to disk.",
            [STATE_LABEL],
        )

    def _metric(self, metric_id: MetricID, description: str, tag_names: list[str]) -> Optional[Metric]:
        display_name = self.config.metrics_configs.get(metric_id.value, MetricConfig()).display_name
        return new_metric(
            metric_id, display_name, description, "Byte", Aggregation.LAST_VALUE, tag_names
        )

    def record(self, meminfo: Mapping[str, int]) -> None:
        """Record metrics from parsed meminfo values, given in kB."""

        def put(metric: Optional[Metric], state: Optional[str], key: str) -> None:
            if metric is None or key not in meminfo:
                return
            tags = {STATE_LABEL: state} if state is not None else {}
            metric.record(tags, meminfo[key] * _KIB)

        if self.bytes_used is not None:
            put(self.bytes_used, "free", "MemFree")
            put(self.bytes_used, "buffered", "Buffers")
            put(self.bytes_used, "cached", "Cached")
            put(self.bytes_used, "slab", "Slab")
            parts = ("MemTotal", "MemFree", "Buffers", "Cached", "Slab")
            if all(key in meminfo for key in parts):
                used = (
                    meminfo["MemTotal"]
                    - meminfo["MemFree"]
                    - meminfo["Buffers"]
                    - meminfo["Cached"]
                    - meminfo["Slab"]
                )
                self.bytes_used.record({STATE_LABEL: "used"}, used * _KIB)

        put(self.dirty_used, "dirty", "Dirty")
        put(self.dirty_used, "writeback", "Writeback")
        put(self.anonymous_used, "active", "Active(anon)")
        put(self.anonymous_used, "inactive", "Inactive(anon)")
        put(self.page_cache_used, "active", "Active(file)")
        put(self.page_cache_used, "inactive", "Inactive(file)")
        put(self.unevictable_used, None, "Unevictable")

    def _collect_windows(self) -> None:
        try:
            memory = psutil.virtual_memory()
        except (OSError, psutil.Error) as exc:
            logger.error("cannot get windows memory metrics: %s", exc)
            return
        if self.bytes_used is not None:
            self.bytes_used.record({STATE_LABEL: "free"}, int(memory.available) * _KIB)
            self.bytes_used.record({STATE_LABEL: "used"}, int(memory.used) * _KIB)

    def collect(self) -> None:
        """Record every configured memory metric once."""
        if sys.platform == "win32":
            self._collect_windows()
            return
        path = os.path.join(self.proc_path, "meminfo")
        try:
            with open(path, encoding="utf-8") as handle:
                meminfo = parse_meminfo(handle.read())
        except (OSError, ValueError) as exc:
            logger.error("Failed to retrieve memory stats: %s", exc)
            return
        self.record(meminfo)
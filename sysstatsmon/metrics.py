"""Metric identifiers, label names and in-process metric aggregation."""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence, Union

Number = Union[int, float]

# The monitored disk device, e.g. "sda", "sda1".
DEVICE_NAME_LABEL = "device_name"
# The direction of disk operations: "read" or "write".
DIRECTION_LABEL = "direction"
# The state of disk/memory/cpu usage, e.g. "free", "used".
STATE_LABEL = "state"
# The filesystem type of a disk, e.g. "ext4".
FS_TYPE_LABEL = "fs_type"
# The mount options of a disk device.
MOUNT_OPTION_LABEL = "mount_option"
# A feature of the guest OS.
FEATURE_LABEL = "os_feature"
# The value of a guest OS feature, where one is needed.
VALUE_LABEL = "value"
# A network interface name.
INTERFACE_NAME_LABEL = "interface_name"
# A CPU, e.g. "cpu0".
CPU_LABEL = "cpu"
# The kernel stage in which CPU time was spent.
STAGE_LABEL = "stage"


class Aggregation(enum.Enum):
    """How recorded values combine: keep the last, or add them up."""

    LAST_VALUE = "last_value"
    SUM = "sum"


class MetricID(str, enum.Enum):
    CPU_RUNNABLE_TASK_COUNT = "cpu/runnable_task_count"
    CPU_USAGE_TIME = "cpu/usage_time"
    CPU_LOAD_1M = "cpu/load_1m"
    CPU_LOAD_5M = "cpu/load_5m"
    CPU_LOAD_15M = "cpu/load_15m"
    SYSTEM_PROCESSES_TOTAL = "system/processes_total"
    SYSTEM_PROCS_RUNNING = "system/procs_running"
    SYSTEM_PROCS_BLOCKED = "system/procs_blocked"
    SYSTEM_INTERRUPTS_TOTAL = "system/interrupts_total"
    SYSTEM_CPU_STAT = "system/cpu_stat"
    DISK_IO_TIME = "disk/io_time"
    DISK_WEIGHTED_IO = "disk/weighted_io"
    DISK_AVG_QUEUE_LEN = "disk/avg_queue_len"
    DISK_OPS_COUNT = "disk/operation_count"
    DISK_MERGED_OPS_COUNT = "disk/merged_operation_count"
    DISK_OPS_BYTES = "disk/operation_bytes_count"
    DISK_OPS_TIME = "disk/operation_time"
    DISK_BYTES_USED = "disk/bytes_used"
    HOST_UPTIME = "host/uptime"
    MEMORY_BYTES_USED = "memory/bytes_used"
    MEMORY_ANONYMOUS_USED = "memory/anonymous_used"
    MEMORY_PAGE_CACHE_USED = "memory/page_cache_used"
    MEMORY_UNEVICTABLE_USED = "memory/unevictable_used"
    MEMORY_DIRTY_USED = "memory/dirty_used"
    OS_FEATURE = "system/os_feature"
    NET_DEV_RX_BYTES = "net/rx_bytes"
    NET_DEV_RX_PACKETS = "net/rx_packets"
    NET_DEV_RX_ERRORS = "net/rx_errors"
    NET_DEV_RX_DROPPED = "net/rx_dropped"
    NET_DEV_RX_FIFO = "net/rx_fifo"
    NET_DEV_RX_FRAME = "net/rx_frame"
    NET_DEV_RX_COMPRESSED = "net/rx_compressed"
    NET_DEV_RX_MULTICAST = "net/rx_multicast"
    NET_DEV_TX_BYTES = "net/tx_bytes"
    NET_DEV_TX_PACKETS = "net/tx_packets"
    NET_DEV_TX_ERRORS = "net/tx_errors"
    NET_DEV_TX_DROPPED = "net/tx_dropped"
    NET_DEV_TX_FIFO = "net/tx_fifo"
    NET_DEV_TX_COLLISIONS = "net/tx_collisions"
    NET_DEV_TX_CARRIER = "net/tx_carrier"
    NET_DEV_TX_COMPRESSED = "net/tx_compressed"


@dataclass
class MetricRecord:
    """One time series of a metric: its labels and current value."""

    labels: dict[str, str] = field(default_factory=dict)
    value: Number = 0


class Metric:
    """A metric view that aggregates recorded values per label set."""

    def __init__(
        self,
        metric_id: Union[MetricID, str],
        view_name: str,
        description: str,
        unit: str,
        aggregation: Aggregation,
        tag_names: Sequence[str],
    ) -> None:
        if not view_name:
            raise ValueError("metric view name must not be empty")
        self.metric_id = MetricID(metric_id)
        self.view_name = view_name
        self.description = description
        self.unit = unit
        self.aggregation = Aggregation(aggregation)
        self.tag_names = tuple(tag_names)
        self._values: dict[tuple[tuple[str, str], ...], Number] = {}
        self._lock = threading.Lock()

    def record(self, tags: Mapping[str, str], value: Number) -> None:
        """Record ``value`` under the view's tags taken from ``tags``."""
        key = tuple((name, tags[name]) for name in self.tag_names if name in tags)
        with self._lock:
            if self.aggregation is Aggregation.SUM:
                self._values[key] = self._values.get(key, 0) + value
            else:
                self._values[key] = value

    def list_metrics(self) -> list[MetricRecord]:
        """Return the current value of every label set recorded so far."""
        with self._lock:
            return [MetricRecord(dict(key), value) for key, value in self._values.items()]

    def __repr__(self) -> str:
        return f"Metric({self.metric_id.value!r}, view={self.view_name!r})"


def new_metric(
    metric_id: Union[MetricID, str],
    view_name: str,
    description: str,
    unit: str,
    aggregation: Aggregation,
    tag_names: Sequence[str],
) -> Optional[Metric]:
    """Create a metric, or return None when no view name is configured."""
    if not view_name:
        return None
    return Metric(metric_id, view_name, description, unit, aggregation, tag_names)
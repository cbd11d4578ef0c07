"""Disk IO counters and disk space usage."""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Sequence

import psutil

from .config import DiskStatsConfig, MetricConfig
from .metrics import (
    DEVICE_NAME_LABEL,
    DIRECTION_LABEL,
    FS_TYPE_LABEL,
    MOUNT_OPTION_LABEL,
    STATE_LABEL,
    Aggregation,
    Metric,
    MetricID,
    new_metric,
)

logger = logging.getLogger(__name__)

DEFAULT_PROC_PATH = "/proc"

# Sector size the kernel uses when reporting sectors in diskstats.
_SECTOR_SIZE = 512
_DISKSTATS_MIN_FIELDS = 14


@dataclass
class _IOCounters:
    read_count: int = 0
    merged_read_count: int = 0
    write_count: int = 0
    merged_write_count: int = 0
    read_bytes: int = 0
    write_bytes: int = 0
    read_time: int = 0
    write_time: int = 0
    io_time: int = 0
    weighted_io: int = 0


def _parse_diskstats(text: str, names: Sequence[str]) -> dict[str, _IOCounters]:
    wanted = set(names)
    counters: dict[str, _IOCounters] = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < _DISKSTATS_MIN_FIELDS:
            continue
        name = parts[2]
        if wanted and name not in wanted:
            continue
        try:
            values = [int(value) for value in parts[3:_DISKSTATS_MIN_FIELDS]]
        except ValueError as exc:
            raise ValueError(f"malformed diskstats line {line!r}") from exc
        (reads, merged_reads, read_sectors, read_time,
         writes, merged_writes, write_sectors, write_time,
         _in_progress, io_time, weighted_io) = values
        counters[name] = _IOCounters(
            read_count=reads,
            merged_read_count=merged_reads,
            write_count=writes,
            merged_write_count=merged_writes,
            read_bytes=read_sectors * _SECTOR_SIZE,
            write_bytes=write_sectors * _SECTOR_SIZE,
            read_time=read_time,
            write_time=write_time,
            io_time=io_time,
            weighted_io=weighted_io,
        )
    return counters


def _psutil_io_counters(names: Sequence[str]) -> dict[str, _IOCounters]:
    wanted = set(names)
    raw = psutil.disk_io_counters(perdisk=True) or {}
    return {
        name: _IOCounters(
            read_count=stat.read_count,
            merged_read_count=getattr(stat, "read_merged_count", 0),
            write_count=stat.write_count,
            merged_write_count=getattr(stat, "write_merged_count", 0),
            read_bytes=stat.read_bytes,
            write_bytes=stat.write_bytes,
            read_time=getattr(stat, "read_time", 0),
            write_time=getattr(stat, "write_time", 0),
            io_time=getattr(stat, "busy_time", 0),
        )
        for name, stat in raw.items()
        if not wanted or name in wanted
    }


def list_root_block_devices(timeout: float) -> list[str]:
    """List block devices that are neither slaves nor holders, using ``lsblk``."""
    stdout = ""
    try:
        # -d skips slave/holder devices, -n drops headings, -o NAME prints names only.
        result = subprocess.run(
            ["lsblk", "-d", "-n", "-o", "NAME"],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        stdout = result.stdout or ""
        if result.returncode != 0:
            logger.error("Error calling lsblk")
    except (OSError, subprocess.SubprocessError):
        logger.error("Error calling lsblk")
    return stdout.strip().split("\n")


def list_attached_block_devices(partitions: Iterable[Any]) -> list[str]:
    """List the devices of all currently attached partitions."""
    return [partition.device for partition in partitions]


class DiskCollector:
    """Records disk IO counters and disk space usage."""

    def __init__(self, disk_config: DiskStatsConfig, proc_path: str = DEFAULT_PROC_PATH) -> None:
        self.config = disk_config
        self.proc_path = proc_path

        # Sum aggregation keeps these as cumulative counters.
        self.io_time = self._metric(
            MetricID.DISK_IO_TIME, "The IO time spent on the disk, in ms", "ms",
            Aggregation.SUM, [DEVICE_NAME_LABEL],
        )
        self.weighted_io = self._metric(
            MetricID.DISK_WEIGHTED_IO, "The weighted IO on the disk, in ms", "ms",
            Aggregation.SUM, [DEVICE_NAME_LABEL],
        )
        self.avg_queue_len = self._metric(
            MetricID.DISK_AVG_QUEUE_LEN, "The average queue length on the disk", "1",
            Aggregation.LAST_VALUE, [DEVICE_NAME_LABEL],
        )
        self.ops_count = self._metric(
            MetricID.DISK_OPS_COUNT, "Disk operations count", "1",
            Aggregation.SUM, [DEVICE_NAME_LABEL, DIRECTION_LABEL],
        )
        self.merged_ops_count = self._metric(
            MetricID.DISK_MERGED_OPS_COUNT, "Disk merged operations count", "1",
            Aggregation.SUM, [DEVICE_NAME_LABEL, DIRECTION_LABEL],
        )
        self.ops_bytes = self._metric(
            MetricID.DISK_OPS_BYTES, "Bytes transferred in disk operations", "1",
            Aggregation.SUM, [DEVICE_NAME_LABEL, DIRECTION_LABEL],
        )
        self.ops_time = self._metric(
            MetricID.DISK_OPS_TIME, "Time spent in disk operations, in ms", "ms",
            Aggregation.SUM, [DEVICE_NAME_LABEL, DIRECTION_LABEL],
        )
        self.bytes_used = self._metric(
            MetricID.DISK_BYTES_USED, "Disk bytes used, in Bytes", "Byte",
            Aggregation.LAST_VALUE,
            [DEVICE_NAME_LABEL, FS_TYPE_LABEL, MOUNT_OPTION_LABEL, STATE_LABEL],
        )

        self.last_io_time: dict[str, int] = {}
        self.last_weighted_io: dict[str, int] = {}
        self.last_read_count: dict[str, int] = {}
        self.last_write_count: dict[str, int] = {}
        self.last_merged_read_count: dict[str, int] = {}
        self.last_merged_write_count: dict[str, int] = {}
        self.last_read_bytes: dict[str, int] = {}
        self.last_write_bytes: dict[str, int] = {}
        self.last_read_time: dict[str, int] = {}
        self.last_write_time: dict[str, int] = {}
        self.last_sample_time: float = 0.0

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

    @staticmethod
    def _record_delta(
        metric: Optional[Metric],
        tags: Mapping[str, str],
        last: dict[str, int],
        device: str,
        current: int,
    ) -> None:
        if metric is None:
            return
        metric.record(tags, current - last.get(device, 0))
        last[device] = current

    def record_io_counters(self, io_counters: Mapping[str, Any], sample_time: float) -> None:
        """Record IO metrics from per-device counters sampled at ``sample_time`` (seconds)."""
        for device, stat in io_counters.items():
            tags = {DEVICE_NAME_LABEL: device}

            history_exists = device in self.last_io_time
            last_io_time = self.last_io_time.get(device, 0)
            last_weighted_io = self.last_weighted_io.get(device, 0)
            self.last_io_time[device] = stat.io_time
            self.last_weighted_io[device] = stat.weighted_io

            if self.io_time is not None:
                self.io_time.record(tags, stat.io_time - last_io_time)
            if self.weighted_io is not None:
                self.weighted_io.record(tags, stat.weighted_io - last_weighted_io)
            if history_exists:
                avg_queue_len = 0.0
                if last_weighted_io != stat.weighted_io:
                    diff_ms = (sample_time - self.last_sample_time) * 1000
                    avg_queue_len = (stat.weighted_io - last_weighted_io) / diff_ms
                if self.avg_queue_len is not None:
                    self.avg_queue_len.record(tags, avg_queue_len)

            tags = {DEVICE_NAME_LABEL: device, DIRECTION_LABEL: "read"}
            self._record_delta(self.ops_count, tags, self.last_read_count, device, stat.read_count)
            self._record_delta(
                self.merged_ops_count, tags, self.last_merged_read_count, device,
                stat.merged_read_count,
            )
            self._record_delta(self.ops_bytes, tags, self.last_read_bytes, device, stat.read_bytes)
            self._record_delta(self.ops_time, tags, self.last_read_time, device, stat.read_time)

            tags = {DEVICE_NAME_LABEL: device, DIRECTION_LABEL: "write"}
            self._record_delta(self.ops_count, tags, self.last_write_count, device, stat.write_count)
            self._record_delta(
                self.merged_ops_count, tags, self.last_merged_write_count, device,
                stat.merged_write_count,
            )
            self._record_delta(self.ops_bytes, tags, self.last_write_bytes, device, stat.write_bytes)
            self._record_delta(self.ops_time, tags, self.last_write_time, device, stat.write_time)

    def _read_io_counters(self, devices: Sequence[str]) -> dict[str, _IOCounters]:
        path = os.path.join(self.proc_path, "diskstats")
        if os.path.exists(path):
            with open(path, encoding="utf-8") as handle:
                return _parse_diskstats(handle.read(), devices)
        return _psutil_io_counters(devices)

    def collect(self) -> None:
        """Record every configured disk metric once."""
        devices: list[str] = []
        if self.config.include_root_blk:
            devices.extend(list_root_block_devices(self.config.lsblk_timeout))

        try:
            partitions = psutil.disk_partitions(all=False)
        except (OSError, psutil.Error) as exc:
            logger.error("Failed to list disk partitions: %s", exc)
            return

        if self.config.include_all_attached_blk:
            devices.extend(list_attached_block_devices(partitions))

        try:
            io_counters = self._read_io_counters(devices)
        except (OSError, ValueError, psutil.Error) as exc:
            logger.error("Failed to retrieve disk IO counters: %s", exc)
            return

        sample_time = time.time()
        try:
            self.record_io_counters(io_counters, sample_time)
            if self.bytes_used is not None:
                self._record_usage(partitions)
        finally:
            self.last_sample_time = sample_time

    def _record_usage(self, partitions: Iterable[Any]) -> None:
        # Report each device once even if it is mounted several times.
        seen: set[str] = set()
        for partition in partitions:
            if partition.device in seen:
                continue
            seen.add(partition.device)
            try:
                usage = psutil.disk_usage(partition.mountpoint)
            except (OSError, psutil.Error) as exc:
                logger.error("Failed to retrieve disk usage for %r: %s", partition.mountpoint, exc)
                continue
            device = partition.device.removeprefix("/dev/")
            base = {
                DEVICE_NAME_LABEL: device,
                FS_TYPE_LABEL: partition.fstype,
                MOUNT_OPTION_LABEL: partition.opts,
            }
            self.bytes_used.record({**base, STATE_LABEL: "free"}, int(usage.free))
            self.bytes_used.record({**base, STATE_LABEL: "used"}, int(usage.used))
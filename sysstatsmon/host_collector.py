"""Host uptime, tagged with the kernel and operating system versions."""

from __future__ import annotations

import logging
import platform
import time
from typing import Optional

import psutil

from .config import HostStatsConfig, MetricConfig
from .metrics import Aggregation, Metric, MetricID, new_metric

logger = logging.getLogger(__name__)

_OS_RELEASE_PATHS = ("/etc/os-release", "/usr/lib/os-release")


def _parse_os_release(text: str) -> dict[str, str]:
    entries = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        entries[key.strip()] = value
    return entries


def get_os_version() -> str:
    """Return the operating system name and version, e.g. ``"ubuntu 22.04"``."""
    if platform.system() != "Linux":
        version = f"{platform.system()} {platform.version()}".strip()
        if not version:
            raise OSError("unable to determine the OS version")
        return version

    for path in _OS_RELEASE_PATHS:
        try:
            with open(path, encoding="utf-8") as handle:
                entries = _parse_os_release(handle.read())
        except FileNotFoundError:
            continue
        os_id = entries.get("ID", "")
        if not os_id:
            raise OSError(f"no ID entry in {path}")
        return f"{os_id} {entries.get('VERSION_ID', '')}".strip()
    raise OSError("no os-release file found")


def _kernel_version() -> str:
    release = platform.release()
    if not release:
        raise OSError("unable to determine the kernel version")
    return release


class HostCollector:
    """Records the host uptime."""

    def __init__(self, host_config: HostStatsConfig) -> None:
        self.tags: dict[str, str] = {
            "kernel_version": _kernel_version(),
            "os_version": get_os_version(),
        }
        display_name = host_config.metrics_configs.get(
            MetricID.HOST_UPTIME.value, MetricConfig()
        ).display_name
        self.uptime: Optional[Metric] = new_metric(
            MetricID.HOST_UPTIME,
            display_name,
            "The uptime of the operating system",
            "second",
            Aggregation.LAST_VALUE,
            ["kernel_version", "os_version"],
        )

    def collect(self) -> None:
        """Record the current uptime in whole seconds."""
        try:
            uptime = time.time() - psutil.boot_time()
        except (OSError, psutil.Error) as exc:
            logger.error("Failed to retrieve uptime of the host: %s", exc)
            return
        if self.uptime is not None:
            self.uptime.record(self.tags, int(uptime))
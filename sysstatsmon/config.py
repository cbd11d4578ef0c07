"""Configuration of the system stats monitor."""

from __future__ import annotations

import os
import re
import sys
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any, Optional

_NS_PER_SECOND = 10**9

_UNITS = {
    "ns": 1,
    "us": 10**3,
    "\u00b5s": 10**3,
    "\u03bcs": 10**3,
    "ms": 10**6,
    "s": 10**9,
    "m": 60 * 10**9,
    "h": 3600 * 10**9,
}

_COMPONENT = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]*)")

DEFAULT_INVOKE_INTERVAL_STRING = "1m0s"
DEFAULT_LSBLK_TIMEOUT_STRING = "5s"
DEFAULT_KNOWN_MODULES_CONFIG_PATH = "guestosconfig/known-modules.json"
DEFAULT_PROC_PATH = "/proc" if sys.platform.startswith("linux") else ""


class ConfigError(ValueError):
    """Raised when a configuration cannot be read, applied or validated."""


def parse_duration(text: str) -> float:
    """Parse a duration such as ``"1m30s"`` or ``"-1.5h"`` into seconds."""
    original = text
    sign = 1
    if text[:1] in ("+", "-"):
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f"invalid duration {original!r}")

    total = Fraction(0)
    pos = 0
    while pos < len(text):
        match = _COMPONENT.match(text, pos)
        whole, frac, unit = match.groups()
        if not whole and not frac:
            raise ValueError(f"invalid duration {original!r}")
        if not unit:
            raise ValueError(f"missing unit in duration {original!r}")
        if unit not in _UNITS:
            raise ValueError(f"unknown unit {unit!r} in duration {original!r}")
        value = Fraction(int(whole or "0"))
        if frac:
            value += Fraction(int(frac), 10 ** len(frac))
        total += value * _UNITS[unit]
        pos = match.end()

    nanoseconds = sign * int(total)
    return nanoseconds / _NS_PER_SECOND


def _with_fraction(value: int, digits: int) -> str:
    whole, frac = divmod(value, 10**digits)
    if not frac:
        return str(whole)
    return f"{whole}." + f"{frac:0{digits}d}".rstrip("0")


def format_duration(seconds: float) -> str:
    """Format seconds the way durations are written in configs, e.g. ``"1m0s"``."""
    nanoseconds = round(seconds * _NS_PER_SECOND)
    if nanoseconds == 0:
        return "0s"
    sign = "-" if nanoseconds < 0 else ""
    magnitude = abs(nanoseconds)
    if magnitude < _NS_PER_SECOND:
        if magnitude < 10**3:
            return f"{sign}{magnitude}ns"
        if magnitude < 10**6:
            return f"{sign}{_with_fraction(magnitude, 3)}\u00b5s"
        return f"{sign}{_with_fraction(magnitude, 6)}ms"

    total_seconds, frac_ns = divmod(magnitude, _NS_PER_SECOND)
    hours, rest = divmod(total_seconds, 3600)
    minutes, secs = divmod(rest, 60)
    secs_text = str(secs)
    if frac_ns:
        secs_text += "." + f"{frac_ns:09d}".rstrip("0")
    secs_text += "s"
    if hours:
        return f"{sign}{hours}h{minutes}m{secs_text}"
    if minutes:
        return f"{sign}{minutes}m{secs_text}"
    return f"{sign}{secs_text}"


@dataclass
class MetricConfig:
    display_name: str = ""


@dataclass
class CPUStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)


@dataclass
class DiskStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)
    include_root_blk: bool = False
    include_all_attached_blk: bool = False
    lsblk_timeout_string: str = ""
    lsblk_timeout: float = 0.0


@dataclass
class HostStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)


@dataclass
class MemoryStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)


@dataclass
class OSFeatureStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)
    known_modules_config_path: str = ""


@dataclass
class NetStatsConfig:
    metrics_configs: dict[str, MetricConfig] = field(default_factory=dict)
    exclude_interface_regexp: Optional[re.Pattern] = None


def _field(data: dict, key: str, kind: type, default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, kind):
        raise ConfigError(f"field {key!r} must be of type {kind.__name__}")
    return value


def _section(data: dict, key: str) -> dict:
    return _field(data, key, dict, {})


def _metrics_configs(section: dict) -> dict[str, MetricConfig]:
    raw = _field(section, "metricsConfigs", dict, {})
    configs = {}
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            raise ConfigError(f"metric config {name!r} must be an object")
        configs[name] = MetricConfig(display_name=_field(entry, "displayName", str, ""))
    return configs


def _compile_regexp(text: str) -> Optional[re.Pattern]:
    if not text:
        return None
    try:
        return re.compile(text)
    except re.error as exc:
        raise ConfigError(f"invalid excludeInterfaceRegexp {text!r}: {exc}") from exc


@dataclass
class SystemStatsConfig:
    cpu_config: CPUStatsConfig = field(default_factory=CPUStatsConfig)
    disk_config: DiskStatsConfig = field(default_factory=DiskStatsConfig)
    host_config: HostStatsConfig = field(default_factory=HostStatsConfig)
    memory_config: MemoryStatsConfig = field(default_factory=MemoryStatsConfig)
    os_feature_config: OSFeatureStatsConfig = field(default_factory=OSFeatureStatsConfig)
    net_config: NetStatsConfig = field(default_factory=NetStatsConfig)
    invoke_interval_string: str = ""
    invoke_interval: float = 0.0
    proc_path: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "SystemStatsConfig":
        """Build a configuration from its decoded JSON form."""
        if not isinstance(data, dict):
            raise ConfigError("system stats configuration must be an object")
        disk = _section(data, "disk")
        os_feature = _section(data, "osFeature")
        net = _section(data, "net")
        return cls(
            cpu_config=CPUStatsConfig(_metrics_configs(_section(data, "cpu"))),
            disk_config=DiskStatsConfig(
                metrics_configs=_metrics_configs(disk),
                include_root_blk=_field(disk, "includeRootBlk", bool, False),
                include_all_attached_blk=_field(disk, "includeAllAttachedBlk", bool, False),
                lsblk_timeout_string=_field(disk, "lsblkTimeout", str, ""),
            ),
            host_config=HostStatsConfig(_metrics_configs(_section(data, "host"))),
            memory_config=MemoryStatsConfig(_metrics_configs(_section(data, "memory"))),
            os_feature_config=OSFeatureStatsConfig(
                metrics_configs=_metrics_configs(os_feature),
                known_modules_config_path=_field(os_feature, "knownModulesConfigPath", str, ""),
            ),
            net_config=NetStatsConfig(
                metrics_configs=_metrics_configs(net),
                exclude_interface_regexp=_compile_regexp(
                    _field(net, "excludeInterfaceRegexp", str, "")
                ),
            ),
            invoke_interval_string=_field(data, "invokeInterval", str, ""),
            proc_path=_field(data, "procPath", str, ""),
        )

    def apply_configuration(self) -> None:
        """Fill in defaults and parse the duration strings."""
        if not self.invoke_interval_string:
            self.invoke_interval_string = DEFAULT_INVOKE_INTERVAL_STRING
        if not self.proc_path:
            self.proc_path = DEFAULT_PROC_PATH
        if not self.disk_config.lsblk_timeout_string:
            self.disk_config.lsblk_timeout_string = DEFAULT_LSBLK_TIMEOUT_STRING
        if not self.os_feature_config.known_modules_config_path:
            self.os_feature_config.known_modules_config_path = DEFAULT_KNOWN_MODULES_CONFIG_PATH

        try:
            self.invoke_interval = parse_duration(self.invoke_interval_string)
        except ValueError as exc:
            raise ConfigError(
                f"error in parsing InvokeIntervalString {self.invoke_interval_string!r}: {exc}"
            ) from exc
        try:
            self.disk_config.lsblk_timeout = parse_duration(self.disk_config.lsblk_timeout_string)
        except ValueError as exc:
            raise ConfigError(
                "error in parsing LsblkTimeoutString "
                f"{self.disk_config.lsblk_timeout_string!r}: {exc}"
            ) from exc

    def _validate_proc_path(self) -> None:
        if DEFAULT_PROC_PATH:
            os.stat(self.proc_path)

    def validate(self) -> None:
        """Raise ConfigError if the settings are not usable."""
        if self.invoke_interval <= 0:
            raise ConfigError(
                f"InvokeInterval {format_duration(self.invoke_interval)} must be above 0s"
            )
        try:
            self._validate_proc_path()
        except OSError as exc:
            raise ConfigError(f"ProcPath {self.proc_path} check failed: {exc}") from exc
        lsblk_timeout = self.disk_config.lsblk_timeout
        if lsblk_timeout <= 0:
            raise ConfigError(f"LsblkTimeout {format_duration(lsblk_timeout)} must be above 0s")
        if lsblk_timeout > self.invoke_interval:
            raise ConfigError(
                f"LsblkTimeout {format_duration(lsblk_timeout)} must be shorter than "
                f"InvokeInterval {format_duration(self.invoke_interval)}"
            )
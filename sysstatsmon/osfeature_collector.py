"""Guest OS features derived from the kernel command line and loaded modules."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .config import MetricConfig, OSFeatureStatsConfig
from .metrics import FEATURE_LABEL, VALUE_LABEL, Aggregation, Metric, MetricID, new_metric

logger = logging.getLogger(__name__)

_CMDLINE_ARG_PATTERN = re.compile(r'(?:[^\s"]+|"[^"]*")+')
_INTEGER = re.compile(r"[+-]?\d+")


@dataclass(frozen=True)
class CmdlineArg:
    """One ``key=value`` argument of the kernel command line."""

    key: str
    value: str = ""


@dataclass(frozen=True)
class KernelModule:
    """A loaded kernel module as listed in the kernel's ``modules`` file."""

    module_name: str
    size: int = 0
    instances: int = 0
    dependencies: tuple[str, ...] = field(default_factory=tuple)
    state: str = ""
    offset: int = 0
    kernel_tainted: bool = False
    out_of_tree: bool = False
    proprietary: bool = False
    unsigned: bool = False


def parse_cmdline(text: str) -> list[CmdlineArg]:
    """Split a kernel command line into arguments; double quotes group spaces."""
    args = []
    for word in _CMDLINE_ARG_PATTERN.findall(text):
        key, _, value = word.replace('"', "").partition("=")
        args.append(CmdlineArg(key, value))
    return args


def _to_int(text: str, base: int = 10) -> int:
    try:
        return int(text, base)
    except ValueError:
        return 0


def parse_modules(text: str) -> list[KernelModule]:
    """Parse the kernel's ``modules`` file; raise ValueError on a malformed line."""
    modules = []
    for line in text.splitlines():
        parts = line.split()
        if not parts:
            continue
        if len(parts) < 6:
            raise ValueError(f"malformed modules line {line!r}")
        name, size, instances, deps, state, offset = parts[:6]
        taints = ""
        if len(parts) > 6:
            taints = "".join(parts[6:]).strip("()")
        modules.append(
            KernelModule(
                module_name=name,
                size=_to_int(size),
                instances=_to_int(instances),
                dependencies=tuple(d for d in deps.split(",") if d and d != "-"),
                state=state,
                offset=_to_int(offset.removeprefix("0x"), 16),
                kernel_tainted=bool(taints),
                out_of_tree="O" in taints,
                proprietary="P" in taints,
                unsigned="E" in taints,
            )
        )
    return modules


def _parse_feature_value(value: str) -> int:
    return int(value) if _INTEGER.fullmatch(value) else 0


def _load_known_modules(path: str) -> set[str]:
    try:
        with open(path, encoding="utf-8") as handle:
            raw = handle.read()
    except OSError as exc:
        logger.warning("Failed to read configuration file %s: %s", path, exc)
        return set()
    try:
        entries = json.loads(raw)
        return {entry["moduleName"] for entry in entries if isinstance(entry, dict)}
    except (ValueError, TypeError, KeyError) as exc:
        logger.warning("Failed to retrieve known modules %s", exc)
        return set()


class OSFeatureCollector:
    """Records OS features: KTD, cgroup hierarchy, module integrity, GPU and unknown modules."""

    def __init__(self, os_feature_config: OSFeatureStatsConfig, proc_path: str) -> None:
        self.config = os_feature_config
        self.proc_path = proc_path
        display_name = os_feature_config.metrics_configs.get(
            MetricID.OS_FEATURE.value, MetricConfig()
        ).display_name
        self.os_feature: Optional[Metric] = new_metric(
            MetricID.OS_FEATURE,
            display_name,
            "OS Features like GPU support, KTD kernel, third party modules as unknown "
            "modules. 1 if the feature is enabled and 0, if disabled.",
            "1",
            Aggregation.LAST_VALUE,
            [FEATURE_LABEL, VALUE_LABEL],
        )

    def record_features_from_cmdline(self, cmdline_args: Iterable[CmdlineArg]) -> None:
        """Record KTD, UnifiedCgroupHierarchy and KernelModuleIntegrity."""
        sources = {
            "csm.enabled": "KTD",
            "systemd.unified_cgroup_hierarchy": "UnifiedCgroupHierarchy",
            "module.sig_enforce": "ModuleSigned",
            "loadpin.enabled": "LoadPinEnabled",
        }
        features = dict.fromkeys(sources.values(), 0)
        for arg in cmdline_args:
            if arg.key in sources:
                features[sources[arg.key]] = _parse_feature_value(arg.value)

        self.os_feature.record({FEATURE_LABEL: "KTD"}, features["KTD"])
        self.os_feature.record(
            {FEATURE_LABEL: "UnifiedCgroupHierarchy"}, features["UnifiedCgroupHierarchy"]
        )
        integrity = int(features["ModuleSigned"] == 1 and features["LoadPinEnabled"] == 1)
        self.os_feature.record({FEATURE_LABEL: "KernelModuleIntegrity"}, integrity)

    def record_features_from_modules(self, modules: Iterable[KernelModule]) -> None:
        """Record GPUSupport and any out-of-tree or proprietary modules not known."""
        known = _load_known_modules(self.config.known_modules_config_path)
        has_gpu_support = 0
        unknown = []
        for module in modules:
            if "nvidia" in module.module_name:
                has_gpu_support = 1
            elif (module.out_of_tree or module.proprietary) and module.module_name not in known:
                unknown.append(module.module_name)

        if unknown:
            self.os_feature.record(
                {FEATURE_LABEL: "UnknownModules", VALUE_LABEL: ",".join(unknown)}, 1
            )
        else:
            self.os_feature.record({FEATURE_LABEL: "UnknownModules"}, 0)
        self.os_feature.record({FEATURE_LABEL: "GPUSupport"}, has_gpu_support)

    def collect(self) -> None:
        """Record OS features; raise OSError or ValueError if proc files cannot be read."""
        if self.os_feature is None:
            return
        with open(os.path.join(self.proc_path, "cmdline"), encoding="utf-8") as handle:
            cmdline_args = parse_cmdline(handle.read())
        self.record_features_from_cmdline(cmdline_args)
        with open(os.path.join(self.proc_path, "modules"), encoding="utf-8") as handle:
            modules = parse_modules(handle.read())
        self.record_features_from_modules(modules)
"""The system stats monitor: periodically runs every configured collector."""

from __future__ import annotations

import json
import logging
import os
import threading
from typing import Optional

from .config import ConfigError, SystemStatsConfig
from .cpu_collector import CPUCollector
from .disk_collector import DiskCollector
from .host_collector import HostCollector
from .memory_collector import MemoryCollector
from .net_collector import NetCollector
from .osfeature_collector import OSFeatureCollector
from .types import Monitor, ProblemDaemonHandler

logger = logging.getLogger(__name__)

SYSTEM_STATS_MONITOR_NAME = "system-stats-monitor"


class SystemStatsMonitor(Monitor):
    """Reads a config file and records system metrics at the configured interval."""

    def __init__(self, config_path: str) -> None:
        self.config_path = config_path
        self.config = self._load_config(config_path)

        self.cpu_collector: Optional[CPUCollector] = None
        self.disk_collector: Optional[DiskCollector] = None
        self.host_collector: Optional[HostCollector] = None
        self.memory_collector: Optional[MemoryCollector] = None
        self.os_feature_collector: Optional[OSFeatureCollector] = None
        self.net_collector: Optional[NetCollector] = None

        config = self.config
        if config.cpu_config.metrics_configs:
            self.cpu_collector = CPUCollector(config.cpu_config, config.proc_path)
        if config.disk_config.metrics_configs:
            self.disk_collector = DiskCollector(config.disk_config)
        if config.host_config.metrics_configs:
            self.host_collector = HostCollector(config.host_config)
        if config.memory_config.metrics_configs:
            self.memory_collector = MemoryCollector(config.memory_config)
        if config.os_feature_config.metrics_configs:
            # A relative known-modules path is relative to this config file.
            os_feature = config.os_feature_config
            if not os.path.isabs(os_feature.known_modules_config_path):
                os_feature.known_modules_config_path = os.path.join(
                    os.path.dirname(config_path), os_feature.known_modules_config_path
                )
            self.os_feature_collector = OSFeatureCollector(os_feature, config.proc_path)
        if config.net_config.metrics_configs:
            self.net_collector = NetCollector(config.net_config, config.proc_path)

        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @staticmethod
    def _load_config(config_path: str) -> SystemStatsConfig:
        try:
            with open(config_path, encoding="utf-8") as handle:
                data = json.load(handle)
        except OSError as exc:
            raise ConfigError(f"Failed to read configuration file {config_path!r}: {exc}") from exc
        except ValueError as exc:
            raise ConfigError(
                f"Failed to unmarshal configuration file {config_path!r}: {exc}"
            ) from exc
        config = SystemStatsConfig.from_dict(data)
        try:
            config.apply_configuration()
        except ConfigError as exc:
            raise ConfigError(f"Failed to apply configuration for {config_path!r}: {exc}") from exc
        try:
            config.validate()
        except ConfigError as exc:
            raise ConfigError(f"Failed to validate {config_path} configuration: {exc}") from exc
        return config

    def collect_once(self) -> None:
        """Run every configured collector once."""
        collectors = (
            self.cpu_collector,
            self.disk_collector,
            self.host_collector,
            self.memory_collector,
            self.os_feature_collector,
            self.net_collector,
        )
        for collector in collectors:
            if collector is not None:
                collector.collect()

    def start(self) -> None:
        """Start collecting in a background thread; metrics only, so no status queue."""
        logger.info("Start system stats monitor %s", self.config_path)
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._monitor_loop, name=SYSTEM_STATS_MONITOR_NAME, daemon=True
        )
        self._thread.start()
        return None

    def _monitor_loop(self) -> None:
        try:
            if self._stopping.is_set():
                return
            self.collect_once()
            while not self._stopping.wait(self.config.invoke_interval):
                self.collect_once()
        except Exception:
            logger.critical("System stats monitor failed: %s", self.config_path, exc_info=True)
            return
        finally:
            logger.info("System stats monitor stopped: %s", self.config_path)

    def stop(self) -> None:
        """Stop collecting and wait for the background thread to finish."""
        logger.info("Stop system stats monitor %s", self.config_path)
        self._stopping.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None


HANDLER = ProblemDaemonHandler(
    create_problem_daemon_or_die=SystemStatsMonitor,
    cmd_option_description="Set to config file paths.",
)
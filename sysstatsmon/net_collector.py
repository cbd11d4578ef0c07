"""Per-interface network device statistics."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Sequence, Union

from .config import ConfigError, NetStatsConfig
from .metrics import INTERFACE_NAME_LABEL, Aggregation, Metric, MetricID, new_metric

logger = logging.getLogger(__name__)

NewMetricFn = Callable[
    [Union[MetricID, str], str, str, str, Aggregation, Sequence[str]], Optional[Metric]
]

_NET_DEV_FIELD_COUNT = 16
_NET_DEV_HEADER_LINES = 2


@dataclass(frozen=True)
class NetDevLine:
    """One interface's counters from the kernel's ``net/dev`` file."""

    name: str
    rx_bytes: int = 0
    rx_packets: int = 0
    rx_errors: int = 0
    rx_dropped: int = 0
    rx_fifo: int = 0
    rx_frame: int = 0
    rx_compressed: int = 0
    rx_multicast: int = 0
    tx_bytes: int = 0
    tx_packets: int = 0
    tx_errors: int = 0
    tx_dropped: int = 0
    tx_fifo: int = 0
    tx_collisions: int = 0
    tx_carrier: int = 0
    tx_compressed: int = 0


def parse_net_dev(text: str) -> dict[str, NetDevLine]:
    """Parse the kernel's ``net/dev`` file; raise ValueError on a malformed line."""
    stats: dict[str, NetDevLine] = {}
    for line in text.splitlines()[_NET_DEV_HEADER_LINES:]:
        if not line.strip():
            continue
        name, sep, rest = line.partition(":")
        name = name.strip()
        values = rest.split()
        if not sep or not name or len(values) != _NET_DEV_FIELD_COUNT:
            raise ValueError(f"malformed net/dev line {line!r}")
        try:
            counters = [int(value) for value in values]
        except ValueError as exc:
            raise ValueError(f"invalid value in net/dev line {line!r}") from exc
        stats[name] = NetDevLine(name, *counters)
    return stats


@dataclass
class _IfaceStatCollector:
    metric: Optional[Metric]
    exporter: Callable[[NetDevLine], int]


class IfaceStatRecorder:
    """Registers interface metrics and records all of them from one NetDevLine."""

    def __init__(self, new_metric_fn: NewMetricFn = new_metric) -> None:
        self.new_metric_fn = new_metric_fn
        self.collectors: dict[MetricID, _IfaceStatCollector] = {}

    def register(
        self,
        metric_id: MetricID,
        view_name: str,
        description: str,
        unit: str,
        aggregation: Aggregation,
        tag_names: Sequence[str],
        exporter: Callable[[NetDevLine], int],
    ) -> None:
        """Create a metric and remember how to extract its value; reject duplicates."""
        metric_id = MetricID(metric_id)
        if metric_id in self.collectors:
            raise ValueError(f"metric {metric_id.value!r} already registered")
        metric = self.new_metric_fn(metric_id, view_name, description, unit, aggregation, tag_names)
        self.collectors[metric_id] = _IfaceStatCollector(metric, exporter)

    def record_with_same_tags(self, stat: NetDevLine, tags: Mapping[str, str]) -> None:
        """Record every registered metric's value from ``stat`` under ``tags``."""
        for metric_id, collector in self.collectors.items():
            if collector.metric is None:
                continue
            measurement = collector.exporter(stat)
            collector.metric.record(tags, measurement)
            logger.debug(
                "Metric %r record measurement %d with tags %s", metric_id.value, measurement, tags
            )


_NET_METRICS = (
    (MetricID.NET_DEV_RX_BYTES, "Cumulative count of bytes received.", "Byte", "rx_bytes"),
    (MetricID.NET_DEV_RX_PACKETS, "Cumulative count of packets received.", "1", "rx_packets"),
    (MetricID.NET_DEV_RX_ERRORS, "Cumulative count of receive errors encountered.", "1",
     "rx_errors"),
    (MetricID.NET_DEV_RX_DROPPED, "Cumulative count of packets dropped while receiving.", "1",
     "rx_dropped"),
    (MetricID.NET_DEV_RX_FIFO, "Cumulative count of FIFO buffer errors.", "1", "rx_fifo"),
    (MetricID.NET_DEV_RX_FRAME, "Cumulative count of packet framing errors.", "1", "rx_frame"),
    (MetricID.NET_DEV_RX_COMPRESSED,
     "Cumulative count of compressed packets received by the device driver.", "1",
     "rx_compressed"),
    (MetricID.NET_DEV_RX_MULTICAST,
     "Cumulative count of multicast frames received by the device driver.", "1",
     "rx_multicast"),
    (MetricID.NET_DEV_TX_BYTES, "Cumulative count of bytes transmitted.", "Byte", "tx_bytes"),
    (MetricID.NET_DEV_TX_PACKETS, "Cumulative count of packets transmitted.", "1", "tx_packets"),
    (MetricID.NET_DEV_TX_ERRORS, "Cumulative count of transmit errors encountered.", "1",
     "tx_errors"),
    (MetricID.NET_DEV_TX_DROPPED, "Cumulative count of packets dropped while transmitting.", "1",
     "tx_dropped"),
    (MetricID.NET_DEV_TX_FIFO, "Cumulative count of FIFO buffer errors.", "1", "tx_fifo"),
    (MetricID.NET_DEV_TX_COLLISIONS,
     "Cumulative count of collisions detected on the interface.", "1", "tx_collisions"),
    (MetricID.NET_DEV_TX_CARRIER,
     "Cumulative count of carrier losses detected by the device driver.", "1", "tx_carrier"),
    (MetricID.NET_DEV_TX_COMPRESSED,
     "Cumulative count of compressed packets transmitted by the device driver.", "1",
     "tx_compressed"),
)


def _field_reader(attribute: str) -> Callable[[NetDevLine], int]:
    def read(stat: NetDevLine) -> int:
        return getattr(stat, attribute)

    return read


class NetCollector:
    """Records network device counters for every interface not excluded by the config."""

    def __init__(
        self,
        net_config: NetStatsConfig,
        proc_path: str,
        recorder: Optional[IfaceStatRecorder] = None,
    ) -> None:
        self.config = net_config
        self.proc_path = proc_path
        self.recorder = recorder if recorder is not None else IfaceStatRecorder()
        for metric_id, description, unit, attribute in _NET_METRICS:
            self._register(metric_id, description, unit, _field_reader(attribute))

    def _register(
        self,
        metric_id: MetricID,
        description: str,
        unit: str,
        exporter: Callable[[NetDevLine], int],
    ) -> None:
        metric_config = self.config.metrics_configs.get(metric_id.value)
        if metric_config is None:
            raise ConfigError(f"Metric config {metric_id.value!r} not found")
        try:
            self.recorder.register(
                metric_id,
                metric_config.display_name,
                description,
                unit,
                Aggregation.SUM,
                [INTERFACE_NAME_LABEL],
                exporter,
            )
        except ValueError as exc:
            raise ConfigError(f"Failed to initialize metric {metric_id.value!r}: {exc}") from exc

    def record_net_dev(self) -> None:
        """Read the ``net/dev`` file and record each interface's counters."""
        path = os.path.join(self.proc_path, "net", "dev")
        try:
            with open(path, encoding="utf-8") as handle:
                stats = parse_net_dev(handle.read())
        except (OSError, ValueError) as exc:
            logger.error("Failed to retrieve net dev stat: %s", exc)
            return

        exclude = self.config.exclude_interface_regexp
        for iface, iface_stats in stats.items():
            if exclude is not None and exclude.search(iface):
                logger.debug(
                    "Network interface %s matched exclude regexp %r, skipping recording",
                    iface,
                    exclude.pattern,
                )
                continue
            self.recorder.record_with_same_tags(iface_stats, {INTERFACE_NAME_LABEL: iface})

    def collect(self) -> None:
        """Record every configured network metric once."""
        self.record_net_dev()
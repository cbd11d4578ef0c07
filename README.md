# sysstatsmon

`sysstatsmon` samples the state of a machine at a fixed interval and records
it as labelled metrics held in memory. It covers:

- **CPU** (`sysstatsmon.cpu_collector.CPUCollector`): 1, 5 and 15 minute load
  averages, CPU usage time per state since the previous sample, forks,
  running and blocked processes, interrupts and per-CPU time per stage read
  from `<procPath>/stat`.
- **Memory** (`sysstatsmon.memory_collector.MemoryCollector`): free,
  buffered, cached, slab and used bytes, active and inactive anonymous and
  page cache memory, dirty and writeback pages, unevictable memory, read from
  `/proc/meminfo`.
- **Disk** (`sysstatsmon.disk_collector.DiskCollector`): IO time, weighted
  IO, average queue length, and per-direction operation counts, merged
  operations, bytes and time, read from `/proc/diskstats` (or from psutil
  when that file is absent); free and used bytes per device, each device
  reported once.
- **Host** (`sysstatsmon.host_collector.HostCollector`): uptime in seconds,
  labelled with the kernel version and the OS version.
- **Network** (`sysstatsmon.net_collector.NetCollector`): all sixteen
  counters of `<procPath>/net/dev` per interface, with an optional regular
  expression to exclude interfaces.
- **OS features** (`sysstatsmon.osfeature_collector.OSFeatureCollector`):
  `KTD`, `UnifiedCgroupHierarchy` and `KernelModuleIntegrity` from the kernel
  command line, `GPUSupport` and `UnknownModules` from the loaded kernel
  modules.

A collector is only created for a section whose `metricsConfigs` is not
empty, and within a section only metrics with a non-empty `displayName` are
recorded.

## Configuration

`SystemStatsMonitor` reads a JSON file. Each section lists metrics keyed by
metric ID, with the view name to record them under:

```json
{
  "invokeInterval": "60s",
  "procPath": "/proc",
  "cpu": {
    "metricsConfigs": {
      "cpu/load_1m": {"displayName": "cpu/load_1m"},
      "cpu/usage_time": {"displayName": "cpu/usage_time"}
    }
  },
  "memory": {
    "metricsConfigs": {
      "memory/bytes_used": {"displayName": "memory/bytes_used"}
    }
  },
  "host": {
    "metricsConfigs": {
      "host/uptime": {"displayName": "host/uptime"}
    }
  },
  "disk": {
    "includeRootBlk": true,
    "includeAllAttachedBlk": true,
    "lsblkTimeout": "5s",
    "metricsConfigs": {
      "disk/io_time": {"displayName": "disk/io_time"}
    }
  },
  "osFeature": {
    "knownModulesConfigPath": "guestosconfig/known-modules.json",
    "metricsConfigs": {
      "system/os_feature": {"displayName": "system/os_feature"}
    }
  }
}
```

A `net` section, when present, must list every network metric ID —
`net/rx_bytes`, `net/rx_packets`, `net/rx_errors`, `net/rx_dropped`,
`net/rx_fifo`, `net/rx_frame`, `net/rx_compressed`, `net/rx_multicast`,
`net/tx_bytes`, `net/tx_packets`, `net/tx_errors`, `net/tx_dropped`,
`net/tx_fifo`, `net/tx_collisions`, `net/tx_carrier`, `net/tx_compressed` —
otherwise a `ConfigError` is raised. It may also carry
`"excludeInterfaceRegexp"`, e.g. `"^veth"`; interfaces it matches are skipped.

With `includeRootBlk` the disk collector runs `lsblk -d -n -o NAME` (with
`lsblkTimeout` as its timeout); with `includeAllAttachedBlk` it adds the
devices of all mounted partitions. The known-modules file is a JSON list of
objects with a `"moduleName"` key; out-of-tree or proprietary modules not in
it (and not containing `nvidia`) are reported as `UnknownModules`.

Defaults: `invokeInterval` is `1m0s`, `lsblkTimeout` is `5s`, `procPath` is
`/proc` on Linux and empty elsewhere, and `knownModulesConfigPath` is
`guestosconfig/known-modules.json`, taken relative to the configuration file
when it is not absolute. `validate()` raises `ConfigError` unless the
interval is positive, the `lsblk` timeout is positive and no longer than the
interval, and, on Linux, `procPath` exists.

## Using it

```python
from sysstatsmon.config import SystemStatsConfig
from sysstatsmon.system_stats_monitor import SystemStatsMonitor

config = SystemStatsConfig.from_dict({"invokeInterval": "30s"})
config.apply_configuration()
config.validate()
print(config.invoke_interval)   # 30.0

monitor = SystemStatsMonitor("/etc/sysstatsmon/system-stats-monitor.json")
monitor.collect_once()   # take a single sample
monitor.start()          # sample in a background thread every invokeInterval
monitor.stop()           # stop and wait for the thread
```

Recorded values can be read back from any metric:

```python
from sysstatsmon.metrics import Aggregation, new_metric

metric = new_metric("net/rx_bytes", "net/rx_bytes", "Bytes received.", "Byte",
                    Aggregation.SUM, ["interface_name"])
metric.record({"interface_name": "eth0"}, 5000)
for record in metric.list_metrics():
    print(record.labels, record.value)
```

`new_metric` returns `None` when the view name is empty. `Aggregation.SUM`
adds recorded values per label set; `Aggregation.LAST_VALUE` keeps the
latest.

The parsers behind the collectors can be used on their own:
`parse_proc_stat`, `parse_meminfo`, `parse_net_dev`, `parse_cmdline` and
`parse_modules`. Durations use the `1h2m3.5s` form; `parse_duration` and
`format_duration` in `sysstatsmon.config` convert between that form and
seconds.

`sysstatsmon.types` defines the problem-reporting types `Status`, `Event`,
`Condition`, the `Monitor` and `Exporter` base classes and
`ProblemDaemonHandler`; `sysstatsmon.system_stats_monitor.HANDLER` is the
handler that creates a `SystemStatsMonitor` from a config path.

## What it does not do

- There is no command-line program; the monitor is used from Python.
- Metrics are only kept in memory. Nothing exports them (no HTTP endpoint,
  no push to a metrics backend); read them with `list_metrics()`.
- The system stats monitor reports metrics only: `start()` returns `None`
  and no problem events or conditions are produced.
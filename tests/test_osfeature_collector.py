import json

import pytest

from sysstatsmon.config import MetricConfig, OSFeatureStatsConfig
from sysstatsmon.osfeature_collector import (
    CmdlineArg,
    KernelModule,
    OSFeatureCollector,
    parse_cmdline,
    parse_modules,
)

MODULES = """nvidia_uvm 1000 0 - Live 0x0000000000000000 (POE)
vendorfs 2000 1 a,b, Live 0x0000000000000000 (O)
knownmod 3000 0 - Live 0x0000000000000000 (P)
ext4 4000 2 - Live 0x0000000000000000
"""


def _collector(tmp_path, known=None):
    path = tmp_path / "known.json"
    if known is not None:
        path.write_text(json.dumps([{"moduleName": name} for name in known]))
    config = OSFeatureStatsConfig(
        {"system/os_feature": MetricConfig("system/os_feature")}, str(path)
    )
    return OSFeatureCollector(config, str(tmp_path))


def _features(collector):
    return {
        r.labels["os_feature"]: (r.value, r.labels.get("value"))
        for r in collector.os_feature.list_metrics()
    }


def test_parse_cmdline():
    args = parse_cmdline('root=/dev/sda1 quiet csm.enabled=1 dyndbg="file a.c +p"')
    assert args == [
        CmdlineArg("root", "/dev/sda1"),
        CmdlineArg("quiet", ""),
        CmdlineArg("csm.enabled", "1"),
        CmdlineArg("dyndbg", "file a.c +p"),
    ]


def test_parse_modules_flags():
    modules = {m.module_name: m for m in parse_modules(MODULES)}
    assert modules["nvidia_uvm"].proprietary and modules["nvidia_uvm"].out_of_tree
    assert modules["vendorfs"].out_of_tree and not modules["vendorfs"].proprietary
    assert modules["vendorfs"].dependencies == ("a", "b")
    assert not modules["ext4"].kernel_tainted
    assert modules["ext4"].instances == 2


def test_parse_modules_rejects_short_line():
    with pytest.raises(ValueError):
        parse_modules("short 1 2")


def test_cmdline_features_enabled(tmp_path):
    collector = _collector(tmp_path)
    collector.record_features_from_cmdline(
        parse_cmdline(
            "csm.enabled=1 systemd.unified_cgroup_hierarchy=1 "
            "module.sig_enforce=1 loadpin.enabled=1"
        )
    )
    features = _features(collector)
    assert features["KTD"] == (1, None)
    assert features["UnifiedCgroupHierarchy"] == (1, None)
    assert features["KernelModuleIntegrity"] == (1, None)


def test_cmdline_features_default_and_invalid(tmp_path):
    collector = _collector(tmp_path)
    collector.record_features_from_cmdline(
        [CmdlineArg("csm.enabled", "yes"), CmdlineArg("module.sig_enforce", "1")]
    )
    features = _features(collector)
    assert features["KTD"] == (0, None)
    assert features["UnifiedCgroupHierarchy"] == (0, None)
    assert features["KernelModuleIntegrity"] == (0, None)


def test_modules_unknown_and_gpu(tmp_path):
    collector = _collector(tmp_path, known=["knownmod"])
    collector.record_features_from_modules(parse_modules(MODULES))
    features = _features(collector)
    assert features["UnknownModules"] == (1, "vendorfs")
    assert features["GPUSupport"] == (1, None)


def test_modules_without_known_file_are_all_unknown(tmp_path):
    collector = _collector(tmp_path)
    collector.record_features_from_modules(
        [KernelModule("vendorfs", out_of_tree=True), KernelModule("knownmod", proprietary=True)]
    )
    assert _features(collector)["UnknownModules"] == (1, "vendorfs,knownmod")


def test_modules_none_unknown(tmp_path):
    collector = _collector(tmp_path)
    collector.record_features_from_modules([KernelModule("ext4")])
    features = _features(collector)
    assert features["UnknownModules"] == (0, None)
    assert features["GPUSupport"] == (0, None)


def test_collect_reads_proc_files(tmp_path):
    (tmp_path / "cmdline").write_text("csm.enabled=1 quiet\n")
    (tmp_path / "modules").write_text(MODULES)
    collector = _collector(tmp_path, known=["knownmod", "vendorfs"])
    collector.collect()
    features = _features(collector)
    assert features["KTD"] == (1, None)
    assert features["UnknownModules"] == (0, None)
    assert features["GPUSupport"] == (1, None)


def test_collect_missing_cmdline_raises(tmp_path):
    collector = _collector(tmp_path)
    with pytest.raises(FileNotFoundError):
        collector.collect()


def test_no_display_name_disables_metric(tmp_path):
    collector = OSFeatureCollector(OSFeatureStatsConfig(), str(tmp_path / "missing"))
    collector.collect()
    assert collector.os_feature is None
"""Tests for external tool output parsers."""

import json

from host_vitals.parsers import (
    GPUStats,
    parse_ioreg_gpu,
    parse_nettop,
    parse_processor_name_json,
    parse_ps_processes,
)

GB = 1024 * 1024 * 1024


def test_parse_ps_processes():
    output = """  PID COMM
    1 launchd
  312 /usr/libexec/logd
 4410 Google Chrome Helper
"""
    assert parse_ps_processes(output) == {
        1: "launchd",
        312: "logd",
        4410: "Google Chrome Helper",
    }


def test_parse_ps_processes_skips_malformed_lines():
    output = "PID COMM\n\nabc def\n  77\n  88 ok\n"
    assert parse_ps_processes(output) == {88: "ok"}


def test_parse_nettop_rows():
    output = """time,,bytes_in,bytes_out,
Safari.412,1200,300,
mDNSResponder.88,50,60,
"""
    entries = parse_nettop(output)
    assert set(entries) == {"Safari", "mDNSResponder"}
    assert entries["Safari"].pid == 412
    assert entries["Safari"].bytes_in == 1200
    assert entries["Safari"].bytes_out == 300


def test_parse_nettop_aggregates_by_name_keeping_first_pid():
    output = "Google Chrome H.501,100,10,\nGoogle Chrome H.502,200,20,\n"
    entries = parse_nettop(output)
    assert entries["Google Chrome H"].pid == 501
    assert entries["Google Chrome H"].bytes_in == 300
    assert entries["Google Chrome H"].bytes_out == 30


def test_parse_nettop_skips_kernel_task_and_headers():
    output = """time,interface,state,bytes_in,bytes_out
kernel_task.0,999999,999999,
,1,2,
short
com.apple.WebKit.Networking.733,5,6,
"""
    entries = parse_nettop(output)
    assert list(entries) == ["com.apple.WebKit.Networking"]
    assert entries["com.apple.WebKit.Networking"].pid == 733


def test_parse_nettop_keeps_processes_that_look_like_header_words():
    output = """time,,bytes_in,bytes_out,
timed.123,10,20,
statesync.55,30,40,
com.apple.statekeeper.7,1,2,
"""
    entries = parse_nettop(output)
    assert set(entries) == {"timed", "statesync", "com.apple.statekeeper"}
    assert entries["timed"].pid == 123
    assert entries["statesync"].bytes_out == 40


def test_parse_nettop_bad_numbers_count_as_zero():
    entries = parse_nettop("curl.9,abc,40,\n")
    assert entries["curl"].bytes_in == 0
    assert entries["curl"].bytes_out == 40


APPLE_SILICON_IOREG = """
+-o AGXAcceleratorG14X  <class AGXAcceleratorG14X, id 0x1000003a0>
    {
      "IOClass" = "AGXAcceleratorG14X"
      "model" = "Apple M3 Max"
      "PerformanceStatistics" = {"In use system memory"=1073741824,"Device Utilization %"=37,"Renderer Utilization %"=30}
    }
"""

DISCRETE_IOREG = """
+-o AMDRadeonX6000_AMDNavi10GraphicsAccelerator
    {
      "IOClass" = "AMDRadeonX6000_AMDNavi10GraphicsAccelerator"
      "PerformanceStatistics" = {"Device Utilization %"=12}
      "VRAM,totalMB" = 8192
      "VRAM,freeMB" = 6144
    }
"""


def test_parse_ioreg_apple_silicon():
    """Apple Silicon reports shared memory; installed RAM is the total."""
    stats = parse_ioreg_gpu(APPLE_SILICON_IOREG, physical_memory=32 * GB)
    assert stats.name == "Apple M3 Max"
    assert stats.utilization == 37.0
    assert stats.memory_used == 1 * GB
    assert stats.memory_total == 32 * GB


def test_parse_ioreg_discrete_gpu():
    stats = parse_ioreg_gpu(DISCRETE_IOREG)
    assert stats.name == "AMD GPU"
    assert stats.utilization == 12.0
    assert stats.memory_total == 8 * GB
    assert stats.memory_used == 2 * GB


def test_parse_ioreg_clamps_utilization():
    stats = parse_ioreg_gpu('"Device Utilization %"=250')
    assert stats.utilization == 100.0


def test_parse_ioreg_empty_output():
    assert parse_ioreg_gpu("") == GPUStats()


def test_parse_ioreg_nvidia_class():
    stats = parse_ioreg_gpu('"IOClass" = "NVDA_GeForceAccelerator"')
    assert stats.name == "NVIDIA GPU"


def test_parse_processor_name_json():
    output = json.dumps({"SPHardwareDataType": [{"chip_type": "Apple M2 Pro", "cpu_type": "x"}]})
    assert parse_processor_name_json(output) == "Apple M2 Pro"


def test_parse_processor_name_json_intel_fallback():
    output = json.dumps({"SPHardwareDataType": [{"cpu_type": "Quad-Core Intel Core i7"}]})
    assert parse_processor_name_json(output) == "Quad-Core Intel Core i7"


def test_parse_processor_name_json_invalid():
    assert parse_processor_name_json("not json") is None
    assert parse_processor_name_json("[]") is None
    assert parse_processor_name_json('{"SPHardwareDataType": []}') is None

"""Per-process disk I/O counters via macOS libproc.

proc_pid_rusage is called through ctypes; the library is loaded on first
use so importing this module is harmless on other platforms. Elsewhere
psutil's per-process io counters are used instead.
"""

import ctypes
import functools
import sys
from ctypes import Structure, byref, c_int, c_uint8, c_uint64

import psutil

RUSAGE_INFO_V4 = 4


class RusageInfoV4(Structure):
    """rusage_info_v4 from sys/resource.h.

    The full layout is required: the kernel writes the whole struct.
    """

    _fields_ = [
        ("ri_uuid", c_uint8 * 16),
        ("ri_user_time", c_uint64),
        ("ri_system_time", c_uint64),
        ("ri_pkg_idle_wkups", c_uint64),
        ("ri_interrupt_wkups", c_uint64),
        ("ri_pageins", c_uint64),
        ("ri_wired_size", c_uint64),
        ("ri_resident_size", c_uint64),
        ("ri_phys_footprint", c_uint64),
        ("ri_proc_start_abstime", c_uint64),
        ("ri_proc_exit_abstime", c_uint64),
        ("ri_child_user_time", c_uint64),
        ("ri_child_system_time", c_uint64),
        ("ri_child_pkg_idle_wkups", c_uint64),
        ("ri_child_interrupt_wkups", c_uint64),
        ("ri_child_pageins", c_uint64),
        ("ri_child_elapsed_abstime", c_uint64),
        ("ri_diskio_bytesread", c_uint64),
        ("ri_diskio_byteswritten", c_uint64),
        ("ri_cpu_time_qos_default", c_uint64),
        ("ri_cpu_time_qos_maintenance", c_uint64),
        ("ri_cpu_time_qos_background", c_uint64),
        ("ri_cpu_time_qos_utility", c_uint64),
        ("ri_cpu_time_qos_legacy", c_uint64),
        ("ri_cpu_time_qos_user_initiated", c_uint64),
        ("ri_cpu_time_qos_user_interactive", c_uint64),
        ("ri_billed_system_time", c_uint64),
        ("ri_serviced_system_time", c_uint64),
        ("ri_logical_writes", c_uint64),
        ("ri_lifetime_max_phys_footprint", c_uint64),
        ("ri_instructions", c_uint64),
        ("ri_cycles", c_uint64),
        ("ri_billed_energy", c_uint64),
        ("ri_serviced_energy", c_uint64),
        ("ri_interval_max_phys_footprint", c_uint64),
        ("ri_runnable_time", c_uint64),
    ]


@functools.cache
def _libproc() -> ctypes.CDLL:
    lib = ctypes.CDLL("/usr/lib/libproc.dylib", use_errno=True)
    # int proc_pid_rusage(pid_t pid, int flavor, rusage_info_t *buffer)
    lib.proc_pid_rusage.argtypes = [c_int, c_int, ctypes.c_void_p]
    lib.proc_pid_rusage.restype = c_int
    return lib


def get_rusage(pid: int) -> RusageInfoV4 | None:
    """Get resource usage for a process.

    Returns:
        RusageInfoV4 on success, None if the process is gone or access is denied.
    """
    rusage = RusageInfoV4()
    result = _libproc().proc_pid_rusage(pid, RUSAGE_INFO_V4, byref(rusage))
    return rusage if result == 0 else None


def get_disk_io(pid: int) -> tuple[int, int] | None:
    """Return cumulative (bytes_read, bytes_written) for a process.

    On macOS the written figure is the larger of physical and logical
    writes, since writes that land in the page cache only show up as
    logical writes until they are flushed.

    Returns:
        Byte counters, or None if the process is gone or not readable.
    """
    if sys.platform == "darwin":
        rusage = get_rusage(pid)
        if rusage is None:
            return None
        written = max(rusage.ri_diskio_byteswritten, rusage.ri_logical_writes)
        return rusage.ri_diskio_bytesread, written

    try:
        counters = psutil.Process(pid).io_counters()
    except (psutil.Error, AttributeError):
        # AttributeError: io_counters is not available on every platform
        return None
    return counters.read_bytes, counters.write_bytes

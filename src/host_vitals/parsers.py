"""Output adapters for external diagnostic tools.

Each parser takes the raw stdout of one tool and returns typed values.
Malformed lines are skipped; nothing here raises on bad input.
"""

import json
import re
from dataclasses import dataclass

# Processes whose network traffic is never attributed
NETTOP_SKIPPED = frozenset({"kernel_task"})

_GPU_NAME = re.compile(r'"model" = "([^"]*)"')
_GPU_CLASS = re.compile(r'"IOClass" = "([^"]*)"')
_GPU_UTILIZATION = re.compile(r'"Device Utilization %"=(\d+)')
_VRAM_TOTAL = re.compile(r'"VRAM,totalMB" = (\d+)')
_VRAM_FREE = re.compile(r'"VRAM,freeMB" = (\d+)')
_GPU_SYSTEM_MEMORY = re.compile(r'"In use system memory"=(\d+)')

MB = 1024 * 1024


@dataclass(frozen=True)
class NettopEntry:
    """Cumulative traffic for one process name."""

    pid: int  # First pid seen for this name
    bytes_in: int
    bytes_out: int


@dataclass(frozen=True)
class GPUStats:
    """GPU figures parsed from the IOAccelerator registry dump."""

    name: str = "GPU"
    utilization: float = 0.0  # Percent
    memory_used: int = 0  # Bytes
    memory_total: int = 0  # Bytes; 0 when the GPU has no dedicated VRAM


def _basename(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1] or path


def parse_ps_processes(output: str) -> dict[int, str]:
    """Parse `ps -Aceo pid,comm` output into {pid: name}.

    The header line and lines without a numeric pid are skipped.
    """
    processes: dict[int, str] = {}
    for line in output.splitlines():
        parts = line.strip().split(None, 1)
        if len(parts) != 2:
            continue
        pid_text, command = parts
        if not pid_text.isdigit():
            continue  # Header
        processes[int(pid_text)] = _basename(command.strip())
    return processes


def parse_nettop(output: str) -> dict[str, NettopEntry]:
    """Parse `nettop -P -L 1` CSV output into cumulative bytes per process name.

    Rows look like `name.pid,bytes_in,bytes_out,...`. Rows for the same
    name are summed and keep the first pid seen.
    """
    entries: dict[str, NettopEntry] = {}
    for line in output.splitlines():
        if not line:
            continue

        columns = line.split(",")
        if len(columns) < 3:
            continue

        label = columns[0].strip()
        if label == "time":
            continue  # Header row
        name, sep, pid_text = label.rpartition(".")
        if not sep:
            name, pid_text = label, ""
        pid = int(pid_text) if pid_text.isdigit() else 0
        if not name or name in NETTOP_SKIPPED:
            continue

        try:
            bytes_in = int(columns[1].strip())
        except ValueError:
            bytes_in = 0
        try:
            bytes_out = int(columns[2].strip())
        except ValueError:
            bytes_out = 0

        existing = entries.get(name)
        if existing is None:
            entries[name] = NettopEntry(pid=pid, bytes_in=bytes_in, bytes_out=bytes_out)
        else:
            entries[name] = NettopEntry(
                pid=existing.pid,
                bytes_in=existing.bytes_in + bytes_in,
                bytes_out=existing.bytes_out + bytes_out,
            )
    return entries


def _gpu_name(output: str) -> str:
    match = _GPU_NAME.search(output)
    if match and match.group(1):
        return match.group(1)

    match = _GPU_CLASS.search(output)
    if match:
        io_class = match.group(1)
        if "AMD" in io_class:
            return "AMD GPU"
        if "NVIDIA" in io_class or "GeForce" in io_class:
            return "NVIDIA GPU"
        if "Intel" in io_class:
            return "Intel GPU"
    return "GPU"


def parse_ioreg_gpu(output: str, physical_memory: int = 0) -> GPUStats:
    """Parse `ioreg -r -c IOAccelerator` output.

    Discrete GPUs report VRAM totals; Apple Silicon reports only the system
    memory in use, in which case physical_memory stands in as the total.

    Args:
        output: ioreg stdout
        physical_memory: Installed RAM in bytes
    """
    utilization = 0.0
    match = _GPU_UTILIZATION.search(output)
    if match:
        utilization = max(0.0, min(100.0, float(match.group(1))))

    total = 0
    used = 0
    match = _VRAM_TOTAL.search(output)
    if match:
        total = int(match.group(1)) * MB
    match = _VRAM_FREE.search(output)
    if match:
        free = int(match.group(1)) * MB
        if total > free:
            used = total - free

    match = _GPU_SYSTEM_MEMORY.search(output)
    if match:
        used = int(match.group(1))

    if total == 0 and used > 0:
        total = physical_memory

    return GPUStats(
        name=_gpu_name(output),
        utilization=utilization,
        memory_used=min(used, total) if total else used,
        memory_total=total,
    )


def parse_processor_name_json(output: str) -> str | None:
    """Extract the chip name from `system_profiler SPHardwareDataType -json`."""
    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        return None

    items = data.get("SPHardwareDataType") if isinstance(data, dict) else None
    if not items or not isinstance(items, list) or not isinstance(items[0], dict):
        return None
    chip = items[0].get("chip_type") or items[0].get("cpu_type")
    return chip.strip() if isinstance(chip, str) and chip.strip() else None

"""Per-process GPU memory attribution from /proc/<pid>/fdinfo."""

import logging
import os
import time
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

import psutil

from amdmemtop.config import DEFAULT_PROC_ROOT
from amdmemtop.models import EnumerationFailed, ProcessMemoryRecord

logger = logging.getLogger(__name__)

KIB = 1024
MIB = 1024 * KIB

# Processes without GPU memory are listed only above this RSS
RSS_NOISE_FLOOR = MIB

DRIVER_PREFIX = "drm-driver:"
VRAM_PREFIX = "drm-memory-vram:"
GTT_PREFIX = "drm-memory-gtt:"
AMDGPU_DRIVER = "amdgpu"

UNIT_MULTIPLIERS = {
    "B": 1,
    "KiB": KIB,
    "MiB": MIB,
    "GiB": 1024 * MIB,
}
DEFAULT_UNIT_MULTIPLIER = KIB

PROCESS_ATTRS = ["pid", "name", "cmdline", "memory_info"]


@dataclass(slots=True, frozen=True)
class HandleUsage:
    """GPU memory reported by a single DRM file descriptor."""

    vram: int = 0
    gtt: int = 0
    is_amdgpu: bool = False


@dataclass(slots=True, frozen=True)
class ProcessUsage:
    """Raw per-process totals before filtering and RAM reconciliation."""

    pid: int
    name: str
    vram: int
    gtt: int
    rss: int
    is_amdgpu: bool


def parse_memory_value(value: str) -> int:
    """
    Convert an fdinfo memory value such as ``"1024 KiB"`` to bytes.

    A missing or unknown unit is taken as KiB.

    Raises:
        ValueError: If there is no unsigned integer amount.
    """
    parts = value.split()
    if not parts or not parts[0].isdigit():
        raise ValueError(f"malformed memory value: {value!r}")
    unit = parts[1] if len(parts) > 1 else ""
    return int(parts[0]) * UNIT_MULTIPLIERS.get(unit, DEFAULT_UNIT_MULTIPLIER)


def parse_fdinfo(text: str) -> HandleUsage:
    """Sum the VRAM and GTT counters of one fdinfo entry."""
    vram = 0
    gtt = 0
    is_amdgpu = False

    for line in text.splitlines():
        if line.startswith(DRIVER_PREFIX):
            is_amdgpu = is_amdgpu or line[len(DRIVER_PREFIX) :].strip() == AMDGPU_DRIVER
            continue

        for prefix in (VRAM_PREFIX, GTT_PREFIX):
            if not line.startswith(prefix):
                continue
            try:
                amount = parse_memory_value(line[len(prefix) :])
            except ValueError:
                break  # Malformed lines are ignored
            if prefix == VRAM_PREFIX:
                vram += amount
            else:
                gtt += amount
            break

    return HandleUsage(vram=vram, gtt=gtt, is_amdgpu=is_amdgpu)


def read_fdinfo(path: str) -> HandleUsage:
    """Read one fdinfo entry; an unreadable entry contributes nothing."""
    try:
        with open(path, errors="replace") as f:
            return parse_fdinfo(f.read())
    except OSError as e:
        logger.debug("fdinfo %s unavailable: %s", path, e)
        return HandleUsage()


def enumerate_processes() -> list[psutil.Process]:
    """
    List all visible processes with the attributes needed for attribution.

    Attributes that cannot be read (AccessDenied) come back as None.

    Raises:
        EnumerationFailed: If the process table itself is unreadable.
    """
    try:
        return list(psutil.process_iter(attrs=PROCESS_ATTRS))
    except (OSError, psutil.Error) as e:
        raise EnumerationFailed(f"cannot enumerate processes: {e}") from e


def within_deadline(
    processes: Iterable[psutil.Process], deadline: float | None
) -> Iterator[psutil.Process]:
    """Yield processes until the monotonic ``deadline`` has passed."""
    for proc in processes:
        if deadline is not None and time.monotonic() > deadline:
            logger.warning("Process scan deadline reached, remaining processes skipped")
            return
        yield proc


def _display_name(info: dict) -> str:
    cmdline = info.get("cmdline") or []
    return " ".join(cmdline) if cmdline else info.get("name") or ""


def attribute_process(
    proc: psutil.Process, proc_root: str = DEFAULT_PROC_ROOT
) -> ProcessUsage | None:
    """
    Sum the GPU memory held by a process's open amdgpu handles.

    Returns None when the fdinfo directory cannot be listed, which is the
    usual outcome for other users' processes without root, or for a process
    that exited mid-scan.
    """
    fdinfo_dir = os.path.join(proc_root, str(proc.pid), "fdinfo")
    try:
        entries = os.listdir(fdinfo_dir)
    except OSError:
        return None

    vram = 0
    gtt = 0
    is_amdgpu = False
    for entry in entries:
        usage = read_fdinfo(os.path.join(fdinfo_dir, entry))
        # Only amdgpu handles count; other DRM drivers report their own memory
        if not usage.is_amdgpu:
            continue
        vram += usage.vram
        gtt += usage.gtt
        is_amdgpu = True

    info = proc.info
    mem_info = info.get("memory_info")
    return ProcessUsage(
        pid=proc.pid,
        name=_display_name(info),
        vram=vram,
        gtt=gtt,
        rss=mem_info.rss if mem_info else 0,
        is_amdgpu=is_amdgpu,
    )


def is_retained(usage: ProcessUsage) -> bool:
    """Keep processes with GPU memory or a non-trivial RSS.

    The driver identity is not consulted.
    """
    return usage.vram > 0 or usage.gtt > 0 or usage.rss > RSS_NOISE_FLOOR


def to_record(usage: ProcessUsage) -> ProcessMemoryRecord:
    """Build the record, subtracting GTT from RSS so shared pages count once."""
    ram = usage.rss - usage.gtt if usage.rss > usage.gtt else 0
    return ProcessMemoryRecord(
        pid=usage.pid,
        name=usage.name,
        vram=usage.vram,
        gtt=usage.gtt,
        ram=ram,
    )


def scan_processes(
    proc_root: str = DEFAULT_PROC_ROOT, deadline: float | None = None
) -> list[ProcessMemoryRecord]:
    """
    Attribute VRAM, GTT and RAM to every visible process.

    Processes whose handles cannot be inspected are skipped silently, so
    without root the result covers only the current user's processes.

    Raises:
        EnumerationFailed: If the process table is unreadable.
    """
    processes = within_deadline(enumerate_processes(), deadline)
    usages = (attribute_process(proc, proc_root) for proc in processes)
    return [to_record(usage) for usage in usages if usage is not None and is_retained(usage)]


def is_privileged() -> bool:
    """Whether fdinfo of every process is readable (effective root)."""
    return os.geteuid() == 0

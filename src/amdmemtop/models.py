"""Data models for amdmemtop."""

from dataclasses import dataclass, field
from enum import Enum


class SamplingError(Exception):
    """Base exception for sampling failures."""


class NoDeviceFound(SamplingError):
    """No AMD GPU exposes memory accounting in sysfs."""


class EnumerationFailed(SamplingError):
    """The OS process table could not be enumerated."""


class PrimaryMemoryQueryFailed(SamplingError):
    """Host-wide virtual memory totals could not be read."""


class SortKey(Enum):
    """Sort keys for the process ranking."""

    RAM = "ram"
    GTT = "gtt"
    VRAM = "vram"


@dataclass(slots=True, frozen=True)
class DeviceMemoryStats:
    """Memory counters of a single AMD GPU, in bytes."""

    vram_total: int = 0
    vram_used: int = 0
    gtt_total: int = 0
    gtt_used: int = 0


@dataclass(slots=True, frozen=True)
class ProcessMemoryRecord:
    """Memory attributed to one process."""

    pid: int
    name: str  # Full command line, or the short process name
    vram: int  # Bytes
    gtt: int  # Bytes
    ram: int  # RSS minus GTT, clamped at zero


@dataclass(slots=True, frozen=True)
class Snapshot:
    """Result of one sampling cycle.

    When ``sampling_error`` is set the remaining fields are zero and must not
    be shown as current data.
    """

    host_ram_total: int
    host_ram_used: int
    device: DeviceMemoryStats = field(default_factory=DeviceMemoryStats)
    processes: tuple[ProcessMemoryRecord, ...] = ()
    sampling_error: str | None = None

    @classmethod
    def failed(cls, message: str) -> "Snapshot":
        """Build the error form of a snapshot."""
        return cls(host_ram_total=0, host_ram_used=0, sampling_error=message)

    @property
    def ok(self) -> bool:
        return self.sampling_error is None


def _percent(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return part / whole * 100


@dataclass(slots=True, frozen=True)
class MemoryBreakdown:
    """Physical memory split for unified-memory systems.

    Total physical memory is the OS-visible RAM plus the VRAM carve-out. Of
    the RAM the OS reports as used, the GTT portion is GPU-shared and is
    shown separately from ordinary system usage.
    """

    physical_total: int
    os_visible: int
    system_used: int
    gpu_in_ram: int
    hardware_reserved: int

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot) -> "MemoryBreakdown":
        device = snapshot.device
        return cls(
            physical_total=snapshot.host_ram_total + device.vram_total,
            os_visible=snapshot.host_ram_total,
            system_used=max(0, snapshot.host_ram_used - device.gtt_used),
            gpu_in_ram=device.gtt_used,
            hardware_reserved=device.vram_total,
        )

    @property
    def os_visible_percent(self) -> float:
        return _percent(self.os_visible, self.physical_total)

    @property
    def system_used_percent(self) -> float:
        return _percent(self.system_used, self.os_visible)

    @property
    def gpu_in_ram_percent(self) -> float:
        return _percent(self.gpu_in_ram, self.os_visible)

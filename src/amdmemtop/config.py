"""Runtime configuration for amdmemtop."""

from dataclasses import dataclass

DEFAULT_POLL_RATE = 1.0
DEFAULT_CYCLE_TIMEOUT = 0.9
DEFAULT_DRM_ROOT = "/sys/class/drm"
DEFAULT_PROC_ROOT = "/proc"
DEFAULT_PROCESS_LIMIT = 15


@dataclass(slots=True, frozen=True)
class MonitorConfig:
    """Settings shared by the sampler and the UI."""

    poll_rate: float = DEFAULT_POLL_RATE  # Seconds between cycles
    cycle_timeout: float = DEFAULT_CYCLE_TIMEOUT  # Process scan budget per cycle
    drm_root: str = DEFAULT_DRM_ROOT
    proc_root: str = DEFAULT_PROC_ROOT
    process_limit: int = DEFAULT_PROCESS_LIMIT

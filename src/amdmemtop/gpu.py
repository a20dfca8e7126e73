"""AMD GPU device memory counters read from sysfs."""

import glob
import logging
import os

from amdmemtop.config import DEFAULT_DRM_ROOT
from amdmemtop.models import DeviceMemoryStats, NoDeviceFound

logger = logging.getLogger(__name__)

DISCOVERY_FILE = "mem_info_vram_used"


def find_device_dir(drm_root: str = DEFAULT_DRM_ROOT) -> str:
    """
    Locate the device directory of the first AMD GPU.

    Raises:
        NoDeviceFound: If no card exposes ``mem_info_vram_used``.
    """
    matches = sorted(glob.glob(os.path.join(drm_root, "card*", "device", DISCOVERY_FILE)))
    if not matches:
        raise NoDeviceFound("no AMD GPU found")
    return os.path.dirname(matches[0])


def parse_counter(text: str) -> int:
    """Parse a sysfs counter. Raises ValueError unless it is an unsigned decimal."""
    value = text.strip()
    if not value.isdigit():
        raise ValueError(f"not an unsigned decimal: {value!r}")
    return int(value)


def read_counter(path: str) -> int:
    """Read one counter file, degrading any failure to 0."""
    try:
        with open(path) as f:
            return parse_counter(f.read())
    except (OSError, ValueError) as e:
        logger.debug("Counter %s unavailable: %s", path, e)
        return 0


def read_device_stats(drm_root: str = DEFAULT_DRM_ROOT) -> DeviceMemoryStats:
    """
    Read VRAM and GTT usage of the first AMD GPU.

    Each counter is read exactly once; an unreadable counter reads as zero
    while the others are still reported.

    Raises:
        NoDeviceFound: If no AMD GPU is present.
    """
    device_dir = find_device_dir(drm_root)
    return DeviceMemoryStats(
        vram_total=read_counter(os.path.join(device_dir, "mem_info_vram_total")),
        vram_used=read_counter(os.path.join(device_dir, "mem_info_vram_used")),
        gtt_total=read_counter(os.path.join(device_dir, "mem_info_gtt_total")),
        gtt_used=read_counter(os.path.join(device_dir, "mem_info_gtt_used")),
    )

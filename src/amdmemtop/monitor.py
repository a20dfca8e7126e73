"""Sampling engine for amdmemtop."""

import logging
import threading
import time
from queue import Queue

import psutil

from amdmemtop.config import MonitorConfig
from amdmemtop.gpu import read_device_stats
from amdmemtop.models import (
    DeviceMemoryStats,
    EnumerationFailed,
    NoDeviceFound,
    PrimaryMemoryQueryFailed,
    Snapshot,
)
from amdmemtop.procs import scan_processes

logger = logging.getLogger(__name__)


def read_host_memory() -> tuple[int, int]:
    """
    Return host RAM (total, used) in bytes.

    Raises:
        PrimaryMemoryQueryFailed: If psutil cannot read virtual memory.
    """
    try:
        mem = psutil.virtual_memory()
    except (OSError, psutil.Error, RuntimeError) as e:
        raise PrimaryMemoryQueryFailed(f"cannot read system memory: {e}") from e
    return mem.total, mem.used


def collect_snapshot(config: MonitorConfig, deadline: float | None = None) -> Snapshot:
    """
    Run one sampling cycle.

    Only a failed host memory query fails the cycle. A missing GPU or an
    unreadable process table degrade to zero stats and an empty process list.
    """
    try:
        total, used = read_host_memory()
    except PrimaryMemoryQueryFailed as e:
        logger.error("%s", e)
        return Snapshot.failed(str(e))

    try:
        device = read_device_stats(config.drm_root)
    except NoDeviceFound as e:
        logger.warning("%s", e)
        device = DeviceMemoryStats()

    try:
        processes = tuple(scan_processes(config.proc_root, deadline))
    except EnumerationFailed as e:
        logger.warning("%s", e)
        processes = ()

    return Snapshot(
        host_ram_total=total,
        host_ram_used=used,
        device=device,
        processes=processes,
    )


class SystemMonitor:
    """
    Memory monitor that samples RAM, VRAM and GTT usage.

    Runs in a separate daemon thread and pushes snapshots to a thread-safe
    Queue. Cycles run back to back, so a new one never starts before the
    previous snapshot has been queued.
    """

    def __init__(
        self,
        update_queue: Queue[Snapshot],
        config: MonitorConfig | None = None,
    ) -> None:
        """
        Initialize the SystemMonitor.

        Args:
            update_queue: Thread-safe queue to push snapshots to.
            config: Sampling settings. Defaults to MonitorConfig().
        """
        self._queue = update_queue
        self._config = config or MonitorConfig()
        self._poll_rate = max(0.1, self._config.poll_rate)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(0.1, value)  # Minimum 0.1 seconds

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="SystemMonitor",
        )
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                deadline = time.monotonic() + self._config.cycle_timeout
                snapshot = collect_snapshot(self._config, deadline)
                # A cycle that outlived a stop request is dropped
                if not self._stop_event.is_set():
                    self._queue.put(snapshot)
            except Exception:
                logger.exception("Sampling cycle failed")

            # Wait for poll_rate seconds or until stop is requested
            self._stop_event.wait(timeout=self._poll_rate)

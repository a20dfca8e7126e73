"""Verification Test: Chaos Monkey - Random process termination resilience.

Processes exit while their fdinfo directories are being walked. The scan
must skip them instead of failing the cycle.
"""

import multiprocessing
import random
import time
from queue import Empty, Queue

import pytest

from amdmemtop.config import MonitorConfig
from amdmemtop.models import Snapshot
from amdmemtop.monitor import SystemMonitor
from amdmemtop.procs import scan_processes


def dummy_worker(duration: float = 60.0) -> None:
    """A dummy worker process that sleeps for a given duration."""
    try:
        time.sleep(duration)
    except (KeyboardInterrupt, SystemExit):
        pass


class TestChaosMonkey:
    """Chaos Monkey verification suite tests."""

    def test_monitor_survives_process_termination(self):
        """Test that the monitor keeps delivering snapshots while processes die."""
        processes = []
        for _ in range(30):
            p = multiprocessing.Process(target=dummy_worker, args=(60.0,))
            p.start()
            processes.append(p)

        queue: Queue[Snapshot] = Queue()
        monitor = SystemMonitor(queue, MonitorConfig(poll_rate=0.3, cycle_timeout=5.0))

        try:
            monitor.start()

            snapshot = queue.get(timeout=5.0)
            assert snapshot.ok

            for p in random.sample(processes, 15):
                if p.is_alive():
                    p.terminate()
                time.sleep(0.05)

            snapshots_after_chaos = 0
            start_time = time.time()
            while time.time() - start_time < 5.0:
                try:
                    snapshot = queue.get(timeout=1.0)
                except Empty:
                    continue
                assert snapshot.ok
                assert isinstance(snapshot.processes, tuple)
                snapshots_after_chaos += 1

            assert snapshots_after_chaos >= 3, (
                f"Expected at least 3 snapshots after chaos, got {snapshots_after_chaos}"
            )
            assert monitor.is_running, "Monitor should still be running after chaos"

        finally:
            monitor.stop()
            for p in processes:
                if p.is_alive():
                    p.terminate()
            for p in processes:
                p.join(timeout=1.0)

    def test_scan_handles_terminated_process(self):
        """Test scan_processes skips a process that has just exited."""
        p = multiprocessing.Process(target=dummy_worker, args=(60.0,))
        p.start()
        time.sleep(0.1)
        p.terminate()
        p.join(timeout=1.0)

        try:
            records = scan_processes()
        except Exception as e:
            pytest.fail(f"scan_processes raised an exception: {e}")
        assert p.pid not in {record.pid for record in records}

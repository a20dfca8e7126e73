"""Shared fixtures: fake sysfs/procfs trees and a fake process table."""

from pathlib import Path
from types import SimpleNamespace

import psutil
import pytest

KIB = 1024
MIB = 1024 * KIB
GIB = 1024 * MIB


class FakeProcess:
    """Stand-in for a psutil.Process returned by process_iter(attrs=...)."""

    def __init__(
        self,
        pid: int,
        name: str | None = "",
        cmdline: list[str] | None = None,
        rss: int | None = 0,
    ) -> None:
        self.pid = pid
        self.info = {
            "pid": pid,
            "name": name,
            "cmdline": cmdline,
            "memory_info": SimpleNamespace(rss=rss) if rss is not None else None,
        }


def write_device(drm_root: Path, card: str = "card0", **counters: str) -> Path:
    """Create ``<drm_root>/<card>/device`` with the given mem_info_* files."""
    device_dir = drm_root / card / "device"
    device_dir.mkdir(parents=True, exist_ok=True)
    for name, content in counters.items():
        (device_dir / f"mem_info_{name}").write_text(content)
    return device_dir


def write_fdinfo(proc_root: Path, pid: int, fd: int, text: str) -> Path:
    """Create one ``<proc_root>/<pid>/fdinfo/<fd>`` entry."""
    fdinfo_dir = proc_root / str(pid) / "fdinfo"
    fdinfo_dir.mkdir(parents=True, exist_ok=True)
    path = fdinfo_dir / str(fd)
    path.write_text(text)
    return path


def amdgpu_fdinfo(vram_kib: int = 0, gtt_kib: int = 0) -> str:
    """fdinfo text as written by the amdgpu driver."""
    return (
        "pos:\t0\n"
        "flags:\t02100002\n"
        "drm-driver:\tamdgpu\n"
        "drm-client-id:\t42\n"
        f"drm-memory-vram:\t{vram_kib} KiB\n"
        f"drm-memory-gtt:\t{gtt_kib} KiB\n"
        "drm-memory-cpu:\t0 KiB\n"
    )


@pytest.fixture
def drm_root(tmp_path: Path) -> Path:
    root = tmp_path / "drm"
    root.mkdir()
    return root


@pytest.fixture
def proc_root(tmp_path: Path) -> Path:
    root = tmp_path / "proc"
    root.mkdir()
    return root


@pytest.fixture
def process_table(monkeypatch) -> list[FakeProcess]:
    """Replace psutil.process_iter with a list the test fills in."""
    processes: list[FakeProcess] = []
    monkeypatch.setattr(psutil, "process_iter", lambda attrs=None: iter(processes))
    return processes

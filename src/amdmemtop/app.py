"""amdmemtop - Main Textual application."""

import logging
import sys
from collections.abc import Iterable
from operator import attrgetter
from queue import Empty, Queue

import click
from textual.app import App, ComposeResult
from textual.containers import Container
from textual.css.query import NoMatches
from textual.widgets import DataTable, Footer, Static

from amdmemtop.config import (
    DEFAULT_DRM_ROOT,
    DEFAULT_POLL_RATE,
    DEFAULT_PROC_ROOT,
    DEFAULT_PROCESS_LIMIT,
    MonitorConfig,
)
from amdmemtop.models import MemoryBreakdown, ProcessMemoryRecord, Snapshot, SortKey
from amdmemtop.monitor import SystemMonitor, collect_snapshot
from amdmemtop.procs import is_privileged

logger = logging.getLogger(__name__)

DEFAULT_LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"

# Fallback of rank() when no key is given
DEFAULT_RANK_KEY = SortKey.GTT
# Key the UI starts with
INITIAL_SORT_KEY = SortKey.RAM

NAME_WIDTH = 40
PRIVILEGE_NOTICE = "[!] Run with sudo for full process breakdown."

_RANK_FIELDS = {
    SortKey.RAM: "ram",
    SortKey.GTT: "gtt",
    SortKey.VRAM: "vram",
}


def format_bytes(size: int) -> str:
    """Format bytes as a human-readable string with binary units."""
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in "KMGTPE":
        value /= 1024
        if value < 1024 or unit == "E":
            break
    return f"{value:.1f} {unit}iB"


def format_name(name: str, max_len: int = NAME_WIDTH) -> str:
    """Shorten a command line by cutting out its middle."""
    if len(name) <= max_len:
        return name
    side = (max_len - 3) // 2
    if side <= 0:
        return name[:max_len]
    return name[:side] + "..." + name[len(name) - side :]


def rank(
    processes: Iterable[ProcessMemoryRecord], sort_key: SortKey | None = None
) -> list[ProcessMemoryRecord]:
    """Order processes by the given key, largest first."""
    field = _RANK_FIELDS.get(sort_key, _RANK_FIELDS[DEFAULT_RANK_KEY])
    return sorted(processes, key=attrgetter(field), reverse=True)


def render_breakdown(snapshot: Snapshot) -> str:
    """Physical memory tree for unified-memory systems."""
    b = MemoryBreakdown.from_snapshot(snapshot)
    return (
        "Physical Memory Breakdown\n"
        f"Total Physical RAM: {format_bytes(b.physical_total)}\n"
        f"  ├─ OS Visible:     {format_bytes(b.os_visible)} ({b.os_visible_percent:.1f}%)\n"
        f"  │   ├─ System:     {format_bytes(b.system_used)} ({b.system_used_percent:.1f}%)\n"
        f"  │   └─ GPU GTT:    {format_bytes(b.gpu_in_ram)} ({b.gpu_in_ram_percent:.1f}%)\n"
        f"  └─ Hardware Res:   {format_bytes(b.hardware_reserved)} (Fixed VRAM)"
    )


def render_device(snapshot: Snapshot) -> str:
    """GPU memory usage against capacity."""
    d = snapshot.device
    return (
        "AMD GPU Memory Status\n"
        f"VRAM (Dedicated): {format_bytes(d.vram_used)} / {format_bytes(d.vram_total)}\n"
        f"GTT  (Shared):    {format_bytes(d.gtt_used)} / {format_bytes(d.gtt_total)}"
    )


def render_report(
    snapshot: Snapshot,
    sort_key: SortKey | None = INITIAL_SORT_KEY,
    privileged: bool = True,
    limit: int = DEFAULT_PROCESS_LIMIT,
) -> str:
    """Render a snapshot as plain text, as printed by ``--once``."""
    if not snapshot.ok:
        return f"Error: {snapshot.sampling_error}"

    lines = [render_breakdown(snapshot), "", render_device(snapshot)]
    if not privileged:
        lines += ["", PRIVILEGE_NOTICE]

    processes = rank(snapshot.processes, sort_key)[:limit]
    if processes:
        label = (sort_key if sort_key in _RANK_FIELDS else DEFAULT_RANK_KEY).name
        lines += ["", f"Top Processes (Sorted by {label})"]
        lines.append(f"{'PID':<7} {'COMMAND':<{NAME_WIDTH}} {'VRAM':<12} {'GTT':<12} {'RAM':<12}")
        for proc in processes:
            lines.append(
                f"{proc.pid:<7} {format_name(proc.name):<{NAME_WIDTH}} "
                f"{format_bytes(proc.vram):<12} {format_bytes(proc.gtt):<12} "
                f"{format_bytes(proc.ram):<12}"
            )
    return "\n".join(lines)


class BreakdownStats(Static):
    """Header widget showing the memory breakdown and GPU status."""

    DEFAULT_CSS = """
    BreakdownStats {
        height: auto;
        padding: 1;
        background: $surface;
    }
    """

    def compose(self) -> ComposeResult:
        """Compose the stats layout."""
        yield Static("Loading memory info...", id="breakdown-info", markup=False)
        yield Static("", id="device-info", markup=False)

    def update_stats(self, snapshot: Snapshot) -> None:
        """Show a usable snapshot, or its error in place of the stats."""
        breakdown = self.query_one("#breakdown-info", Static)
        device = self.query_one("#device-info", Static)
        if snapshot.ok:
            breakdown.update(render_breakdown(snapshot))
            device.update(render_device(snapshot))
        else:
            breakdown.update(f"Error: {snapshot.sampling_error}")
            device.update("")


class ProcessTable(Container):
    """Container for the per-process memory table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(
        self,
        *args,
        sort_key: SortKey = INITIAL_SORT_KEY,
        limit: int = DEFAULT_PROCESS_LIMIT,
        **kwargs,
    ) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._sort_key = sort_key
        self._limit = limit
        self._processes: tuple[ProcessMemoryRecord, ...] = ()
        self._current_pids: list[int] = []

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    @property
    def current_pids(self) -> list[int]:
        """PIDs currently shown, in display order."""
        return list(self._current_pids)

    def set_sort_key(self, key: SortKey) -> None:
        """Change the sort key and re-rank the shown processes."""
        self._sort_key = key
        self._render_rows()

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"

        table.add_column("PID", key="pid", width=8)
        table.add_column("COMMAND", key="command", width=NAME_WIDTH)
        table.add_column("VRAM", key="vram", width=12)
        table.add_column("GTT", key="gtt", width=12)
        table.add_column("RAM", key="ram", width=12)
        self._update_title()

    def update_processes(self, processes: Iterable[ProcessMemoryRecord]) -> None:
        """Replace the table contents with newly sampled processes."""
        self._processes = tuple(processes)
        self._render_rows()

    def _update_title(self) -> None:
        self.border_title = f"Top Processes (Sorted by {self._sort_key.name})"

    def _render_rows(self) -> None:
        """Rebuild rows; PIDs come and go between cycles so rows are not reused."""
        table = self.query_one("#process-table", DataTable)
        table.clear()

        ranked = rank(self._processes, self._sort_key)[: self._limit]
        for proc in ranked:
            table.add_row(
                str(proc.pid),
                format_name(proc.name),
                format_bytes(proc.vram),
                format_bytes(proc.gtt),
                format_bytes(proc.ram),
                key=str(proc.pid),
            )
        self._current_pids = [proc.pid for proc in ranked]
        self._update_title()


class MemoryApp(App):
    """Main amdmemtop application."""

    TITLE = "amdmemtop"
    SUB_TITLE = "AMD Unified Memory Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #breakdown-stats {
        dock: top;
        height: auto;
    }

    #device-info {
        padding-top: 1;
    }

    #privilege-notice {
        color: $warning;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "sort('ram')", "RAM"),
        ("g", "sort('gtt')", "GTT"),
        ("v", "sort('vram')", "VRAM"),
    ]

    def __init__(
        self,
        config: MonitorConfig | None = None,
        sort_key: SortKey = INITIAL_SORT_KEY,
        privileged: bool | None = None,
    ) -> None:
        """Initialize the MemoryApp."""
        super().__init__()
        self._config = config or MonitorConfig()
        self._initial_sort_key = sort_key
        self._privileged = is_privileged() if privileged is None else privileged
        self._update_queue: Queue[Snapshot] = Queue()
        self._monitor = SystemMonitor(self._update_queue, self._config)

    @property
    def privileged(self) -> bool:
        return self._privileged

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield BreakdownStats(id="breakdown-stats")
        notice = Static(PRIVILEGE_NOTICE, id="privilege-notice", markup=False)
        notice.display = not self._privileged
        yield notice
        yield ProcessTable(sort_key=self._initial_sort_key, limit=self._config.process_limit)
        yield Footer()

    def on_mount(self) -> None:
        """Start the monitor when the app is mounted."""
        self._monitor.start()
        self.set_interval(0.25, self._check_for_updates)

    def on_unmount(self) -> None:
        self._monitor.stop()

    def _check_for_updates(self) -> None:
        """Show the most recent snapshot waiting in the queue."""
        snapshot = None
        while True:
            try:
                snapshot = self._update_queue.get_nowait()
            except Empty:
                break

        if snapshot is not None:
            self.show_snapshot(snapshot)

    def show_snapshot(self, snapshot: Snapshot) -> None:
        """Update the UI with a new snapshot."""
        try:
            header = self.query_one("#breakdown-stats", BreakdownStats)
            process_table = self.query_one(ProcessTable)
        except NoMatches:
            logger.debug("Snapshot arrived before the UI was mounted")
            return

        header.update_stats(snapshot)
        process_table.update_processes(snapshot.processes if snapshot.ok else ())

    def action_sort(self, key: str) -> None:
        """Switch the process ranking to another key."""
        sort_key = SortKey(key)
        self.query_one(ProcessTable).set_sort_key(sort_key)
        self.notify(f"Sort: {sort_key.name}")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()


def setup_logging(log_file: str | None, verbose: bool = False) -> None:
    """Route package logs to a file; the terminal belongs to the UI."""
    package_logger = logging.getLogger("amdmemtop")
    package_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    if not log_file:
        package_logger.addHandler(logging.NullHandler())
        return

    try:
        file_handler = logging.FileHandler(log_file)
    except OSError as e:
        raise click.ClickException(f"Failed to set up log file '{log_file}': {e}") from e
    file_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
    package_logger.addHandler(file_handler)
    logger.info("Logging initialized. Logs will be saved to %s", log_file)


@click.command(help="Monitor RAM, VRAM and GTT usage on AMD unified-memory systems.")
@click.option(
    "-i",
    "--interval",
    default=DEFAULT_POLL_RATE,
    show_default=True,
    type=click.FloatRange(min=0.1),
    envvar="AMDMEMTOP_INTERVAL",
    help="Sampling period in seconds.",
)
@click.option(
    "-s",
    "--sort",
    "sort_key",
    default=INITIAL_SORT_KEY.value,
    show_default=True,
    type=click.Choice([key.value for key in SortKey], case_sensitive=False),
    envvar="AMDMEMTOP_SORT",
    help="Initial process sort key.",
)
@click.option(
    "-n",
    "--limit",
    default=DEFAULT_PROCESS_LIMIT,
    show_default=True,
    type=click.IntRange(min=1),
    envvar="AMDMEMTOP_LIMIT",
    help="Number of processes to list.",
)
@click.option(
    "--drm-root",
    default=DEFAULT_DRM_ROOT,
    show_default=True,
    envvar="AMDMEMTOP_DRM_ROOT",
    help="Directory holding the DRM card entries.",
)
@click.option(
    "--proc-root",
    default=DEFAULT_PROC_ROOT,
    show_default=True,
    envvar="AMDMEMTOP_PROC_ROOT",
    help="Mount point of procfs.",
)
@click.option("-l", "--log-file", envvar="AMDMEMTOP_LOG_FILE", help="File path to save logs.")
@click.option("-v", "--verbose", is_flag=True, help="Log field-level read failures.")
@click.option("--once", is_flag=True, help="Print a single snapshot and exit.")
def main(
    interval: float,
    sort_key: str,
    limit: int,
    drm_root: str,
    proc_root: str,
    log_file: str | None,
    verbose: bool,
    once: bool,
) -> None:
    """Entry point for amdmemtop."""
    setup_logging(log_file, verbose)
    config = MonitorConfig(
        poll_rate=interval,
        cycle_timeout=interval * 0.9,
        drm_root=drm_root,
        proc_root=proc_root,
        process_limit=limit,
    )
    key = SortKey(sort_key.lower())

    if once:
        snapshot = collect_snapshot(config)
        click.echo(render_report(snapshot, key, is_privileged(), limit))
        if not snapshot.ok:
            sys.exit(1)
        return

    app = MemoryApp(config, sort_key=key)
    app.run()


if __name__ == "__main__":
    main()

import threading
from typing import Optional
from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text
from vtq.domain.models import JobStatus
from vtq.ui.state import UIState, JobRow

_STATUS_STYLES = {
    JobStatus.PENDING: "dim",
    JobStatus.PROCESSING: "cyan",
    JobStatus.PAUSED: "yellow",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
    JobStatus.CANCELLED: "magenta",
}


class Dashboard:
    """Live terminal view of the queue, refreshed from UIState."""

    def __init__(self, state: UIState, console: Optional[Console] = None, max_rows: int = 12):
        self.state = state
        self.console = console or Console()
        self.max_rows = max_rows
        self._live: Optional[Live] = None
        self._refresh_thread: Optional[threading.Thread] = None
        self._stop_refresh = threading.Event()

    def _sanitize_filename(self, filename: str, max_len: int = 30) -> str:
        """Truncate filename: prefix…suffix."""
        if len(filename) <= max_len:
            return filename
        part_len = (max_len - 1) // 2
        return f"{filename[:part_len]}…{filename[-part_len:]}"

    def _render_row(self, table: Table, row: JobRow) -> None:
        style = _STATUS_STYLES.get(row.status, "")
        status = row.status.value
        if row.fallback and row.status == JobStatus.PROCESSING:
            status = f"{status} (cpu)"
        detail = ""
        if row.status == JobStatus.PROCESSING:
            detail = f"{row.fps:.1f}fps {row.speed} {row.bitrate}"
        elif row.status == JobStatus.FAILED and row.error_message:
            detail = row.error_message.splitlines()[0]
        table.add_row(
            self._sanitize_filename(row.name),
            Text(status, style=style),
            ProgressBar(total=100, completed=row.percentage, width=24),
            f"{row.percentage:5.1f}%",
            Text(detail, style="dim"),
        )

    def create_display(self) -> RenderableType:
        rows = self.state.rows()
        counts = self.state.counts()

        table = Table(show_header=True, header_style="bold", box=None, expand=True)
        table.add_column("File", no_wrap=True)
        table.add_column("Status", no_wrap=True)
        table.add_column("Progress", no_wrap=True)
        table.add_column("%", justify="right", no_wrap=True)
        table.add_column("Details", no_wrap=True, overflow="ellipsis")

        # Active jobs first, then pending, then finished
        order = {JobStatus.PROCESSING: 0, JobStatus.PENDING: 1}
        rows.sort(key=lambda r: order.get(r.status, 2))
        for row in rows[:self.max_rows]:
            self._render_row(table, row)
        if len(rows) > self.max_rows:
            table.add_row(Text(f"...+{len(rows) - self.max_rows} more", style="dim"), "", "", "", "")

        summary = Text(
            f"Running: {counts[JobStatus.PROCESSING]} | Pending: {counts[JobStatus.PENDING]} | "
            f"Done: {counts[JobStatus.COMPLETED]} | Failed: {counts[JobStatus.FAILED]} | "
            f"Cancelled: {counts[JobStatus.CANCELLED]} | Limit: {self.state.concurrency_limit}"
        )
        if self.state.paused:
            summary.append(" | PAUSED", style="yellow bold")
        if self.state.finished:
            summary.append(" | FINISHED", style="green bold")

        log_lines = self.state.log_lines()
        log = Text("\n".join(log_lines), style="dim") if log_lines else Text("")
        return Panel(Group(summary, table, log), title="VTQ", border_style="blue")

    def _refresh_loop(self):
        while not self._stop_refresh.wait(0.25):
            if self._live:
                self._live.update(self.create_display())

    def start(self):
        self._live = Live(self.create_display(), console=self.console, refresh_per_second=4)
        self._live.start()
        self._stop_refresh.clear()
        self._refresh_thread = threading.Thread(target=self._refresh_loop, daemon=True)
        self._refresh_thread.start()
        return self

    def stop(self):
        self._stop_refresh.set()
        if self._refresh_thread:
            self._refresh_thread.join(timeout=1.0)
        if self._live:
            # Final update to show the finished state
            self._live.update(self.create_display())
            self._live.stop()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

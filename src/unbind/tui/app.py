"""Interactive port table for unbind.

One screen: the latest snapshot of listening sockets. Nothing refreshes on its
own; press r for a new scan.
"""

from pathlib import Path

from rich.text import Text
from textual.app import App, ComposeResult
from textual.widgets import DataTable, Footer, Static

from unbind.commands import kill_process, scan_ports
from unbind.config import Config, apply_filter
from unbind.models import PortRecord
from unbind.scanner import Scanner
from unbind.storage import (
    add_favorite,
    add_kill_history,
    get_favorite_labels,
    open_database,
    remove_favorite,
)

COLUMNS = ("Port", "Proto", "Address", "PID", "Process", "Favorite")


def format_row(record: PortRecord, label: str = "") -> tuple:
    """Build the table cells for one record."""
    process = Text(record.process_name, style="dim" if record.pid == 0 else "cyan")
    return (
        str(record.port),
        record.protocol.value,
        record.local_address,
        str(record.pid) if record.pid else "-",
        process,
        Text(f"★ {label}", style="yellow") if label else "",
    )


class StatusLine(Static):
    """One-line feedback under the table."""

    def show(self, message: str, style: str = "") -> None:
        self.update(Text(message, style=style))


class UnbindApp(App):
    """Port table with kill and favorite actions."""

    CSS = """
    #port-table {
        height: 1fr;
    }
    #status {
        height: 1;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("r", "refresh", "Refresh"),
        ("k", "kill", "Kill"),
        ("f", "favorite", "Favorite"),
        ("q", "quit", "Quit"),
    ]

    def __init__(
        self,
        config: Config | None = None,
        scanner: Scanner | None = None,
        db_path: Path | None = None,
    ):
        super().__init__()
        self.config = config or Config()
        self.scanner = scanner or Scanner.for_host(self.config.scan.command_timeout)
        self.db_path = db_path or self.config.db_path
        self.records: list[PortRecord] = []
        self.labels: dict[int, str] = {}

    def compose(self) -> ComposeResult:
        """Create the layout."""
        yield DataTable(id="port-table", zebra_stripes=True, cursor_type="row")
        yield StatusLine(id="status")
        yield Footer()

    def on_mount(self) -> None:
        """Set up columns and take the first snapshot."""
        self.title = "unbind"
        table = self.query_one("#port-table", DataTable)
        table.add_columns(*COLUMNS)
        self.action_refresh()

    def _status(self, message: str, style: str = "") -> None:
        self.query_one("#status", StatusLine).show(message, style)

    def _load_labels(self) -> None:
        if not self.db_path.exists():
            self.labels = {}
            return
        with open_database(self.db_path) as conn:
            self.labels = get_favorite_labels(conn)

    def _selected(self) -> PortRecord | None:
        table = self.query_one("#port-table", DataTable)
        if not self.records or table.cursor_row is None:
            return None
        if not 0 <= table.cursor_row < len(self.records):
            return None
        return self.records[table.cursor_row]

    def _render_table(self) -> None:
        table = self.query_one("#port-table", DataTable)
        cursor = table.cursor_row
        table.clear()
        for record in self.records:
            table.add_row(*format_row(record, self.labels.get(record.port, "")))
        if self.records and cursor is not None:
            table.move_cursor(row=min(cursor, len(self.records) - 1))

    def action_refresh(self) -> None:
        """Scan again and redraw."""
        response = scan_ports(self.scanner)
        if not response.success:
            self.records = []
            self._render_table()
            self._status(f"Scan failed: {response.error}", "bold red")
            return

        all_records = response.data or []
        self.records = apply_filter(all_records, self.config.filter)
        self._load_labels()
        self._render_table()
        self._status(f"{len(self.records)} of {len(all_records)} listening sockets")

    def action_kill(self) -> None:
        """Force-kill the owner of the selected port."""
        record = self._selected()
        if record is None:
            return
        if record.pid == 0:
            self._status(f"Owner of port {record.port} is unknown", "yellow")
            return

        response = kill_process(record.pid, self.scanner)
        if not response.success:
            self._status(f"Kill failed: {response.error}", "bold red")
            return

        with open_database(self.db_path) as conn:
            add_kill_history(
                conn,
                port=record.port,
                pid=record.pid,
                process_name=record.process_name,
                max_entries=self.config.history.max_entries,
            )
        self.action_refresh()
        self._status(f"Killed {record.process_name} ({record.pid}) on port {record.port}", "green")

    def action_favorite(self) -> None:
        """Toggle the selected port as a favorite (labelled with its process name)."""
        record = self._selected()
        if record is None:
            return

        with open_database(self.db_path) as conn:
            if record.port in self.labels:
                remove_favorite(conn, record.port)
                message = f"Port {record.port} removed from favorites"
            else:
                add_favorite(conn, record.port, record.process_name)
                message = f"Port {record.port} saved as {record.process_name}"
            self.labels = get_favorite_labels(conn)

        self._render_table()
        self._status(message)


def run_tui(config: Config | None = None) -> None:
    """Run the TUI application."""
    app = UnbindApp(config)
    app.run()

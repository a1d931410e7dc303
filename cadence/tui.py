"""
Cadence TUI — a terminal dashboard for browsing, downloading and playing.

Built with Textual.  Launched via `cadence-client host[:port] --tui`.
"""

from __future__ import annotations

import os
import ssl
import threading
from datetime import datetime

from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical
from textual.reactive import reactive
from textual.screen import ModalScreen, Screen
from textual.widgets import (
    Button,
    DataTable,
    Footer,
    Header,
    Input,
    Label,
    ProgressBar,
    RichLog,
    Static,
)

from .client import (
    do_download,
    fetch_file_list,
    format_size,
    list_downloads,
    search_remote,
)
from .config import DOWNLOADS_DIR, MAX_DOWNLOAD_ATTEMPTS
from .errors import TransferCancelled
from .playback import PlaybackController


# ==============================================================================
# Transfer Progress Modal
# ==============================================================================


class TransferProgressScreen(ModalScreen):
    """Modal showing download progress.

    The protocol carries no file size, so the bar is indeterminate and only
    the received byte count is shown.
    """

    BINDINGS = [Binding("escape", "close", "Close")]

    def __init__(self, filename: str, cancel_event: threading.Event):
        super().__init__()
        self.filename = filename
        self.cancel_event = cancel_event
        self._completed = False

    def compose(self) -> ComposeResult:
        with Container(id="transfer-dialog"):
            yield Label(f"Download: {self.filename}", id="transfer-title")
            yield Label("Connecting...", id="transfer-status")
            yield ProgressBar(total=None, show_eta=False, id="progress-bar")
            yield Button("Cancel", variant="error", id="btn-cancel")

    def update_progress(self, received: int) -> None:
        if not self.is_mounted or self._completed:
            return
        self.query_one("#transfer-status", Label).update(
            f"{format_size(received)} received"
        )

    def mark_complete(self, success: bool, message: str | None = None) -> None:
        """Mark transfer as complete and update UI."""
        if not self.is_mounted:
            return
        self._completed = True
        progress_bar = self.query_one("#progress-bar", ProgressBar)
        progress_bar.update(total=1, progress=1 if success else 0)
        if message:
            self.query_one("#transfer-status", Label).update(message)
        cancel_btn = self.query_one("#btn-cancel", Button)
        cancel_btn.label = "Close"
        cancel_btn.variant = "success" if success else "warning"

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "btn-cancel":
            self.action_close()

    def action_close(self) -> None:
        if not self._completed:
            self.cancel_event.set()
        self.dismiss(self._completed)


# ==============================================================================
# Notification Widget
# ==============================================================================


class Notification(Static):
    """Toast notification widget."""

    DEFAULT_CSS = """
    Notification {
        dock: top;
        height: auto;
        padding: 1 2;
        margin: 1 4;
    }
    """

    def __init__(self, message: str, notification_type: str = "info"):
        super().__init__(message, classes="notification")
        self.notification_type = notification_type

    def on_mount(self) -> None:
        self.add_class(self.notification_type)
        # Auto-hide after 3 seconds
        self.set_timer(3.0, self.remove)


# ==============================================================================
# Help Modal
# ==============================================================================


class HelpScreen(ModalScreen):
    """Full help overlay."""

    BINDINGS = [Binding("escape", "dismiss", "Close")]

    def compose(self) -> ComposeResult:
        with Container(id="help-dialog"):
            yield Label("CADENCE  —  Help", id="help-title")
            yield Static(
                "[bold #5ec4ff]Keybindings[/]\n"
                "\n"
                "  [#e0c97f]F1[/]          Show this help\n"
                "  [#e0c97f]F5[/]          Refresh the server catalog\n"
                "  [#e0c97f]d[/]           Download the selected server file\n"
                "  [#e0c97f]p[/]           Play the selected downloaded file\n"
                "  [#e0c97f]s[/]           Stop playback\n"
                "  [#e0c97f]t[/]           Toggle theme\n"
                "  [#e0c97f]q[/]           Quit\n"
                "\n"
                "[bold #5ec4ff]Command Input[/]\n"
                "\n"
                "  [#718ca1]list[/]                 List server files\n"
                "  [#718ca1]search <term>[/]        Filter server files\n"
                "  [#718ca1]download <file>[/]      Download a file\n"
                "  [#718ca1]play <file>[/]          Play a downloaded file\n"
                "  [#718ca1]stop[/]                 Stop playback\n",
                id="help-content",
            )
            yield Button("Close  (Esc)", id="help-close-btn")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "help-close-btn":
            self.dismiss()


# ==============================================================================
# Loading Screen
# ==============================================================================


class LoadingScreen(Screen):
    """Simple loading screen with just the logo."""

    BINDINGS = [Binding("escape", "dismiss", "")]

    def compose(self) -> ComposeResult:
        yield Static(
            "[bold #EBD5AB]  ___         _                   [/]\n"
            "[bold #EBD5AB] / __|__ _ __| |___ _ _  __ ___   [/]\n"
            "[bold #EBD5AB]| (__/ _` / _` / -_) ' \\/ _/ -_)  [/]\n"
            "[bold #EBD5AB] \\___\\__,_\\__,_\\___|_||_\\__\\___|  [/]",
            id="loading-logo",
        )

    def on_mount(self) -> None:
        self.set_timer(1.5, self.action_dismiss)

    def on_key(self, event) -> None:
        self.action_dismiss()

    def action_dismiss(self) -> None:
        if self.is_mounted and self.app.screen is self:
            self.app.pop_screen()


# ==============================================================================
# Main TUI App
# ==============================================================================


class CadenceApp(App):
    """Cadence secure catalog client — Terminal Dashboard."""

    TITLE = "CADENCE"
    SUB_TITLE = "Secure File Catalog"
    CSS_PATH = "styles/cadence.tcss"
    ENABLE_COMMAND_PALETTE = False

    BINDINGS = [
        Binding("f1", "show_help", "Help", show=True),
        Binding("f5", "refresh_files", "Refresh", show=True),
        Binding("d", "download_file", "Download", show=True),
        Binding("p", "play_file", "Play", show=True),
        Binding("s", "stop_playback", "Stop", show=True),
        Binding("t", "toggle_app_theme", "Theme", show=True),
        Binding("q", "quit_app", "Quit", show=True),
    ]

    dark_theme: reactive[bool] = reactive(True)
    remote_files: reactive[list[str]] = reactive([])

    def __init__(
        self,
        host: str,
        port: int,
        context: ssl.SSLContext,
        downloads_dir: str = DOWNLOADS_DIR,
        attempts: int = MAX_DOWNLOAD_ATTEMPTS,
    ):
        super().__init__()
        self.host = host
        self.port = port
        self.context = context
        self.downloads_dir = downloads_dir
        self.attempts = attempts
        self.player = PlaybackController()
        self.theme = "textual-dark"

    # --------------------------------------------------------------------------
    # Layout
    # --------------------------------------------------------------------------

    def compose(self) -> ComposeResult:
        yield Header()

        with Horizontal(id="main-container"):
            # ── Sidebar ──
            with Vertical(id="sidebar"):
                yield Label("DOWNLOADED", id="local-files-title")
                yield DataTable(id="local-files-table")
                yield Label("Nothing playing", id="now-playing")

            # ── Main panel ──
            with Vertical(id="main-panel"):
                with Container(id="files-header"):
                    yield Label(
                        f"FILES ON: [bold #5ec4ff]{self.host}:{self.port}[/]",
                        id="files-header-text",
                    )
                yield Input(placeholder="Search server files...", id="search-input")
                yield DataTable(id="remote-files-table")

                with Horizontal(id="action-bar"):
                    yield Button("Download", id="btn-download")
                    yield Button("Play", id="btn-play")
                    yield Button("Stop", id="btn-stop")
                    yield Button("Refresh", id="btn-refresh")

        # ── Log panel ──
        with Vertical(id="log-panel"):
            yield Label(" LOG", id="log-title")
            yield RichLog(id="log-view", highlight=True, markup=True)

        # ── Command input ──
        with Horizontal(id="command-bar"):
            yield Input(
                placeholder="Type a command (or press F1 for help)...",
                id="command-input",
            )

        yield Footer()

    # --------------------------------------------------------------------------
    # Startup
    # --------------------------------------------------------------------------

    def on_mount(self) -> None:
        os.makedirs(self.downloads_dir, exist_ok=True)
        self._setup_tables()
        self._refresh_local_files()
        self.set_interval(1.0, self._poll_playback)

        self._log(f"Cadence client  server=[bold #5ec4ff]{self.host}:{self.port}[/]")
        self._log(f"Downloads directory: [#718ca1]{self.downloads_dir}[/]")
        self._refresh_remote_files()

        self.push_screen(LoadingScreen())

    def on_unmount(self) -> None:
        self.player.stop()

    def _setup_tables(self) -> None:
        local_table = self.query_one("#local-files-table", DataTable)
        local_table.add_columns("File", "Size")
        local_table.cursor_type = "row"
        local_table.zebra_stripes = True

        remote_table = self.query_one("#remote-files-table", DataTable)
        remote_table.add_columns("Filename")
        remote_table.cursor_type = "row"
        remote_table.zebra_stripes = True

    # --------------------------------------------------------------------------
    # Logging & Notifications
    # --------------------------------------------------------------------------

    def _log(self, message: str) -> None:
        log_view = self.query_one("#log-view", RichLog)
        ts = datetime.now().strftime("%H:%M:%S")
        log_view.write(f"[#41505e]{ts}[/]  {message}")

    def show_notification(self, message: str, notification_type: str = "info") -> None:
        self.mount(Notification(message, notification_type))

    # --------------------------------------------------------------------------
    # File listing refresh
    # --------------------------------------------------------------------------

    def _refresh_local_files(self) -> None:
        table = self.query_one("#local-files-table", DataTable)
        table.clear()
        for name in sorted(list_downloads(self.downloads_dir)):
            size = os.path.getsize(os.path.join(self.downloads_dir, name))
            table.add_row(name, format_size(size))

    @work(thread=True, exclusive=True, group="catalog")
    def _refresh_remote_files(self, term: str = "") -> None:
        try:
            if term:
                files = search_remote(self.host, self.port, term, self.context)
            else:
                files = fetch_file_list(self.host, self.port, self.context)
            self.call_from_thread(self._update_remote_table, files, term)
        except Exception as e:
            self.call_from_thread(
                self._log, f"[#e74c3c]Error[/] fetching catalog: {e}"
            )

    def _update_remote_table(self, files: list[str], term: str) -> None:
        self.remote_files = files
        table = self.query_one("#remote-files-table", DataTable)
        table.clear()
        for name in files:
            table.add_row(name)
        what = f"matching [bold]{term}[/]" if term else "on server"
        self._log(f"{len(files)} file(s) {what}")

    def _poll_playback(self) -> None:
        label = self.query_one("#now-playing", Label)
        if self.player.is_playing and self.player.file_path:
            label.update(f"[#00ff9f]▶[/] {os.path.basename(self.player.file_path)}")
        else:
            label.update("Nothing playing")

    # --------------------------------------------------------------------------
    # Actions — keybindings
    # --------------------------------------------------------------------------

    def action_show_help(self) -> None:
        self.push_screen(HelpScreen())

    def action_toggle_app_theme(self) -> None:
        self.dark_theme = not self.dark_theme
        self.theme = "textual-dark" if self.dark_theme else "textual-light"

    def action_quit_app(self) -> None:
        self._log("Shutting down...")
        self.player.stop()
        self.exit()

    def action_refresh_files(self) -> None:
        self._refresh_local_files()
        term = self.query_one("#search-input", Input).value.strip()
        self._refresh_remote_files(term)

    def action_download_file(self) -> None:
        filename = self._selected_row("#remote-files-table")
        if filename is None:
            self._log("[#e0c97f]Warning:[/] Select a server file first.")
            return
        self._do_download_async(filename)

    def action_play_file(self) -> None:
        filename = self._selected_row("#local-files-table")
        if filename is None:
            self._log("[#e0c97f]Warning:[/] Select a downloaded file first.")
            return
        self._play(filename)

    def action_stop_playback(self) -> None:
        self._stop_async()

    def _selected_row(self, table_id: str) -> str | None:
        table = self.query_one(table_id, DataTable)
        if table.row_count == 0:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return table.get_row(row_key)[0]

    # --------------------------------------------------------------------------
    # Download / playback workers
    # --------------------------------------------------------------------------

    @work(thread=True, group="download")
    def _do_download_async(self, filename: str) -> None:
        self.call_from_thread(
            self._log, f"Downloading [bold]{filename}[/] from [#5ec4ff]{self.host}[/]..."
        )
        cancel_event = threading.Event()
        progress_screen = TransferProgressScreen(filename, cancel_event)
        self.call_from_thread(self.push_screen, progress_screen)

        def progress_callback(received: int) -> None:
            self.call_from_thread(progress_screen.update_progress, received)

        try:
            dest, received = do_download(
                self.host,
                self.port,
                filename,
                self.downloads_dir,
                self.context,
                self.attempts,
                progress_callback,
                cancel_event,
            )
        except TransferCancelled:
            self.call_from_thread(self._log, f"Download of {filename} cancelled.")
        except Exception as e:
            self.call_from_thread(progress_screen.mark_complete, False, str(e))
            self.call_from_thread(self._log, f"[#e74c3c]Download failed:[/] {e}")
            self.call_from_thread(
                self.show_notification, f"Download failed: {e}", "error"
            )
        else:
            self.call_from_thread(
                progress_screen.mark_complete,
                True,
                f"Complete: {format_size(received)}, digest verified",
            )
            self.call_from_thread(
                self._log,
                f"[#00ff9f]Downloaded[/] {filename} "
                f"({format_size(received)}) -> [#718ca1]{dest}[/]",
            )
            self.call_from_thread(
                self.show_notification, f"Downloaded {filename}", "success"
            )
            self.call_from_thread(self._refresh_local_files)

    def _play(self, filename: str) -> None:
        path = os.path.join(self.downloads_dir, os.path.basename(filename))
        if not os.path.isfile(path):
            self._log(f"[#e0c97f]Warning:[/] {filename} has not been downloaded.")
            return
        self._start_async(path)

    # start/stop join the previous worker, so keep them off the event loop.
    @work(thread=True, exclusive=True, group="playback")
    def _start_async(self, path: str) -> None:
        self.player.start(path)
        self.call_from_thread(self._log, f"[#00ff9f]Playing[/] {os.path.basename(path)}")
        self.call_from_thread(self._poll_playback)

    @work(thread=True, exclusive=True, group="playback")
    def _stop_async(self) -> None:
        self.player.stop()
        self.call_from_thread(self._log, "Playback stopped.")
        self.call_from_thread(self._poll_playback)

    # --------------------------------------------------------------------------
    # Button handlers
    # --------------------------------------------------------------------------

    def on_button_pressed(self, event: Button.Pressed) -> None:
        btn_id = event.button.id
        if btn_id == "btn-download":
            self.action_download_file()
        elif btn_id == "btn-play":
            self.action_play_file()
        elif btn_id == "btn-stop":
            self.action_stop_playback()
        elif btn_id == "btn-refresh":
            self.action_refresh_files()

    # --------------------------------------------------------------------------
    # Command input
    # --------------------------------------------------------------------------

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id == "search-input":
            self._refresh_remote_files(event.value.strip())
            return
        if event.input.id != "command-input":
            return

        raw = event.value.strip()
        event.input.value = ""
        if not raw:
            return

        cmd, _, rest = raw.partition(" ")
        cmd = cmd.lower()
        rest = rest.strip()

        if cmd == "help":
            self.action_show_help()
        elif cmd == "list":
            self._refresh_remote_files()
        elif cmd == "search" and rest:
            self._refresh_remote_files(rest)
        elif cmd == "download" and rest:
            self._do_download_async(rest)
        elif cmd == "play" and rest:
            self._play(rest)
        elif cmd == "stop":
            self.action_stop_playback()
        elif cmd in ("quit", "exit"):
            self.action_quit_app()
        else:
            self._log(f"[#e0c97f]Unknown command:[/] {raw}  (press F1 for help)")


# ==============================================================================
# Entry point (called from cli.py)
# ==============================================================================


def run_tui(
    host: str,
    port: int,
    context: ssl.SSLContext,
    downloads_dir: str = DOWNLOADS_DIR,
    attempts: int = MAX_DOWNLOAD_ATTEMPTS,
) -> None:
    """Launch the Cadence TUI."""
    app = CadenceApp(host, port, context, downloads_dir, attempts)
    app.run()

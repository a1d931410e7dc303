"""
Command-line entry points.

Usage:
    cadence-server [port]                    # serve ./sample-mp3s over TLS
    cadence-server 9000 --self-signed        # generate cert.pem/key.pem if missing
    cadence-client host[:port]               # interactive CLI
    cadence-client host[:port] list          # run one command and exit
    cadence-client host[:port] --tui         # terminal dashboard
"""

import argparse
import logging
import os
import time

from .certs import generate_self_signed
from .client import download_file, list_files, search
from .config import (
    CATALOG_DIR,
    CERT_FILE,
    DEFAULT_PORT,
    DOWNLOADS_DIR,
    IO_TIMEOUT,
    KEY_FILE,
    LOG_FILE,
    LOG_LEVEL,
    MAX_CONNECTIONS,
    MAX_DOWNLOAD_ATTEMPTS,
)
from .errors import TransportError
from .logutil import setup_logging
from .playback import PlaybackController
from .server import FileServer
from .transport import TransportConfig, client_context

logger = logging.getLogger(__name__)


def _parse_target(target: str, default_port: int) -> tuple[str, int]:
    """
    Parse a 'host:port' string.  If port is omitted, *default_port* is used.
    """
    if ":" in target:
        host, port_str = target.rsplit(":", 1)
        return host, int(port_str)
    return target, default_port


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


# ======================================================================
# Server
# ======================================================================


def server_main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="cadence-server", description="Cadence secure file catalog server"
    )
    parser.add_argument(
        "port", type=int, nargs="?", default=DEFAULT_PORT, help="TCP port to listen on"
    )
    parser.add_argument("--host", default="0.0.0.0", help="Interface to bind")
    parser.add_argument("--catalog-dir", default=CATALOG_DIR, help="Directory to serve")
    parser.add_argument("--cert", default=CERT_FILE, help="PEM certificate file")
    parser.add_argument("--key", default=KEY_FILE, help="PEM private key file")
    parser.add_argument(
        "--self-signed",
        action="store_true",
        help="Generate a self-signed certificate and key if they do not exist",
    )
    parser.add_argument(
        "--max-connections",
        type=_positive_int,
        default=MAX_CONNECTIONS,
        help="Cap on concurrent connections (default: unbounded)",
    )
    parser.add_argument(
        "--io-timeout",
        type=float,
        default=IO_TIMEOUT,
        help="Per-read/write deadline in seconds (default: none)",
    )
    parser.add_argument("--log-level", default=LOG_LEVEL)
    parser.add_argument("--log-file", default=LOG_FILE)
    args = parser.parse_args(argv)

    setup_logging(args.log_level.upper(), args.log_file)

    if args.self_signed and not (os.path.exists(args.cert) and os.path.exists(args.key)):
        logger.info("Generating self-signed certificate %s", args.cert)
        generate_self_signed(args.cert, args.key)

    server = FileServer(
        port=args.port,
        host=args.host,
        catalog_dir=args.catalog_dir,
        transport=TransportConfig(args.cert, args.key, args.io_timeout),
        max_connections=args.max_connections,
    )
    try:
        server.bind()
    except (TransportError, OSError) as e:
        logger.critical("Server startup failed: %s", e)
        return 1

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Interrupted. Shutting down...")
    finally:
        server.stop(join_timeout=5)
    return 0


# ======================================================================
# Client
# ======================================================================


def _print_help() -> None:
    print("""
  Cadence — Client Commands
  ────────────────────────────────────────────────────
  list                     List files on the server
  search <term>            List files whose name contains <term>
  download <file>          Download a file and verify its digest
  play <file>              Play a downloaded file in the background
  stop                     Stop playback
  help                     Show this help message
  quit / exit              Leave the client
  ────────────────────────────────────────────────────
""")


def _resolve_local(filename: str, downloads_dir: str) -> str:
    if os.path.exists(filename):
        return filename
    return os.path.join(downloads_dir, os.path.basename(filename))


class _ClientShell:
    """Runs client commands against one server."""

    def __init__(self, host: str, port: int, context, downloads_dir: str, attempts: int):
        self.host = host
        self.port = port
        self.context = context
        self.downloads_dir = downloads_dir
        self.attempts = attempts
        self.player = PlaybackController()

    def run_command(self, raw: str) -> bool:
        """Execute one command line.  Returns False when the user wants to quit."""
        cmd, _, rest = raw.strip().partition(" ")
        cmd = cmd.lower()
        rest = rest.strip()

        if cmd in ("quit", "exit"):
            return False
        elif cmd == "help":
            _print_help()
        elif cmd == "list":
            list_files(self.host, self.port, self.context)
        elif cmd == "search":
            if not rest:
                print("  Usage: search <term>")
            else:
                search(self.host, self.port, rest, self.context)
        elif cmd == "download":
            if not rest:
                print("  Usage: download <file>")
            else:
                download_file(
                    self.host,
                    self.port,
                    rest,
                    self.downloads_dir,
                    self.context,
                    self.attempts,
                )
        elif cmd == "play":
            if not rest:
                print("  Usage: play <file>")
                return True
            path = _resolve_local(rest, self.downloads_dir)
            if not os.path.isfile(path):
                print(f"  [!] No local file {path} (download it first)")
                return True
            self.player.start(path)
            print(f"  Playing {os.path.basename(path)}  (type 'stop' to stop)")
        elif cmd == "stop":
            self.player.stop()
            print("  Playback stopped.")
        else:
            print(f"  Unknown command: {cmd}  (type 'help' for commands)")
        return True

    def loop(self) -> None:
        try:
            while True:
                try:
                    raw = input("cadence> ").strip()
                except EOFError:
                    break
                if not raw:
                    continue
                if not self.run_command(raw):
                    print("  Goodbye.")
                    break
        except KeyboardInterrupt:
            print("\n  Interrupted.")
        finally:
            self.player.stop()


def client_main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="cadence-client", description="Cadence secure file catalog client"
    )
    parser.add_argument("target", help="Server as host[:port]")
    parser.add_argument(
        "command", nargs="*", help="Run one command and exit"
    )
    parser.add_argument("--cafile", help="CA bundle used to verify the server")
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Do not verify the server certificate",
    )
    parser.add_argument("--downloads-dir", default=DOWNLOADS_DIR)
    parser.add_argument("--attempts", type=int, default=MAX_DOWNLOAD_ATTEMPTS)
    parser.add_argument(
        "--tui", action="store_true", help="Launch the terminal dashboard"
    )
    parser.add_argument("--log-level", default="WARNING")
    parser.add_argument("--log-file", default=LOG_FILE)
    args = parser.parse_args(argv)

    try:
        host, port = _parse_target(args.target, DEFAULT_PORT)
    except ValueError:
        parser.error(f"invalid target {args.target!r}, expected host[:port]")

    setup_logging(args.log_level.upper(), args.log_file, console=not args.tui)
    context = client_context(args.cafile, verify=not args.insecure)

    if args.tui:
        from .tui import run_tui

        run_tui(host, port, context, args.downloads_dir, args.attempts)
        return 0

    shell = _ClientShell(host, port, context, args.downloads_dir, args.attempts)
    if args.command:
        try:
            shell.run_command(" ".join(args.command))
            # A one-shot "play" lasts until the track ends or Ctrl-C
            while shell.player.is_playing:
                time.sleep(0.2)
        except KeyboardInterrupt:
            pass
        finally:
            shell.player.stop()
        return 0

    print(f"  Cadence client  [server={host}:{port}]")
    print("  Type 'help' for available commands.\n")
    shell.loop()
    return 0

"""
Tests for client.py — format_size, catalog fetches and downloads with retry.
"""

import os
import socket
import threading

import pytest

from cadence.client import (
    do_download,
    fetch_file_list,
    format_size,
    list_downloads,
    search_remote,
)
from cadence.errors import (
    DownloadFailed,
    DownloadInProgress,
    ErrorKind,
    IntegrityError,
    LocalFileError,
    RemoteError,
    TransportError,
)
from cadence.transport import client_context

from conftest import DroppingServer


class TestFormatSize:
    def test_bytes(self):
        assert format_size(0) == "0.0 B"
        assert format_size(512) == "512.0 B"
        assert format_size(1023) == "1023.0 B"

    def test_kilobytes(self):
        assert format_size(1024) == "1.0 KB"
        assert format_size(2048) == "2.0 KB"

    def test_megabytes(self):
        assert format_size(1024 * 1024) == "1.0 MB"
        assert format_size(int(1.5 * 1024 * 1024)) == "1.5 MB"

    def test_gigabytes(self):
        assert format_size(1024**3) == "1.0 GB"

    def test_terabytes(self):
        assert format_size(1024**4) == "1.0 TB"


class TestCatalogFetch:
    def test_fetch_file_list(self, running_server, catalog, client_ctx):
        for name in ("b.mp3", "a.mp3", "readme.txt"):
            (catalog / name).write_bytes(b"")
        files = fetch_file_list("127.0.0.1", running_server.port, client_ctx)
        assert sorted(files) == ["a.mp3", "b.mp3"]

    def test_empty_catalog(self, running_server, client_ctx):
        assert fetch_file_list("127.0.0.1", running_server.port, client_ctx) == []

    def test_search_remote(self, running_server, catalog, client_ctx):
        for name in ("Sprouts.mp3", "Leaves.mp3", "Sprouts live.mp3"):
            (catalog / name).write_bytes(b"")
        files = search_remote("127.0.0.1", running_server.port, "Sprouts", client_ctx)
        assert sorted(files) == ["Sprouts live.mp3", "Sprouts.mp3"]

    def test_connection_refused(self, client_ctx):
        with pytest.raises(TransportError):
            fetch_file_list("127.0.0.1", 1, client_ctx)

    def test_untrusted_server_certificate(self, running_server):
        # Default context trusts only the system store, not our self-signed cert.
        with pytest.raises(TransportError):
            fetch_file_list("127.0.0.1", running_server.port, client_context())

    def test_insecure_context_skips_verification(self, running_server):
        ctx = client_context(verify=False)
        assert fetch_file_list("127.0.0.1", running_server.port, ctx) == []


class TestDownload:
    @pytest.mark.parametrize("size", [0, 1, 4096, 10_000, 3 * 4096 + 5])
    def test_download_verifies_and_saves(
        self, running_server, catalog, client_ctx, tmp_path, size
    ):
        content = os.urandom(size)
        (catalog / "song.mp3").write_bytes(content)
        dest_dir = tmp_path / "downloads"

        dest, received = do_download(
            "127.0.0.1", running_server.port, "song.mp3", str(dest_dir), client_ctx
        )

        assert received == size
        assert dest == str(dest_dir / "song.mp3")
        assert (dest_dir / "song.mp3").read_bytes() == content
        assert not (dest_dir / "song.mp3.part").exists()

    def test_filename_with_spaces(self, running_server, catalog, client_ctx, tmp_path):
        (catalog / "my song.mp3").write_bytes(b"la la la")
        dest, _ = do_download(
            "127.0.0.1", running_server.port, "my song.mp3", str(tmp_path), client_ctx
        )
        assert open(dest, "rb").read() == b"la la la"

    def test_missing_file_is_not_retried(self, running_server, client_ctx, tmp_path):
        with pytest.raises(RemoteError) as exc:
            do_download(
                "127.0.0.1", running_server.port, "ghost.mp3", str(tmp_path), client_ctx
            )
        assert exc.value.kind is ErrorKind.FILE
        assert not (tmp_path / "ghost.mp3").exists()
        assert not (tmp_path / "ghost.mp3.part").exists()

    def test_progress_callback(self, running_server, catalog, client_ctx, tmp_path):
        (catalog / "big.mp3").write_bytes(b"b" * 20_000)
        seen = []
        do_download(
            "127.0.0.1",
            running_server.port,
            "big.mp3",
            str(tmp_path),
            client_ctx,
            progress_callback=seen.append,
        )
        assert seen[-1] == 20_000
        assert seen == sorted(seen)


class TestDownloadRetry:
    def test_dropped_transfers_fail_after_attempt_cap(
        self, server_ctx, client_ctx, tmp_path
    ):
        server = DroppingServer(server_ctx)
        try:
            with pytest.raises(DownloadFailed) as exc:
                do_download(
                    "127.0.0.1",
                    server.port,
                    "song.mp3",
                    str(tmp_path),
                    client_ctx,
                    max_attempts=3,
                )
        finally:
            server.close()

        assert server.connections == 3
        assert exc.value.attempts == 3
        assert isinstance(exc.value.cause, IntegrityError)
        assert os.listdir(tmp_path) == []

    def test_hang_up_without_reply(self, server_ctx, client_ctx, tmp_path):
        server = DroppingServer(server_ctx, reply=b"")
        try:
            with pytest.raises(DownloadFailed):
                do_download(
                    "127.0.0.1",
                    server.port,
                    "song.mp3",
                    str(tmp_path),
                    client_ctx,
                    max_attempts=2,
                )
        finally:
            server.close()
        assert server.connections == 2
        assert os.listdir(tmp_path) == []

    def test_unreachable_server(self, client_ctx, tmp_path):
        with pytest.raises(DownloadFailed) as exc:
            do_download("127.0.0.1", 1, "song.mp3", str(tmp_path), client_ctx)
        assert isinstance(exc.value.cause, TransportError)


class TestLocalFailures:
    def test_downloads_dir_is_a_file(self, running_server, catalog, client_ctx, tmp_path):
        (catalog / "a.mp3").write_bytes(b"abc")
        not_a_dir = tmp_path / "downloads"
        not_a_dir.write_bytes(b"")
        with pytest.raises(LocalFileError) as exc:
            do_download(
                "127.0.0.1", running_server.port, "a.mp3", str(not_a_dir), client_ctx
            )
        assert isinstance(exc.value.cause, OSError)

    def test_destination_is_a_directory(
        self, running_server, catalog, client_ctx, tmp_path
    ):
        (catalog / "a.mp3").write_bytes(b"abc")
        (tmp_path / "a.mp3").mkdir()
        with pytest.raises(LocalFileError):
            do_download(
                "127.0.0.1", running_server.port, "a.mp3", str(tmp_path), client_ctx
            )
        assert not (tmp_path / "a.mp3.part").exists()

    def test_same_destination_is_downloaded_once_at_a_time(
        self, server_ctx, client_ctx, tmp_path
    ):
        # Server that accepts the request and then stalls until released.
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.bind(("127.0.0.1", 0))
        listener.listen(1)
        port = listener.getsockname()[1]
        requested = threading.Event()
        release = threading.Event()

        def stall():
            conn, _ = listener.accept()
            with server_ctx.wrap_socket(conn, server_side=True) as tls:
                tls.recv(256)
                requested.set()
                release.wait(5)

        server = threading.Thread(target=stall)
        server.start()
        outcome = []

        def first_download():
            try:
                do_download(
                    "127.0.0.1",
                    port,
                    "song.mp3",
                    str(tmp_path),
                    client_ctx,
                    max_attempts=1,
                )
            except Exception as e:
                outcome.append(e)

        first = threading.Thread(target=first_download)
        first.start()
        try:
            assert requested.wait(5)
            with pytest.raises(DownloadInProgress):
                do_download("127.0.0.1", port, "song.mp3", str(tmp_path), client_ctx)
        finally:
            release.set()
            first.join()
            server.join()
            listener.close()

        assert isinstance(outcome[0], DownloadFailed)
        assert os.listdir(tmp_path) == []


class TestListDownloads:
    def test_partial_files_are_hidden(self, tmp_path):
        (tmp_path / "done.mp3").write_bytes(b"")
        (tmp_path / "busy.mp3.part").write_bytes(b"")
        (tmp_path / "notes.txt").write_bytes(b"")
        assert list_downloads(str(tmp_path)) == ["done.mp3"]

    def test_after_download(self, running_server, catalog, client_ctx, tmp_path):
        (catalog / "a.mp3").write_bytes(b"abc")
        do_download("127.0.0.1", running_server.port, "a.mp3", str(tmp_path), client_ctx)
        assert list_downloads(str(tmp_path)) == ["a.mp3"]

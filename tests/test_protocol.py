"""
Tests for protocol.py — request parsing, error messages and file streaming.
"""

import pytest

from cadence.config import CHUNK_SIZE, DIGEST_SIZE
from cadence.errors import (
    ErrorKind,
    FileAccessError,
    IntegrityError,
    ProtocolError,
    RemoteError,
    RpcErrorCode,
    TransferCancelled,
    TransportError,
)
from cadence.protocol import (
    Operation,
    Request,
    format_error,
    parse_error,
    parse_request,
    recv_file_with_digest,
    send_file_with_digest,
)

from conftest import FakeChannel, sha256


# ---------------------------------------------------------------------------
# Request encoding
# ---------------------------------------------------------------------------


class TestRequest:
    def test_encode_list(self):
        assert Request(Operation.LIST).encode() == b"LIST"

    def test_encode_argument_with_spaces(self):
        req = Request(Operation.DOWNLOAD, "my song.mp3")
        assert req.encode() == b"DOWNLOAD my song.mp3"

    def test_list_rejects_argument(self):
        with pytest.raises(ValueError):
            Request(Operation.LIST, "x")

    def test_search_requires_argument(self):
        with pytest.raises(ValueError):
            Request(Operation.SEARCH)

    def test_argument_must_not_contain_newline(self):
        with pytest.raises(ValueError):
            Request(Operation.DOWNLOAD, "a\nb")


# ---------------------------------------------------------------------------
# Request parsing
# ---------------------------------------------------------------------------


class TestParseRequest:
    def test_list(self):
        assert parse_request(b"LIST") == Request(Operation.LIST)

    def test_trailing_newline_is_ignored(self):
        assert parse_request(b"LIST\n") == Request(Operation.LIST)

    def test_search_keeps_spaces_in_argument(self):
        req = parse_request(b"SEARCH daft punk")
        assert req == Request(Operation.SEARCH, "daft punk")

    def test_download_argument_stops_at_newline(self):
        req = parse_request(b"DOWNLOAD song.mp3\r\nignored")
        assert req == Request(Operation.DOWNLOAD, "song.mp3")

    def test_trailing_spaces_stay_in_argument(self):
        req = parse_request(Request(Operation.SEARCH, "Sprouts ").encode())
        assert req.argument == "Sprouts "

    def test_trailing_spaces_kept_before_line_end(self):
        req = parse_request(b"DOWNLOAD song .mp3  \r\n")
        assert req == Request(Operation.DOWNLOAD, "song .mp3  ")

    def test_leading_whitespace_is_ignored(self):
        assert parse_request(b"  SEARCH rock") == Request(Operation.SEARCH, "rock")

    def test_nul_padding_is_ignored(self):
        assert parse_request(b"LIST\x00\x00\x00") == Request(Operation.LIST)

    @pytest.mark.parametrize("raw", [b"", b"   ", b"\n"])
    def test_zero_tokens_is_too_few_args(self, raw):
        with pytest.raises(ProtocolError) as exc:
            parse_request(raw)
        assert exc.value.code == RpcErrorCode.TOO_FEW_ARGS

    @pytest.mark.parametrize("raw", [b"PLAY", b"SEARCH", b"DOWNLOAD", b"list"])
    def test_single_unknown_token_is_too_few_args(self, raw):
        with pytest.raises(ProtocolError) as exc:
            parse_request(raw)
        assert exc.value.code == RpcErrorCode.TOO_FEW_ARGS

    def test_two_tokens_unknown_operation(self):
        with pytest.raises(ProtocolError) as exc:
            parse_request(b"UPLOAD song.mp3")
        assert exc.value.code == RpcErrorCode.BAD_OPERATION

    def test_operation_is_case_sensitive(self):
        with pytest.raises(ProtocolError) as exc:
            parse_request(b"download song.mp3")
        assert exc.value.code == RpcErrorCode.BAD_OPERATION

    def test_list_with_argument_is_too_many_args(self):
        with pytest.raises(ProtocolError) as exc:
            parse_request(b"LIST everything")
        assert exc.value.code == RpcErrorCode.TOO_MANY_ARGS


# ---------------------------------------------------------------------------
# Error messages
# ---------------------------------------------------------------------------


class TestErrorMessages:
    def test_format(self):
        assert format_error(ErrorKind.RPC, RpcErrorCode.BAD_OPERATION) == b"RPCERROR -3"
        assert format_error(ErrorKind.FILE, 2) == b"FILEERROR 2"

    def test_parse_file_error(self):
        err = parse_error(b"FILEERROR 2")
        assert isinstance(err, RemoteError)
        assert err.kind is ErrorKind.FILE
        assert err.code == 2

    def test_parse_rpc_error_with_nul_padding(self):
        err = parse_error(b"RPCERROR -2" + b"\x00" * 245)
        assert err.kind is ErrorKind.RPC
        assert err.code == -2

    def test_payload_is_not_an_error(self):
        assert parse_error(b"ID3\x04\x00binary") is None
        assert parse_error(b"FILEERROR is in this sentence") is None
        assert parse_error(b"OTHERERROR 1") is None

    def test_describe_file_error_uses_strerror(self):
        import os

        err = parse_error(b"FILEERROR 2")
        assert os.strerror(2) in str(err)


# ---------------------------------------------------------------------------
# send_file_with_digest
# ---------------------------------------------------------------------------


class TestSendFile:
    @pytest.mark.parametrize("size", [0, 1, CHUNK_SIZE, CHUNK_SIZE * 3 + 17])
    def test_payload_then_digest(self, tmp_path, size):
        content = bytes(i % 251 for i in range(size))
        path = tmp_path / "track.mp3"
        path.write_bytes(content)
        channel = FakeChannel()

        digest = send_file_with_digest(channel, str(path))

        assert digest == sha256(content)
        assert bytes(channel.written) == content + sha256(content)

    def test_missing_file_writes_nothing(self, tmp_path):
        channel = FakeChannel()
        with pytest.raises(FileAccessError) as exc:
            send_file_with_digest(channel, str(tmp_path / "nope.mp3"))
        assert exc.value.errno == 2
        assert channel.written == b""


# ---------------------------------------------------------------------------
# recv_file_with_digest
# ---------------------------------------------------------------------------


def _chunks(data: bytes, size: int) -> list[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


class TestRecvFile:
    @pytest.mark.parametrize("chunk_size", [1, 7, DIGEST_SIZE, 100, 4096])
    def test_digest_split_across_chunks(self, tmp_path, chunk_size):
        content = b"0123456789" * 50
        dest = tmp_path / "out.mp3"
        channel = FakeChannel(_chunks(content + sha256(content), chunk_size))

        received = recv_file_with_digest(channel, str(dest))

        assert received == len(content)
        assert dest.read_bytes() == content

    def test_empty_file(self, tmp_path):
        dest = tmp_path / "empty.mp3"
        channel = FakeChannel([sha256(b"")])
        assert recv_file_with_digest(channel, str(dest)) == 0
        assert dest.read_bytes() == b""

    def test_progress_callback_called(self, tmp_path):
        content = b"x" * 8192
        calls = []
        channel = FakeChannel(_chunks(content + sha256(content), 4096))
        recv_file_with_digest(channel, str(tmp_path / "p.mp3"), calls.append)
        assert calls
        assert calls[-1] == len(content)

    def test_mismatch_removes_file(self, tmp_path):
        dest = tmp_path / "bad.mp3"
        channel = FakeChannel([b"payload bytes", b"\x00" * DIGEST_SIZE])
        with pytest.raises(IntegrityError):
            recv_file_with_digest(channel, str(dest))
        assert not dest.exists()

    def test_short_stream_removes_file(self, tmp_path):
        dest = tmp_path / "short.mp3"
        channel = FakeChannel([b"only ten b"])
        with pytest.raises(IntegrityError):
            recv_file_with_digest(channel, str(dest))
        assert not dest.exists()

    def test_empty_stream_creates_nothing(self, tmp_path):
        dest = tmp_path / "never.mp3"
        with pytest.raises(IntegrityError):
            recv_file_with_digest(FakeChannel([]), str(dest))
        assert not dest.exists()

    def test_error_message_aborts_before_creating_file(self, tmp_path):
        dest = tmp_path / "missing.mp3"
        channel = FakeChannel([b"FILEERROR 2"])
        with pytest.raises(RemoteError) as exc:
            recv_file_with_digest(channel, str(dest))
        assert exc.value.code == 2
        assert not dest.exists()

    def test_transport_error_removes_partial_file(self, tmp_path):
        dest = tmp_path / "cut.mp3"
        channel = FakeChannel([b"x" * 100, TransportError("reset")])
        with pytest.raises(TransportError):
            recv_file_with_digest(channel, str(dest))
        assert not dest.exists()

    def test_cancel_event(self, tmp_path):
        import threading

        cancel = threading.Event()
        cancel.set()
        content = b"z" * 1000
        channel = FakeChannel(_chunks(content + sha256(content), 100))
        with pytest.raises(TransferCancelled):
            recv_file_with_digest(channel, str(tmp_path / "c.mp3"), cancel_event=cancel)
        assert not (tmp_path / "c.mp3").exists()

import io
import socket
import time
import zlib

import pytest

from taskdispatch.request import BadRequest, not_found_response, ok_response, redirect_response
from taskdispatch.server import Connection, WebServer


@pytest.fixture
def server(tmp_path):
    root = tmp_path / "site"
    root.mkdir()
    (root / "hello.txt").write_bytes(b"hello")
    (root / "big.txt").write_bytes(b"abcdefghij" * 2000)
    (root / "docs").mkdir()
    srv = WebServer(str(root), str(tmp_path / "logs" / "transfer.log"), 0, "testsrv")
    srv.output = io.StringIO()
    yield srv
    srv.stop()


@pytest.fixture
def pair(server):
    ours, theirs = socket.socketpair()
    conn = Connection(server, ours, ("127.0.0.1", 4242), 0)
    yield conn, theirs
    conn.close()
    theirs.close()


def _drain(sock):
    sock.setblocking(False)
    data = b""
    while True:
        try:
            piece = sock.recv(65536)
        except BlockingIOError:
            return data
        if not piece:
            return data
        data += piece


def _read_exact(sock, count):
    sock.settimeout(5)
    data = b""
    while len(data) < count:
        piece = sock.recv(count - len(data))
        if not piece:
            break
        data += piece
    return data


def _dechunk(body):
    data = b""
    rest = body
    while True:
        size_line, rest = rest.split(b"\r\n", 1)
        size = int(size_line, 16)
        if size == 0:
            return data
        data += rest[:size]
        rest = rest[size + 2:]


def _log_text(server):
    with open(server.log_path, encoding="utf-8") as handle:
        return handle.read()


def test_resolve_inside_root(server, tmp_path):
    assert server.resolve("/hello.txt") == tmp_path / "site" / "hello.txt"
    assert server.resolve("/") == tmp_path / "site"


def test_resolve_rejects_escape(server):
    assert server.resolve("/../secret.txt") is None


def test_plain_get_sends_file(server, pair):
    conn, client = pair
    status = conn.handle_request(b"GET /hello.txt HTTP/1.1\r\nHost: x\r\n\r\n")
    assert status == 200
    assert _drain(client) == ok_response("testsrv", 5, False) + b"hello"
    assert conn.total_written == 5
    assert conn.files_served == 1


def test_plain_get_is_logged(server, pair):
    conn, _ = pair
    conn.handle_request(b"GET /hello.txt HTTP/1.1\r\nHost: x\r\n\r\n")
    log = _log_text(server)
    assert log.startswith("127.0.0.1 - - [")
    assert log.endswith('"GET /hello.txt HTTP/1.1" 200 5\n')


def test_missing_file_gives_404(server, pair):
    conn, client = pair
    assert conn.handle_request(b"GET /nope.html HTTP/1.1\r\n\r\n") == 404
    assert _drain(client) == not_found_response("testsrv")
    assert _log_text(server).endswith(" 404 0\n")


def test_directory_redirects(server, pair):
    conn, client = pair
    status = conn.handle_request(b"GET /docs HTTP/1.1\r\nHost: example.com\r\n\r\n")
    assert status == 301
    assert _drain(client) == redirect_response("testsrv", "example.com", "/docs")


def test_deflate_round_trip(server, pair, tmp_path):
    conn, client = pair
    request = b"GET /big.txt HTTP/1.1\r\nAccept-Encoding: gzip, deflate\r\n\r\n"
    assert conn.handle_request(request) == 200
    response = _drain(client)
    headers = ok_response("testsrv", 20000, True)
    assert response.startswith(headers)
    body = response[len(headers) + 2:]
    assert zlib.decompress(_dechunk(body)) == (tmp_path / "site" / "big.txt").read_bytes()
    assert response.endswith(b"\r\n0\r\n\r\n")


def test_non_get_is_ignored(pair):
    conn, client = pair
    assert conn.handle_request(b"POST /hello.txt HTTP/1.1\r\n\r\n") is None
    client.setblocking(False)
    with pytest.raises(BlockingIOError):
        client.recv(10)


def test_malformed_request_closes(pair):
    conn, _ = pair
    with pytest.raises(BadRequest):
        conn.handle_request(b"garbage\r\n\r\n")
    assert conn.closed is True


def test_later_request_needs_version(pair):
    conn, client = pair
    conn.handle_request(b"GET /hello.txt HTTP/1.1\r\n\r\n")
    _drain(client)
    with pytest.raises(BadRequest):
        conn.handle_request(b"GET /hello.txt\r\n\r\n")


def test_close_is_idempotent_and_unregisters(server, pair):
    conn, client = pair
    assert conn in server.connections
    conn.close()
    conn.close()
    assert conn not in server.connections
    client.settimeout(2)
    assert client.recv(10) == b""


def test_dump_requests_reports_connections(server, pair):
    conn, client = pair
    conn.handle_request(b"GET /hello.txt HTTP/1.1\r\n\r\n")
    report = server.dump_requests()
    assert report.startswith("1 active requests to dump")
    assert conn.name in report
    assert "timeout in" in report


def test_dump_requests_reports_empty_once(server):
    assert server.dump_requests() == "0 active requests to dump"
    assert server.dump_requests() == ""


def test_log_reopened_after_rename(server, pair, tmp_path):
    conn, client = pair
    conn.handle_request(b"GET /hello.txt HTTP/1.1\r\n\r\n")
    _drain(client)
    moved = tmp_path / "old.log"
    (tmp_path / "logs" / "transfer.log").rename(moved)
    conn.handle_request(b"GET /hello.txt HTTP/1.1\r\n\r\n")
    assert moved.read_text().endswith("# flush n' roll!\n")
    assert _log_text(server).count("\n") == 1


def test_server_serves_pipelined_requests(server):
    port = server.start()
    expected = ok_response("testsrv", 5, False) + b"hello"
    with socket.create_connection(("127.0.0.1", port), timeout=5) as client:
        client.sendall(b"GET /hello.txt HTTP/1.1\r\n\r\n")
        assert _read_exact(client, len(expected)) == expected
        client.sendall(b"GET /hello.txt HTTP/1.1\r\n\r\n")
        assert _read_exact(client, len(expected)) == expected
    deadline = time.monotonic() + 3
    while server.connections and time.monotonic() < deadline:
        time.sleep(0.02)
    assert server.connections == []
    assert _log_text(server).count(" 200 5\n") == 2


def test_idle_connection_times_out(server):
    server.idle_timeout = 0.2
    port = server.start()
    expected = ok_response("testsrv", 5, False) + b"hello"
    with socket.create_connection(("127.0.0.1", port), timeout=5) as client:
        client.sendall(b"GET /hello.txt HTTP/1.1\r\n\r\n")
        assert _read_exact(client, len(expected)) == expected
        assert client.recv(10) == b""
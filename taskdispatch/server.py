"""A small web server that gives every connection its own worker thread.

Files are served from a document root. Clients that accept the deflate
encoding get a chunked, compressed body. Every completed transfer is logged
in common log format, and the log file is reopened when it is renamed or
deleted. A connection that stays idle after a transfer is closed.
"""

from __future__ import annotations

import argparse
import itertools
import os
import signal
import socket
import sys
import threading
import time
import zlib
from pathlib import Path
from typing import BinaryIO, TextIO

from taskdispatch.buffer import Buffer
from taskdispatch.request import (
    BadRequest,
    accepts_deflate,
    chunk_header,
    header_complete,
    host_header,
    log_line,
    not_found_response,
    ok_response,
    ordinal_suffix,
    parse_request,
    redirect_response,
)

_CMD_BUF_SIZE = 8196
_BLOCK_SIZE = 64 * 1024
_DUMP_INTERVAL = 5.0


class Connection:
    """One client connection, serving a series of pipelined requests."""

    def __init__(self, server: WebServer, sock: socket.socket, address, number: int) -> None:
        self.server = server
        self.sock = sock
        self.address = address
        self.number = number
        self.name = f"req#{number} s#{sock.fileno()}"
        self.files_served = 0
        self.status: int | None = None
        self.deflate = False
        self.total_written = 0
        self.file_size = 0
        self.timeout_at: float | None = None
        self.file_buffer = Buffer()
        self.deflate_buffer = Buffer()
        self._cmd = bytearray()
        self._timeout: float | None = None
        self._lock = threading.Lock()
        self._closed = False
        server._register(self)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def _host(self) -> str:
        if isinstance(self.address, tuple):
            return str(self.address[0])
        return str(self.address)

    def _run(self) -> None:
        """Read requests until the peer goes away, fails or times out."""
        try:
            while not self._closed:
                room = _CMD_BUF_SIZE - 1 - len(self._cmd)
                if room <= 0:
                    self.server._print(f"read_req {self.name} command overflow")
                    break
                self.sock.settimeout(self._timeout)
                try:
                    data = self.sock.recv(room)
                except socket.timeout:
                    self.server._print(f"$$$ -- timeo fire -- close connection: q={self.name}")
                    break
                except OSError as exc:
                    if not self._closed:
                        self.server._print(f"read_req {self.name} err={exc.errno} {exc.strerror}")
                    break
                if not data:
                    state = "no final request" if not self._cmd else "incomplete request"
                    self.server._print(
                        f"### ({self.name}) read_req rd=0 ({state}); "
                        f"{self.files_served} files served"
                    )
                    break
                self._cmd += data
                if header_complete(bytes(self._cmd)):
                    try:
                        status = self.handle_request(bytes(self._cmd))
                    except (BadRequest, OSError):
                        break
                    if status is not None:
                        self._cmd.clear()
        finally:
            self.close()

    def handle_request(self, data: bytes) -> int | None:
        """Answer one complete request header and return the status sent.

        Requests other than GET are ignored and return None. A malformed
        request closes the connection and raises :class:`BadRequest`; a
        failed write closes it and re-raises the error.
        """
        self._timeout = None
        self.timeout_at = None
        text = bytes(data).decode("latin-1")
        try:
            line = parse_request(text, first=self.files_served > 0)
        except BadRequest as exc:
            self.server._print(f"\n$$$ regexec error: {exc}, ditching request: {text!r}")
            self.close()
            raise
        if line.method != "GET":
            return None

        self.deflate = accepts_deflate(text)
        self.file_buffer = Buffer()
        self.deflate_buffer = Buffer()
        path = self.server.resolve(line.path)
        self.server._print(f"GET req for {self.name}, path: {path}, deflate: {self.deflate}")
        try:
            if path is not None and path.is_dir():
                self.status = 301
                self.deflate = False
                self.file_size = 0
                self.file_buffer.append(
                    redirect_response(self.server.server_name, host_header(text), line.path)
                )
                self.total_written = -self.file_buffer.outof_size()
                self._flush(self.file_buffer)
            else:
                stream = self._open(path)
                if stream is None:
                    self.status = 404
                    self.deflate = False
                    self.file_size = 0
                    self.file_buffer.append(not_found_response(self.server.server_name))
                    self.total_written = -self.file_buffer.outof_size()
                    self._flush(self.file_buffer)
                else:
                    with stream:
                        self.status = 200
                        self.file_size = os.fstat(stream.fileno()).st_size
                        if self.deflate:
                            self._send_deflated(stream)
                        else:
                            self._send_plain(stream)
        except OSError as exc:
            self.server._print(f"write_filedata {self.name} write error: {exc.errno} {exc.strerror}")
            self.close()
            raise

        self.server._write_log(
            log_line(self._host, time.time(), text, self.status, self.total_written)
        )
        offset = self.server.idle_timeout + self.files_served * 0.1
        self._timeout = offset
        self.timeout_at = time.monotonic() + offset
        self.files_served += 1
        self.server._print(
            f"$$$ wrote whole file ({self.name}); total_written={self.total_written}, "
            f"this is the {self.files_served}{ordinal_suffix(self.files_served)} file served"
        )
        return self.status

    @staticmethod
    def _open(path: Path | None) -> BinaryIO | None:
        if path is None:
            return None
        try:
            return open(path, "rb")
        except OSError:
            return None

    def _flush(self, buffer: Buffer) -> None:
        pending = buffer.pending()
        self.sock.sendall(pending)
        buffer.used_outof(len(pending))
        self.total_written += len(pending)

    def _send_plain(self, stream: BinaryIO) -> None:
        self.file_buffer.append(ok_response(self.server.server_name, self.file_size, False))
        self.total_written = -self.file_buffer.outof_size()
        self._flush(self.file_buffer)
        while block := stream.read(_BLOCK_SIZE):
            self.file_buffer.append(block)
            self._flush(self.file_buffer)

    def _send_deflated(self, stream: BinaryIO) -> None:
        compressor = zlib.compressobj(9)
        self.total_written = 0
        self.deflate_buffer.append(ok_response(self.server.server_name, self.file_size, True))
        self._flush(self.deflate_buffer)
        while block := stream.read(_BLOCK_SIZE):
            self.file_buffer.append(block)
            pending = self.file_buffer.pending()
            compressed = compressor.compress(pending)
            self.file_buffer.used_outof(len(pending))
            if compressed:
                self._send_chunk(compressed)
        tail = compressor.flush()
        if tail:
            self._send_chunk(tail)
        self.sock.sendall(chunk_header(0))

    def _send_chunk(self, data: bytes) -> None:
        self.deflate_buffer.append(data)
        pending = self.deflate_buffer.pending()
        self.sock.sendall(chunk_header(len(pending)) + pending)
        self.deflate_buffer.used_outof(len(pending))
        self.total_written += len(pending)

    def close(self) -> None:
        """Shut the connection down; later calls do nothing."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.server._print(
            f"$$$ close_connection {self.name}, served {self.files_served} files"
        )
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()
        self.server._unregister(self)

    def _describe(self, now: float) -> list[str]:
        lines = [f"{self.name} status {self.status}; deflate {self.deflate}"]
        if self.timeout_at is None:
            lines.append("  timeout_at not set")
        else:
            when = self.timeout_at - now
            if when < 0:
                lines.append(f"  timeout {-when:f} seconds ago")
            else:
                lines.append(f"  timeout in {when:f} seconds")
        lines.append(
            f"  file_b {self.file_buffer.debug_str()}; "
            f"deflate_b {self.deflate_buffer.debug_str()}"
        )
        lines.append(
            f"  cmd_buf used {len(self._cmd)}; files_served {self.files_served}"
        )
        lines.append(
            f"  total_written {self.total_written}, file size {self.file_size}"
        )
        return lines


class WebServer:
    """Accepts connections and hands each to its own :class:`Connection`."""

    def __init__(self, doc_base: str, log_path: str, port: int = 8080,
                 server_name: str = "taskdispatch") -> None:
        self.doc_base = os.path.abspath(doc_base)
        self.log_path = log_path
        self.port = port
        self.server_name = server_name
        self.idle_timeout = 5.0
        self.output: TextIO = sys.stdout
        self._print_lock = threading.Lock()
        self._log_lock = threading.Lock()
        self._logfile: TextIO | None = None
        self._conn_lock = threading.Lock()
        self._connections: list[Connection] = []
        self._threads: list[threading.Thread] = []
        self._numbers = itertools.count()
        self._listener: socket.socket | None = None
        self._stopped = threading.Event()
        self._accept_thread: threading.Thread | None = None
        self._dump_thread: threading.Thread | None = None
        self._last_reported = -1

    @property
    def connections(self) -> list[Connection]:
        with self._conn_lock:
            return list(self._connections)

    def _register(self, connection: Connection) -> None:
        with self._conn_lock:
            self._connections.append(connection)

    def _unregister(self, connection: Connection) -> None:
        with self._conn_lock:
            if connection in self._connections:
                self._connections.remove(connection)

    def _print(self, text: str) -> None:
        with self._print_lock:
            self.output.write(text + "\n")
            self.output.flush()

    def _open_log(self) -> None:
        Path(self.log_path).parent.mkdir(parents=True, exist_ok=True)
        self._logfile = open(self.log_path, "a", encoding="utf-8")

    def _check_log(self) -> None:
        if self._logfile is None:
            self._open_log()
            return
        try:
            on_disk = os.stat(self.log_path)
        except FileNotFoundError:
            on_disk = None
        opened = os.fstat(self._logfile.fileno())
        if on_disk is None or (on_disk.st_ino, on_disk.st_dev) != (opened.st_ino, opened.st_dev):
            self._logfile.write("# flush n' roll!\n")
            self._logfile.close()
            self._open_log()

    def _write_log(self, line: str) -> None:
        with self._log_lock:
            self._check_log()
            self._logfile.write(line)
            self._logfile.flush()

    def resolve(self, path: str) -> Path | None:
        """The file a request path names, or None if it lies outside the root."""
        candidate = os.path.normpath(os.path.join(self.doc_base, path.lstrip("/")))
        if candidate != self.doc_base and not candidate.startswith(self.doc_base + os.sep):
            return None
        return Path(candidate)

    def dump_requests(self) -> str:
        """Print and return a report on every open connection.

        Once there are no connections, the empty report is given only once;
        later calls return an empty string until connections appear again.
        """
        connections = self.connections
        count = len(connections)
        if count == 0 and self._last_reported == 0:
            return ""
        self._last_reported = count
        now = time.monotonic()
        lines = [f"{count} active requests to dump"]
        for connection in connections:
            lines.extend(connection._describe(now))
        text = "\n".join(lines)
        self._print(text)
        return text

    def start(self) -> int:
        """Listen and accept in the background; returns the port bound."""
        if self._listener is not None:
            return self.port
        self._stopped.clear()
        with self._log_lock:
            if self._logfile is None:
                self._open_log()
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind(("", self.port))
        listener.listen(25)
        listener.settimeout(0.2)
        self._listener = listener
        self.port = listener.getsockname()[1]
        self._print(
            f"Serving content from {self.doc_base} on port {self.port}, "
            f"logging transfers to {self.log_path}"
        )
        self._accept_thread = threading.Thread(target=self._accept_loop, name="accept", daemon=True)
        self._dump_thread = threading.Thread(target=self._dump_loop, name="dump", daemon=True)
        self._accept_thread.start()
        self._dump_thread.start()
        return self.port

    def _accept_loop(self) -> None:
        listener = self._listener
        while not self._stopped.is_set():
            try:
                sock, address = listener.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if not self._stopped.is_set():
                    self._print(f"accept failure (errno={exc.errno} {exc.strerror})")
                break
            sock.settimeout(None)
            connection = Connection(self, sock, address, next(self._numbers))
            self._print(f"accept_cb; made: {connection.name}")
            thread = threading.Thread(target=connection._run, name=connection.name, daemon=True)
            self._threads.append(thread)
            thread.start()

    def _dump_loop(self) -> None:
        while not self._stopped.wait(_DUMP_INTERVAL):
            self.dump_requests()

    def serve_forever(self) -> None:
        """Serve until :meth:`stop` is called or the process is interrupted."""
        self.start()
        try:
            while not self._stopped.wait(0.5):
                pass
        except KeyboardInterrupt:
            pass
        finally:
            self.stop()

    def stop(self) -> None:
        """Stop accepting, close every connection and the log."""
        self._stopped.set()
        if self._listener is not None:
            self._listener.close()
        for thread in (self._accept_thread, self._dump_thread):
            if thread is not None and thread is not threading.current_thread():
                thread.join(timeout=2.0)
        for connection in self.connections:
            connection.close()
        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join(timeout=2.0)
        self._threads.clear()
        self._listener = None
        self._accept_thread = None
        self._dump_thread = None
        with self._log_lock:
            if self._logfile is not None:
                self._logfile.close()
                self._logfile = None


def main(argv: list[str] | None = None) -> int:
    """Serve files from the user's Sites directory."""
    program = os.path.basename(sys.argv[0]) or "taskdispatch"
    home = Path.home()
    parser = argparse.ArgumentParser(prog=program, description="Serve files over HTTP.")
    parser.add_argument("-p", "--port", type=int, default=8080, help="port to listen on")
    parser.add_argument("--root", default=str(home / "Sites"), help="document root")
    parser.add_argument(
        "--log",
        default=str(home / "Library" / "Logs" / f"{program}-transfer.log"),
        help="transfer log file",
    )
    args = parser.parse_args(argv)
    server = WebServer(args.root, args.log, args.port, program)
    if hasattr(signal, "SIGINFO"):
        signal.signal(signal.SIGINFO, lambda *_: server.dump_requests())
    server.serve_forever()
    return 0
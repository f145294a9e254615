"""Parsing of HTTP requests and formatting of the server's responses."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone

_FIRST_REQUEST = re.compile(r"([A-Z]+)[ \t]+([^ \t\n]+)[ \t]+(HTTP/1\.1)[\r\n]+")
_NTH_REQUEST = re.compile(r"([A-Z]+)[ \t]+([^ \t\n]+)([ \t]+HTTP/1\.1)?[\r\n]+")
_ACCEPT_DEFLATE = re.compile(r"[\r\n]+Accept-Encoding:(.*,)? *deflate[,\r\n]+", re.DOTALL)
_HOST = re.compile(r"[\r\n]+Host: *([^ \r\n]+)[ \r\n]+")

_NOT_FOUND_BODY = (
    "<HTML><HEAD><TITLE>404 Page not here</TITLE></HEAD><BODY><P>You step in the "
    "stream,<BR>but the water has moved on.<BR>This <B>page is not here</B>.<BR>"
    "</BODY></HTML>"
)

_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


class BadRequest(ValueError):
    """The request line could not be parsed."""


@dataclass(frozen=True)
class RequestLine:
    """Method, path and (if given) protocol version of a request."""

    method: str
    path: str
    version: str | None = None


def parse_request(text: str, first: bool = True) -> RequestLine:
    """Parse the request line at the start of ``text``.

    With ``first`` the line must name HTTP/1.1; otherwise the version is
    optional.
    """
    pattern = _FIRST_REQUEST if first else _NTH_REQUEST
    match = pattern.match(text)
    if match is None:
        raise BadRequest(f"malformed request: {text!r}")
    version = match.group(3)
    if version is not None:
        version = version.strip(" \t")
    return RequestLine(match.group(1), match.group(2), version)


def header_complete(data: bytes | str) -> bool:
    """Whether ``data`` holds a whole header: over 4 bytes, ending in 4 CR/LFs."""
    if isinstance(data, str):
        data = data.encode("latin-1")
    if len(data) <= 4:
        return False
    return all(ch in b"\r\n" for ch in data[-4:])


def accepts_deflate(text: str) -> bool:
    """Whether the headers list deflate among the accepted encodings."""
    return _ACCEPT_DEFLATE.search(text) is not None


def host_header(text: str) -> str | None:
    """The value of the Host header, or None if there is none."""
    match = _HOST.search(text)
    return match.group(1) if match else None


def not_found_response(server_name: str) -> bytes:
    """A complete 404 response, headers and body."""
    return (
        "HTTP/1.1 404 Not Found\r\n"
        f"Content-Length: {len(_NOT_FOUND_BODY)}\r\n"
        "Expires: now\r\n"
        f"Server: {server_name}\r\n"
        "\r\n"
        f"{_NOT_FOUND_BODY}"
    ).encode("utf-8")


def redirect_response(server_name: str, host: str | None, path: str) -> bytes:
    """A 301 response sending a directory request to its index page."""
    directory = path.strip("/")
    location = f"http://{host or ''}/{directory}/index.html" if directory else (
        f"http://{host or ''}/index.html"
    )
    return (
        "HTTP/1.1 301 Redirect\r\n"
        "Content-Length: 0\r\n"
        "Expires: now\r\n"
        f"Server: {server_name}\r\n"
        f"Location: {location}\r\n"
        "\r\n"
    ).encode("utf-8")


def ok_response(server_name: str, size: int, deflate: bool) -> bytes:
    """The headers of a 200 response.

    A deflated response is chunked and leaves off the closing blank line,
    which the first chunk header supplies.
    """
    if deflate:
        text = (
            "HTTP/1.1 200 OK\r\n"
            "Transfer-Encoding: chunked\r\n"
            "Content-Encoding: deflate\r\n"
            "Expires: now\r\n"
            f"Server: {server_name}\r\n"
        )
    else:
        text = (
            "HTTP/1.1 200 OK\r\n"
            f"Content-Length: {size}\r\n"
            "Expires: now\r\n"
            f"Server: {server_name}\r\n"
            "\r\n"
        )
    return text.encode("utf-8")


def chunk_header(size: int) -> bytes:
    """The separator before a chunk of ``size`` bytes; size 0 ends the body."""
    if size < 0:
        raise ValueError("chunk size must not be negative")
    trailer = "" if size else "\r\n"
    return f"\r\n{size:x}\r\n{trailer}".encode("ascii")


def _log_time(when: datetime | float) -> str:
    if isinstance(when, datetime):
        moment = when.astimezone(timezone.utc) if when.tzinfo else when
    else:
        moment = datetime.fromtimestamp(when, timezone.utc)
    return (
        f"{moment.day:02d}/{_MONTHS[moment.month - 1]}/{moment.year:04d}:"
        f"{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d} +0"
    )


def log_line(address: str, when: datetime | float, request_text: str,
             status: int, written: int) -> str:
    """A transfer-log entry in common log format, ending in a newline.

    Only the request line (up to the first CR or LF) is logged.
    """
    request = re.split(r"[\r\n]", request_text, maxsplit=1)[0]
    return f'{address} - - [{_log_time(when)}] "{request}" {status} {written}\n'


def ordinal_suffix(count: int) -> str:
    """'st' for 1, 'nd' for 2 and 'th' for everything else."""
    if count == 1:
        return "st"
    if count == 2:
        return "nd"
    return "th"
"""Transport-neutral request and response objects.

The HTTP transport converts each incoming request into a Request, lets the
registry pick a host, and writes back the Response the host returns.
"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from http import HTTPStatus
from pathlib import Path
from urllib.parse import parse_qs, unquote, urlsplit


@dataclass(frozen=True)
class Request:
    """An incoming request.

    Attributes:
        method: HTTP method.
        target: Raw request target (path plus query) as sent.
        headers: Header mapping with lowercase names.
        remote_addr: Client address, empty when unknown.
        protocol: Protocol version string, e.g. ``HTTP/1.1``.
    """

    method: str
    target: str
    headers: dict[str, str] = field(default_factory=dict)
    remote_addr: str = ""
    protocol: str = "HTTP/1.1"

    @property
    def path(self) -> str:
        """Decoded URL path, always starting with ``/``."""
        path = unquote(urlsplit(self.target).path)
        return path if path.startswith("/") else f"/{path}"

    @property
    def query_string(self) -> str:
        return urlsplit(self.target).query

    @property
    def query(self) -> dict[str, list[str]]:
        return parse_qs(self.query_string)

    @property
    def host(self) -> str:
        """Value of the Host header."""
        return self.headers.get("host", "")

    @property
    def hostname(self) -> str:
        """Host header without the port."""
        host = self.host
        if host.startswith("["):
            return host.split("]", 1)[0] + "]"
        return host.split(":", 1)[0]


@dataclass
class Response:
    """An outgoing response.

    Attributes:
        status: HTTP status code.
        body: Response payload.
        headers: Header name/value pairs.
        size: Byte count reported in the access log; None when not
            determinable (e.g. template-rendered pages).
    """

    status: int
    body: bytes = b""
    headers: list[tuple[str, str]] = field(default_factory=list)
    size: int | None = None

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None

    @classmethod
    def error(cls, status: int, message: str | None = None) -> Response:
        text = message if message is not None else HTTPStatus(status).phrase
        return cls(
            status=status,
            body=f"{text}\n".encode(),
            headers=[("Content-Type", "text/plain; charset=utf-8")],
        )

    @classmethod
    def redirect(cls, location: str, status: int = HTTPStatus.MOVED_PERMANENTLY) -> Response:
        return cls(
            status=status,
            body=HTTPStatus(status).phrase.encode(),
            headers=[
                ("Location", location),
                ("Content-Type", "text/plain; charset=utf-8"),
            ],
        )

    @classmethod
    def html(cls, text: str, status: int = HTTPStatus.OK) -> Response:
        return cls(
            status=status,
            body=text.encode("utf-8"),
            headers=[("Content-Type", "text/html; charset=utf-8")],
        )

    @classmethod
    def file(cls, path: Path) -> Response:
        """Serve a file verbatim; the size is known."""
        body = path.read_bytes()
        content_type, encoding = mimetypes.guess_type(path.name)
        headers = [("Content-Type", content_type or "application/octet-stream")]
        if encoding:
            headers.append(("Content-Encoding", encoding))
        return cls(status=HTTPStatus.OK, body=body, headers=headers, size=len(body))

"""HTTP transport for Lantern.

Serves every configured host from one threaded ``http.server`` listener,
one thread per request. Requests are converted to ``Request`` objects,
routed through the registry and the host's ``Response`` is written back.

Key classes:
- LanternServer: Owns the listener and the registry it serves.
- _RequestHandler: Bridges http.server to the registry.
"""

from __future__ import annotations

import functools
import logging
import os
import socketserver
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

from .config import ConfigError, ServerConfig
from .http import Request, Response
from .registry import Registry

logger = logging.getLogger(__name__)

SUPPORTED_SERVER_TYPES = ("standalone",)


class _RequestHandler(BaseHTTPRequestHandler):
    """Converts each HTTP request into a Request and writes the Response."""

    server_version = "Lantern"

    def __init__(self, *args, registry: Registry, **kwargs):
        self.registry = registry
        super().__init__(*args, **kwargs)

    def log_message(self, format, *args):  # noqa: A002
        # Access logging happens in the host.
        pass

    def _remote_addr(self) -> str:
        address = self.client_address
        if isinstance(address, tuple) and address:
            return str(address[0])
        return ""

    def _request(self) -> Request:
        return Request(
            method=self.command,
            target=self.path,
            headers={key.lower(): value for key, value in self.headers.items()},
            remote_addr=self._remote_addr(),
            protocol=self.request_version,
        )

    def _dispatch(self) -> None:
        request = self._request()
        try:
            response = self.registry.handle(request)
        except Exception:
            logger.exception("Unhandled error serving %s", request.target)
            response = Response.error(HTTPStatus.INTERNAL_SERVER_ERROR)
        self._write(response)

    def _write(self, response: Response) -> None:
        self.send_response(response.status)
        for name, value in response.headers:
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(response.body)

    do_GET = _dispatch
    do_HEAD = _dispatch
    do_POST = _dispatch
    do_PUT = _dispatch
    do_DELETE = _dispatch
    do_PATCH = _dispatch
    do_OPTIONS = _dispatch


class _UnixHTTPServer(socketserver.ThreadingUnixStreamServer):
    daemon_threads = True


class LanternServer:
    """Serves a registry over HTTP.

    Attributes:
        registry: Hosts to serve.
        config: Listener selection.
    """

    def __init__(self, registry: Registry, config: ServerConfig):
        if config.type not in SUPPORTED_SERVER_TYPES:
            if config.type == "fastcgi":
                raise ConfigError("fastcgi transport is not supported; use server.type: standalone")
            raise ConfigError(f"Unknown server type: {config.type}")
        self.registry = registry
        self.config = config
        self._httpd: socketserver.BaseServer | None = None

    @property
    def address(self) -> str:
        if self.config.socket:
            return self.config.socket
        return f"{self.config.bind}:{self.config.port}"

    def _create_httpd(self) -> socketserver.BaseServer:
        handler = functools.partial(_RequestHandler, registry=self.registry)
        if self.config.socket:
            socket_path = Path(self.config.socket)
            if socket_path.exists():
                os.unlink(socket_path)
            return _UnixHTTPServer(str(socket_path), handler)
        httpd = ThreadingHTTPServer((self.config.bind, self.config.port), handler)
        httpd.daemon_threads = True
        return httpd

    def start(self) -> None:  # pragma: no cover - integration path
        try:
            self._httpd = self._create_httpd()
        except OSError as exc:
            raise ConfigError(f"Could not create network listener: {exc}") from exc
        logger.info("Starting HTTP server. Listening at %s.", self.address)
        try:
            self._httpd.serve_forever()
        finally:
            self._httpd.server_close()

    def stop(self) -> None:
        if self._httpd is not None:
            self._httpd.shutdown()

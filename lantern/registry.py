"""Host registry and request routing for Lantern.

The registry maps route keys to hosts. A key is either a bare path prefix
(``/docs``), a hostname (``example.com``), a hostname with a path
(``example.com/blog``), or the fallback key ``default``.

A request is matched against its path and against ``hostname + path``;
the longest matching key wins, then the key with more path segments, then
the lexicographically smallest. Prefixes match on segment boundaries, so
``/blog`` matches ``/blog/post`` but not ``/blogger``.

Rebuilds are all-or-nothing: every host of the new configuration is built
before the route table is swapped, and old hosts are closed only after
the swap.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from http import HTTPStatus
from pathlib import Path

from .config import ConfigError, Settings, host_entries
from .host import Host, format_access_line
from .http import Request, Response

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("lantern.access")

DEFAULT_HOST = "default"

HostFactory = Callable[..., Host]


def _prefix_match(value: str, prefix: str) -> bool:
    if not value.startswith(prefix):
        return False
    if len(value) == len(prefix) or prefix.endswith("/"):
        return True
    return value[len(prefix)] == "/"


def match_route(keys: Iterable[str], hostname: str, url_path: str) -> str | None:
    """Return the route key that best matches a request, or None.

    Args:
        keys: Registered route keys.
        hostname: Request hostname without port.
        url_path: Request path.

    Returns:
        The winning key; None when nothing but the fallback could apply.
    """
    host_path = hostname + url_path
    candidates = []
    for key in keys:
        if not key or key == DEFAULT_HOST:
            continue
        if key.startswith("/") and _prefix_match(url_path, key):
            candidates.append(key)
        elif _prefix_match(host_path, key):
            candidates.append(key)
    if not candidates:
        return None
    return min(candidates, key=lambda k: (-len(k), -k.count("/"), k))


def validate_host_dirs(entries: Mapping[str, Path]) -> None:
    """Check every host directory exists and is a directory.

    Raises:
        ConfigError: On the first invalid entry.
    """
    for name, root in entries.items():
        if not root.exists():
            raise ConfigError(f"failed to validate host {name}: directory not found", root)
        if not root.is_dir():
            raise ConfigError(f"host {name} does not point to a directory", root)


class Registry:
    """The set of active hosts.

    Attributes:
        watch: Whether hosts built by rebuild start live-reload watchers.
    """

    def __init__(
        self,
        hosts: Mapping[str, Host] | None = None,
        watch: bool = True,
        host_factory: HostFactory | None = None,
    ):
        self.watch = watch
        self._host_factory = host_factory or Host.create
        self._lock = threading.Lock()
        self._hosts: dict[str, Host] = dict(hosts or {})

    @property
    def hosts(self) -> dict[str, Host]:
        """A copy of the current route table."""
        with self._lock:
            return dict(self._hosts)

    def route(self, request: Request) -> Host | None:
        """Select the host for a request, falling back to ``default``."""
        hosts = self.hosts
        key = match_route(hosts, request.hostname, request.path) or DEFAULT_HOST
        host = hosts.get(key)
        if host is None:
            logger.error("Request for unknown host: %s", request.host)
        return host

    def handle(self, request: Request) -> Response:
        """Route a request and let the selected host serve it."""
        host = self.route(request)
        if host is not None:
            return host.handle(request)
        logger.error("Failed to serve host %s", request.host)
        response = Response.error(HTTPStatus.INTERNAL_SERVER_ERROR, "No host configured for this request")
        access_logger.info(format_access_line(request, response.status, response.size))
        return response

    def rebuild(self, settings: Settings) -> None:
        """Replace every host with the ones configured in settings.

        Raises:
            ConfigError: If the ``hosts`` entry or a host directory is invalid.
            HostError: If a host fails to initialize.

        On error the live route table is left untouched.
        """
        entries = host_entries(settings)
        validate_host_dirs(entries)

        built: dict[str, Host] = {}
        try:
            for name, root in entries.items():
                built[name] = self._host_factory(name, root, watch=self.watch)
        except Exception:
            for host in built.values():
                host.close()
            raise

        with self._lock:
            previous = self._hosts
            self._hosts = built

        for host in previous.values():
            host.close()

        if DEFAULT_HOST not in built:
            logger.warning("Warning: default host was not provided.")
        logger.info("Loaded %d host(s): %s", len(built), ", ".join(sorted(built)))

    def close(self) -> None:
        with self._lock:
            hosts, self._hosts = self._hosts, {}
        for host in hosts.values():
            host.close()

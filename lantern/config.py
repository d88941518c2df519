"""Settings loading for Lantern.

Both the global settings file (``settings.yaml``) and each host's
``site.yaml`` are YAML documents. They are consumed through ``Settings``,
a read-only wrapper with a get-by-path accessor.

Key objects:
- Settings: Immutable view over a parsed settings mapping.
- load_settings: Parse a YAML settings file into Settings.
- load_global_settings: Parse and validate the process-level settings file.
- ServerConfig: Listener selection derived from the ``server`` section.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

DEFAULT_SETTINGS_FILE = "./settings.yaml"
HOST_SETTINGS_FILE = "site.yaml"

DEFAULT_SERVER = {
    "type": "standalone",
    "bind": "",
    "port": 9000,
    "socket": "",
}


class ConfigError(Exception):
    """Invalid or unreadable configuration.

    Attributes:
        source_path: Settings file or directory the error refers to, if any.
        message: Human-readable error message.
    """

    def __init__(self, message: str, source_path: Path | None = None):
        self.source_path = source_path
        self.message = message
        if source_path is not None:
            super().__init__(f"{source_path}: {message}")
        else:
            super().__init__(message)


class Settings:
    """Read-only settings snapshot.

    Reload never mutates a Settings object; it builds a new one.
    """

    def __init__(self, data: Mapping[str, Any] | None = None):
        self._data: dict[str, Any] = copy.deepcopy(dict(data or {}))

    def get(self, *path: str, default: Any = None) -> Any:
        """Walk nested mappings along path.

        Returns default when any key is missing or an intermediate value
        is not a mapping.
        """
        node: Any = self._data
        for key in path:
            if not isinstance(node, Mapping) or key not in node:
                return default
            node = node[key]
        return node

    def get_str(self, *path: str, default: str = "") -> str:
        value = self.get(*path)
        if value is None:
            return default
        return str(value)

    def as_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __repr__(self) -> str:
        return f"Settings({self._data!r})"


def load_settings(path: Path) -> Settings:
    """Load a YAML settings file.

    Args:
        path: Path to the YAML file.

    Returns:
        Settings built from the file (an empty file yields empty settings).

    Raises:
        ConfigError: If the file is missing, unreadable, not valid YAML or
            not a mapping.
    """
    if not path.is_file():
        raise ConfigError("settings file not found", path)
    try:
        with open(path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"could not read settings file: {exc}", path) from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"parsing settings file: {exc}", path) from exc
    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise ConfigError("settings must be a mapping", path)
    return Settings(loaded)


def host_entries(settings: Settings) -> dict[str, Path]:
    """Return the ``hosts`` mapping of name to document root."""
    entries = settings.get("hosts")
    if not isinstance(entries, Mapping) or not entries:
        raise ConfigError("missing 'hosts' entry")
    return {str(name): Path(str(root)) for name, root in entries.items()}


def load_global_settings(path: Path) -> Settings:
    """Load the process-level settings file and validate its ``hosts`` entry."""
    settings = load_settings(path)
    host_entries(settings)
    return settings


@dataclass(frozen=True)
class ServerConfig:
    """Listener selection.

    Attributes:
        type: ``standalone`` or ``fastcgi``.
        bind: Interface to bind for TCP listeners.
        port: TCP port.
        socket: Unix socket path; takes precedence over bind/port when set.
    """

    type: str
    bind: str
    port: int
    socket: str

    @classmethod
    def from_settings(cls, settings: Settings) -> ServerConfig:
        section = settings.get("server", default={})
        if not isinstance(section, Mapping):
            raise ConfigError("'server' must be a mapping")
        merged = {**DEFAULT_SERVER, **{k: v for k, v in section.items() if v is not None}}
        try:
            port = int(merged["port"])
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"invalid server port: {merged['port']!r}") from exc
        return cls(
            type=str(merged["type"]),
            bind=str(merged["bind"]),
            port=port,
            socket=str(merged["socket"] or ""),
        )


def file_signature(path: Path) -> tuple[int, int] | None:
    """Return (mtime_ns, size) of path, or None if it cannot be stat'ed."""
    try:
        st = path.stat()
    except OSError:
        return None
    return (st.st_mtime_ns, st.st_size)

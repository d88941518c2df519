"""Live reload for Lantern.

Each host gets a watchdog observer on its ``site.yaml`` and its template
directory; the process gets one on the global settings file. Observers run
on their own threads and only ever call the reload entry points, which
build new state first and swap it in atomically. A failed reload is
logged and leaves the previous state in effect.

Key classes:
- HostWatcher: Reloads one host's settings or templates.
- SettingsWatcher: Rebuilds the registry when the global settings change.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import HOST_SETTINGS_FILE, ConfigError, file_signature, load_global_settings, load_settings
from .host import HostError
from .templates import TEMPLATE_EXTENSION

if TYPE_CHECKING:
    from .host import Host
    from .registry import Registry

logger = logging.getLogger(__name__)

# Events that never change file contents.
_IGNORED_EVENT_TYPES = frozenset({"opened", "closed_no_write"})


def _event_paths(event: FileSystemEvent) -> list[Path]:
    paths = [event.src_path, getattr(event, "dest_path", "")]
    return [Path(os.fsdecode(p)).resolve() for p in paths if p]


class _HostChangeHandler(FileSystemEventHandler):
    def __init__(self, watcher: HostWatcher):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type in _IGNORED_EVENT_TYPES:
            return
        try:
            self._dispatch(event)
        except Exception:
            # The observer thread must survive a failed reload.
            logger.exception("%s: Error handling change event", self.watcher.host.name)

    def _dispatch(self, event: FileSystemEvent) -> None:
        for path in _event_paths(event):
            if path == self.watcher.settings_path:
                self.watcher.on_settings_changed(path)
                return
            if path.parent == self.watcher.template_dir and path.name.endswith(TEMPLATE_EXTENSION):
                self.watcher.on_templates_changed(path)
                return


class HostWatcher:
    """Watches one host's settings file and template directory.

    Attributes:
        host: The watched host.
        settings_path: Resolved path of the host's ``site.yaml``.
        template_dir: Resolved template directory currently watched.
    """

    def __init__(self, host: Host):
        self.host = host
        self.settings_path = (host.document_root / HOST_SETTINGS_FILE).resolve()
        self.template_dir = host.template_dir().resolve()
        self._handler = _HostChangeHandler(self)
        self._observer: Observer | None = None
        self._template_watch = None
        self._lock = threading.Lock()

    def start(self) -> None:
        observer = Observer()
        observer.schedule(self._handler, str(self.settings_path.parent), recursive=False)
        if self.template_dir != self.settings_path.parent and self.template_dir.is_dir():
            self._template_watch = observer.schedule(
                self._handler, str(self.template_dir), recursive=False
            )
        observer.daemon = True
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            if observer.is_alive() and threading.current_thread() is not observer:
                observer.join()

    def on_settings_changed(self, path: Path) -> None:
        with self._lock:
            try:
                settings = load_settings(self.settings_path)
            except ConfigError as exc:
                logger.error("%s: Could not reload host settings: %s", self.host.name, exc)
                return
            template_dir = self.host.template_dir(settings).resolve()
            if template_dir == self.template_dir:
                self.host.reload_settings()
                return
            # Settings and templates from the new directory go live together.
            logger.info("%s: Template directory moved to %s", self.host.name, template_dir)
            if self.host.reload():
                self._retarget(template_dir)

    def on_templates_changed(self, path: Path) -> None:
        logger.info("%s: Reloading templates, %s changed", self.host.name, path)
        with self._lock:
            self.host.reload_templates()

    def _retarget(self, template_dir: Path) -> None:
        self.template_dir = template_dir
        observer = self._observer
        if observer is None:
            return
        if self._template_watch is not None:
            observer.unschedule(self._template_watch)
            self._template_watch = None
        if template_dir != self.settings_path.parent and template_dir.is_dir():
            self._template_watch = observer.schedule(
                self._handler, str(template_dir), recursive=False
            )


class _SettingsChangeHandler(FileSystemEventHandler):
    def __init__(self, watcher: SettingsWatcher):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type in _IGNORED_EVENT_TYPES:
            return
        if self.watcher.settings_path not in _event_paths(event):
            return
        try:
            self.watcher.rebuild()
        except Exception:
            logger.exception("Error rebuilding hosts from %s", self.watcher.settings_path)


class SettingsWatcher:
    """Rebuilds the registry when the global settings file changes.

    Attributes:
        settings_path: Resolved path of the global settings file.
        registry: Registry to rebuild.
    """

    def __init__(
        self,
        settings_path: Path,
        registry: Registry,
        signature: tuple[int, int] | None = None,
    ):
        """Create the watcher.

        Args:
            settings_path: Global settings file.
            registry: Registry to rebuild.
            signature: ``file_signature`` of the settings file taken before
                the registry was built from it; taken now when omitted.
        """
        self.settings_path = settings_path.resolve()
        self.registry = registry
        self._observer: Observer | None = None
        self._lock = threading.Lock()
        self._last_signature = signature if signature is not None else self._compute_signature()

    def start(self) -> None:
        observer = Observer()
        observer.schedule(
            _SettingsChangeHandler(self), str(self.settings_path.parent), recursive=False
        )
        observer.daemon = True
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join()

    def _compute_signature(self) -> tuple[int, int] | None:
        return file_signature(self.settings_path)

    def rebuild(self) -> bool:
        """Re-read the settings file and rebuild the registry.

        Returns:
            True when a new registry went live.
        """
        with self._lock:
            signature = self._compute_signature()
            if signature is None or signature == self._last_signature:
                return False
            logger.info("Settings file %s changed; rebuilding hosts", self.settings_path)
            try:
                settings = load_global_settings(self.settings_path)
                self.registry.rebuild(settings)
            except (ConfigError, HostError) as exc:
                logger.error("Error loading settings file %s: %s", self.settings_path, exc)
                return False
            self._last_signature = signature
            return True

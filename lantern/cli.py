"""Command-line interface for Lantern.

This module defines the CLI commands using the Click framework.

Commands:
- run: Serve every configured host, reloading on settings changes.
- index: Build the search index of every configured host.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from . import __version__
from .config import DEFAULT_SETTINGS_FILE, ConfigError, ServerConfig, file_signature, load_global_settings
from .host import HostError
from .registry import Registry
from .search import build_index

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]

settings_option = click.option(
    "-c",
    "--settings",
    "settings_file",
    default=DEFAULT_SETTINGS_FILE,
    show_default=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to the settings.yaml file",
)

log_level_option = click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Diagnostic log level (written to stderr)",
)


def configure_logging(level: str = "INFO") -> None:
    """Send diagnostics to stderr and the access log to stdout."""
    logging.basicConfig(
        level=level.upper(),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    access = logging.getLogger("lantern.access")
    if not access.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(message)s"))
        access.addHandler(handler)
    access.setLevel(logging.INFO)
    access.propagate = False


def _load_registry(
    settings_file: Path, watch: bool
) -> tuple[Registry, ServerConfig, tuple[int, int] | None]:
    """Build the registry; also returns the settings file signature it was built from."""
    if not settings_file.is_file():
        raise click.ClickException(f"could not load settings file: {settings_file}")
    signature = file_signature(settings_file)
    try:
        settings = load_global_settings(settings_file)
        server_config = ServerConfig.from_settings(settings)
        registry = Registry(watch=watch)
        registry.rebuild(settings)
    except (ConfigError, HostError) as exc:
        raise click.ClickException(
            f"error while reading settings file {settings_file}: {exc}"
        ) from exc
    return registry, server_config, signature


def _index_hosts(registry: Registry) -> int:
    """Build the search index of every host; returns the number of documents."""
    total = 0
    for name, host in sorted(registry.hosts.items()):
        content_dir = host.content_dir()
        if content_dir is None:
            raise click.ClickException(f"error locating content path for '{name}'")
        click.echo(f"Host '{name}' has content path '{content_dir}'")
        try:
            count = build_index(content_dir, host.index_path())
        except OSError as exc:
            raise click.ClickException(f"error indexing '{name}': {exc}") from exc
        click.echo(f"Indexed {count} documents into {host.index_path()}")
        total += count
    return total


@click.group()
@click.version_option(version=__version__, prog_name="lantern")
def cli():
    """Lantern multi-host markdown server."""


@cli.command()
@settings_option
@click.option("-i", "--index", "build_indexes", is_flag=True, help="Generate search index on start")
@log_level_option
def run(settings_file: Path, build_indexes: bool, log_level: str):
    """Run a Lantern server."""
    configure_logging(log_level)
    from .server import LanternServer
    from .watcher import SettingsWatcher

    registry, server_config, signature = _load_registry(settings_file, watch=True)
    try:
        if build_indexes:
            _index_hosts(registry)
        try:
            server = LanternServer(registry, server_config)
        except ConfigError as exc:
            raise click.ClickException(str(exc)) from exc

        watcher = SettingsWatcher(settings_file, registry, signature=signature)
        watcher.start()
        try:
            # Apply edits made while hosts were being built or indexed.
            watcher.rebuild()
            server.start()
        except ConfigError as exc:
            raise click.ClickException(str(exc)) from exc
        except KeyboardInterrupt:
            click.echo("Shutting down")
        finally:
            watcher.stop()
    finally:
        registry.close()


@cli.command()
@settings_option
@log_level_option
def index(settings_file: Path, log_level: str):
    """Generate search index(es) for Lantern sites."""
    configure_logging(log_level)
    registry, _, _ = _load_registry(settings_file, watch=False)
    try:
        total = _index_hosts(registry)
    finally:
        registry.close()
    click.echo(f"Indexed {total} documents")


def main():
    """Entry point for the CLI application."""
    cli()

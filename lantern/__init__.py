"""Lantern multi-host markdown server.

This package serves markdown, HTML and text content for several virtual
sites from one process. Each site ("host") has its own document root,
``site.yaml`` settings and Jinja2 templates; requests are routed to a host,
resolved to a file, rendered through mistune and the host's templates, and
settings and templates are reloaded live without a restart.

The main entry point is the CLI module, which provides commands for
serving the configured hosts and building their search indexes.
"""

__all__ = ["__version__"]
__version__ = "0.9.1"

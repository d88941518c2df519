"""Utility functions for Lantern.

Small pure helpers shared by the resolver, the template function set and
the page model.

Key functions:
    titleize: Convert filenames to human-readable titles.
    is_external_link: Detect absolute URLs that leave the current host.
    safe_join: Join a request path onto a directory without escaping it.
    get_int: Lenient integer coercion used by templates.
"""

from __future__ import annotations

import posixpath
import re
from pathlib import Path
from typing import Any

EXTERNAL_LINK_RE = re.compile(r"^[a-zA-Z0-9]+://")
CAMEL_CASE_RE = re.compile(r"([a-z][a-z])([A-Z][a-z])")


def titleize(filename: str) -> str:
    """Convert a filename to a human-readable title.

    Strips every extension, replaces hyphens and underscores with spaces
    and capitalizes each word.

    Args:
        filename: Filename with or without extension.

    Returns:
        Human-readable title string.

    Examples:
        >>> titleize("getting-started.md")
        'Getting Started'

        >>> titleize("notes.md.tpl")
        'Notes'
    """
    base = Path(filename).name.split(".", 1)[0]
    words = re.split(r"[\s\-_]+", base)
    return " ".join(word.capitalize() for word in words if word) or "Untitled"


def split_camel_case(text: str) -> str:
    """Insert a space between lowercase-uppercase word boundaries.

    >>> split_camel_case("helloWorld")
    'hello World'
    """
    return CAMEL_CASE_RE.sub(r"\1 \2", text)


def is_external_link(url: str) -> bool:
    """Return True when url carries a scheme (``scheme://``)."""
    return bool(EXTERNAL_LINK_RE.match(url))


def safe_join(root: Path, url_path: str) -> Path | None:
    """Join a URL path onto root, refusing paths that climb out of it.

    Args:
        root: Base directory.
        url_path: Slash separated path from a request.

    Returns:
        The joined path, or None if the normalized path escapes root.
    """
    normalized = posixpath.normpath("/" + url_path.lstrip("/"))
    parts = [p for p in normalized.split("/") if p]
    if any(p == ".." for p in parts):
        return None
    return root.joinpath(*parts) if parts else root


def get_int(value: Any) -> int:
    """Coerce value to int, returning 0 when that is not possible.

    Floats are truncated, numeric strings are parsed; anything else is 0.
    """
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return 0


def escape_html(text: str) -> str:
    """Escape special HTML characters in a string.

    >>> escape_html('Tom & "Jerry"')
    'Tom &amp; &quot;Jerry&quot;'
    """
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )

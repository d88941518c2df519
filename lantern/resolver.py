"""Path resolution for Lantern.

Maps a logical request path onto a file under a content directory,
guessing extensions and descending into directory ``index`` files.

Key function:
- resolve: Resolve a candidate path to an existing file or directory.
"""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from pathlib import Path

# Elements on the left have precedence.
EXTENSIONS: tuple[str, ...] = (".md", ".html", ".txt", ".md.tpl", ".yaml")

INDEX_NAME = "index"

# Guards against ``index`` symlink loops.
MAX_INDEX_DEPTH = 32


@dataclass(frozen=True)
class Resolved:
    """A path that exists on disk.

    Attributes:
        path: Concrete path of the file or directory.
        is_dir: Whether the match is a directory.
        size: Size in bytes as reported by stat.
    """

    path: Path
    is_dir: bool
    size: int


def _stat(path: Path) -> Resolved | None:
    try:
        st = os.stat(path)
    except (OSError, ValueError):
        return None
    return Resolved(path=path, is_dir=stat.S_ISDIR(st.st_mode), size=st.st_size)


def _normalize(candidate: Path | str) -> Path:
    text = str(candidate)
    stripped = text.rstrip("/" + os.sep)
    return Path(stripped or text[:1] or ".")


def resolve(candidate: Path | str, descend: bool = True) -> Resolved | None:
    """Resolve candidate to an existing file or directory.

    Without descend, the candidate is only checked as-is. With descend:

    1. An existing directory is searched for an ``index`` file, repeating
       into ``index`` directories; the deepest directory wins when no
       index file exists.
    2. An existing file is returned as-is.
    3. A missing path is retried with each of EXTENSIONS appended, in order.

    Args:
        candidate: Path to resolve. Trailing separators are ignored.
        descend: Whether to apply index descent and extension guessing.

    Returns:
        The match, or None when nothing exists.
    """
    path = _normalize(candidate)
    if not descend:
        return _stat(path)

    directories: list[Resolved] = []
    for _ in range(MAX_INDEX_DEPTH):
        match = _stat(path)
        if match is None:
            break
        if not match.is_dir:
            return match
        directories.append(match)
        path = path / INDEX_NAME

    if match is None:
        for extension in EXTENSIONS:
            guessed = _stat(path.with_name(path.name + extension))
            if guessed is not None:
                return guessed

    return directories[-1] if directories else None

"""Per-request page model for Lantern.

A Page is built fresh for every request that reaches the content pipeline
and handed to the host's templates as ``page``. It is never shared between
requests.

Key objects:
- Page: Dataclass with the resolved file, rendered content and navigation.
- Link: A (url, text) pair used by the breadcrumb and the menus.
- create_breadcrumb / create_menu: Navigation derived from the content tree.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from markupsafe import Markup

from .utils import titleize

if TYPE_CHECKING:
    from .config import Settings
    from .search import SearchResult

H1_RE = re.compile(r"<h1[^>]*>(.*?)</h1>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")

MENU_EXTENSIONS = (".md.tpl", ".md", ".html", ".txt")


@dataclass(frozen=True)
class Link:
    """A navigation entry.

    Attributes:
        url: Link target, already prefixed with the host mount path.
        text: Human-readable label.
    """

    url: str
    text: str


@dataclass
class Page:
    """Represents one rendered request.

    Attributes:
        url: Request path as received.
        file_path: Resolved file (or directory) on disk.
        file_dir: Directory holding the resolved file.
        base_path: Content-relative directory used for relative links.
        content: Rendered body HTML.
        content_header: Rendered ``_header`` of the directory, if any.
        content_footer: Rendered ``_footer`` of the directory, if any.
        title: Page title.
        is_home: True when the host's mount root was requested.
        toc: Whether a table of contents was requested.
        data: Free-form frontmatter data.
        site: Host settings snapshot used for this request.
        query: Parsed query string.
        host_name: Name of the owning host.
        mount_path: Path the owning host is mounted under.
        breadcrumb: Links from the mount root to the current directory.
        menu: Entries of the content root.
        side_menu: Entries of the current directory.
        search_terms: Joined search terms (search page only).
        search_results: Search results (search page only).
    """

    url: str
    file_path: Path
    file_dir: Path
    base_path: str
    host_name: str = ""
    mount_path: str = ""
    content: Markup = field(default_factory=Markup)
    content_header: Markup = field(default_factory=Markup)
    content_footer: Markup = field(default_factory=Markup)
    title: str = ""
    is_home: bool = False
    toc: bool = False
    data: dict[str, Any] = field(default_factory=dict)
    site: Settings | None = None
    query: dict[str, list[str]] = field(default_factory=dict)
    breadcrumb: list[Link] = field(default_factory=list)
    menu: list[Link] = field(default_factory=list)
    side_menu: list[Link] = field(default_factory=list)
    search_terms: str = ""
    search_results: list[SearchResult] = field(default_factory=list)

    def build_navigation(self, content_root: Path) -> None:
        """Populate breadcrumb, menu and side menu from the content tree."""
        self.breadcrumb = create_breadcrumb(self.mount_path, self.base_path)
        self.menu = create_menu(content_root, self.mount_path + "/")
        self.side_menu = create_menu(
            self.file_dir, self.mount_path + self.base_path
        )

    def derive_title(self) -> None:
        """Set the title from the first ``<h1>`` or the file name."""
        if self.title:
            return
        match = H1_RE.search(str(self.content))
        if match:
            text = html.unescape(_TAG_RE.sub("", match.group(1))).strip()
            if text:
                self.title = text
                return
        if self.is_home:
            self.title = self.host_name
            return
        self.title = titleize(self.file_path.name)


def create_breadcrumb(mount_path: str, base_path: str) -> list[Link]:
    """Build links for each directory level of base_path.

    >>> create_breadcrumb("/blog", "/posts/2024/")
    [Link(url='/blog/', text='Home'), Link(url='/blog/posts/', text='Posts'), Link(url='/blog/posts/2024/', text='2024')]
    """
    links = [Link(url=f"{mount_path}/", text="Home")]
    parts = [p for p in base_path.split("/") if p]
    for index, part in enumerate(parts, start=1):
        links.append(
            Link(url=f"{mount_path}/{'/'.join(parts[:index])}/", text=titleize(part))
        )
    return links


def _menu_stem(name: str) -> str | None:
    for extension in MENU_EXTENSIONS:
        if name.endswith(extension) and len(name) > len(extension):
            return name[: -len(extension)]
    return None


def create_menu(directory: Path, url_prefix: str) -> list[Link]:
    """List the navigable entries of a content directory.

    Hidden names (``_`` or ``.`` prefix) and ``index`` files are skipped.
    Directories link with a trailing slash, files without extension.

    Args:
        directory: Directory to list.
        url_prefix: URL of that directory, ending with ``/``.

    Returns:
        Links sorted by name; empty if the directory cannot be read.
    """
    if not url_prefix.endswith("/"):
        url_prefix += "/"
    try:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError:
        return []
    links: list[Link] = []
    seen: set[str] = set()
    for entry in entries:
        name = entry.name
        if name.startswith(("_", ".")):
            continue
        if entry.is_dir():
            links.append(Link(url=f"{url_prefix}{name}/", text=titleize(name)))
            continue
        stem = _menu_stem(name)
        if stem is None or stem == "index" or stem in seen:
            continue
        seen.add(stem)
        links.append(Link(url=f"{url_prefix}{stem}", text=titleize(stem)))
    return links

"""Markdown rendering for Lantern.

Content bodies are converted to HTML with mistune unless the source is not
a markdown file or its frontmatter marks it ``Raw``. Output is trusted
author HTML and is not escaped further.

Key objects:
- Heading: A heading collected while rendering, used for the TOC.
- MarkdownRenderer: Renders Markdown to HTML with heading ids and footnotes.
- render_body: Apply the markdown/raw decision for a content file.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import mistune

from .frontmatter import Frontmatter
from .utils import escape_html

MARKDOWN_EXTENSION = ".md"

_TAG_RE = re.compile(r"<[^>]+>")


@dataclass
class Heading:
    """A heading extracted from markdown content for TOC generation.

    Attributes:
        id: Anchor ID for the heading (URL-friendly slug).
        text: The text content of the heading.
        level: Heading level (1-6).
    """

    id: str
    text: str
    level: int


def _generate_heading_id(text: str) -> str:
    """Generate a URL-friendly ID from heading text.

    Args:
        text: The heading text, possibly containing inline HTML.

    Returns:
        URL-friendly slug suitable for anchor links.
    """
    slug = _TAG_RE.sub("", text).lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-")


class _HeadingRenderer(mistune.HTMLRenderer):
    """HTML renderer that assigns unique ids to headings and records them.

    Attributes:
        headings: List of Heading objects extracted during rendering.
    """

    def __init__(self):
        super().__init__(escape=False)
        self.headings: list[Heading] = []
        self._heading_id_counts: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        base_id = _generate_heading_id(text) or "section"

        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id

        self.headings.append(
            Heading(id=heading_id, text=_TAG_RE.sub("", text), level=level)
        )
        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'


def render_toc(headings: list[Heading]) -> str:
    """Render a list of headings as nested ``<ul>`` HTML.

    Args:
        headings: Headings in document order.

    Returns:
        Nested list markup, or an empty string if there are no headings.
    """
    if not headings:
        return ""

    html_parts: list[str] = []
    level_stack: list[int] = []

    for heading in headings:
        level = heading.level

        # Close nested lists when going to a shallower level
        while level_stack and level_stack[-1] > level:
            level_stack.pop()
            html_parts.append("</li></ul>")

        if level_stack and level_stack[-1] == level:
            html_parts.append("</li>")
        elif not level_stack or level > level_stack[-1]:  # pragma: no branch
            html_parts.append("<ul>")
            level_stack.append(level)

        html_parts.append(
            f'<li><a href="#{escape_html(heading.id)}">{escape_html(heading.text)}</a>'
        )

    while level_stack:
        level_stack.pop()
        html_parts.append("</li></ul>")

    return "".join(html_parts)


class MarkdownRenderer:
    """Renders Markdown content to HTML.

    Footnotes carry back-links, headings get automatic ids, and a table of
    contents is prepended when requested.
    """

    plugins = ["strikethrough", "footnotes", "table", "url"]

    def can_render(self, name: str) -> bool:
        """Return True if name has the markdown extension."""
        return name.lower().endswith(MARKDOWN_EXTENSION)

    def render(self, content: str, toc: bool = False) -> tuple[str, list[Heading]]:
        """Render Markdown content to HTML.

        Args:
            content: Markdown source content.
            toc: Prepend a ``<nav>`` table of contents.

        Returns:
            Tuple of (rendered HTML, list of Heading objects).
        """
        renderer = _HeadingRenderer()
        markdown = mistune.create_markdown(renderer=renderer, plugins=self.plugins)
        html = markdown(content)
        if toc and renderer.headings:
            html = f"<nav>\n{render_toc(renderer.headings)}\n</nav>\n{html}"
        return html, renderer.headings


default_markdown_renderer = MarkdownRenderer()


def render_body(name: str, body: str, meta: Frontmatter) -> str:
    """Render a content body according to its file name and frontmatter.

    Args:
        name: File name (or path) of the content source.
        body: Body text with the frontmatter already removed.
        meta: Frontmatter of the page.

    Returns:
        HTML for markdown sources, the unchanged body otherwise.
    """
    if meta.raw or not default_markdown_renderer.can_render(name):
        return body
    html, _ = default_markdown_renderer.render(body, toc=meta.mdtoc)
    return html

"""Frontmatter extraction for Lantern.

A content file may start with a metadata block in one of three styles::

    ---            <!--           ```yaml
    Template: x    Raw: true      MDTOC: true
    ---            -->            ```

The delimiter style is decided once from the first line; the block then
runs until the matching closing line. The block is parsed as YAML.

Key objects:
- Delimiter: The recognized delimiter styles.
- Frontmatter: Parsed metadata with defaults for absent keys.
- extract_frontmatter: Split raw text into (Frontmatter, body).
"""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import yaml

# Every opening delimiter is shorter than this.
PEEK_SIZE = 32


class FrontmatterError(Exception):
    """Malformed or unterminated frontmatter block.

    Attributes:
        message: Human-readable error message.
        original_error: The YAML error, when parsing failed.
    """

    def __init__(self, message: str, original_error: Exception | None = None):
        self.message = message
        self.original_error = original_error
        super().__init__(message)


class Delimiter(enum.Enum):
    """Frontmatter delimiter styles as (opening line, closing line)."""

    DASHES = ("---", "---")
    COMMENT = ("<!--", "-->")
    FENCE = ("```yaml", "```")

    @property
    def opening(self) -> str:
        return self.value[0]

    @property
    def closing(self) -> str:
        return self.value[1]

    @classmethod
    def detect(cls, text: str) -> Delimiter | None:
        """Return the style whose opening line starts text, if any."""
        peek = text[:PEEK_SIZE]
        newline = peek.find("\n")
        if newline == -1:
            return None
        first_line = peek[:newline].rstrip("\r")
        for delimiter in cls:
            if first_line == delimiter.opening:
                return delimiter
        return None


@dataclass
class Frontmatter:
    """Metadata recognized at the head of a content file.

    Attributes:
        template: Template name overriding ``index.tpl``.
        raw: Skip markdown rendering when True.
        mdtoc: Generate a table of contents when True.
        data: Free-form page data.
    """

    template: str = ""
    raw: bool = False
    mdtoc: bool = False
    data: dict[str, Any] = field(default_factory=dict)

    def update(self, values: Mapping[str, Any]) -> None:
        """Apply the keys present in values on top of the current ones.

        ``Data`` mappings are merged key by key; other keys replace.
        """
        if "Template" in values and values["Template"] is not None:
            self.template = str(values["Template"])
        if "Raw" in values:
            self.raw = bool(values["Raw"])
        if "MDTOC" in values:
            self.mdtoc = bool(values["MDTOC"])
        data = values.get("Data")
        if isinstance(data, Mapping):
            self.data.update(data)


def parse_block(block: str) -> dict[str, Any]:
    """Parse the YAML between the delimiters into a mapping."""
    try:
        loaded = yaml.safe_load(block) if block.strip() else {}
    except yaml.YAMLError as exc:
        raise FrontmatterError(f"invalid frontmatter: {exc}", exc) from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise FrontmatterError("frontmatter must be a mapping")
    return loaded


def split_frontmatter(text: str) -> tuple[dict[str, Any] | None, str]:
    """Separate the raw frontmatter mapping from the body.

    Returns:
        (mapping, body), where mapping is None when the text has no
        frontmatter and body is then the whole text.

    Raises:
        FrontmatterError: If the block never closes or does not parse.
    """
    delimiter = Delimiter.detect(text)
    if delimiter is None:
        return None, text

    lines = text.split("\n")
    block: list[str] = []
    for index, line in enumerate(lines[1:], start=1):
        if line.rstrip("\r") == delimiter.closing:
            return parse_block("\n".join(block)), "\n".join(lines[index + 1 :])
        block.append(line)
    raise FrontmatterError(
        f"unterminated frontmatter: expected closing {delimiter.closing!r}"
    )


def extract_frontmatter(
    text: str, defaults: Frontmatter | None = None
) -> tuple[Frontmatter, str]:
    """Extract frontmatter from content.

    Args:
        text: Raw file content.
        defaults: Values applied before the file's own frontmatter.

    Returns:
        Tuple of (Frontmatter, remaining body). Absent frontmatter yields
        the defaults and the unchanged text.

    Raises:
        FrontmatterError: If the block is unterminated or malformed.
    """
    meta = defaults if defaults is not None else Frontmatter()
    values, body = split_frontmatter(text)
    if values is not None:
        meta.update(values)
    return meta, body

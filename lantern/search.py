"""Full-text search for Lantern.

The index is a SQLite FTS5 database. ``build_index`` walks a host's content
directory and writes it; SearchBridge answers ``/search`` requests and never
raises: any failure to open or query the index is logged and reported as
no results.

Key objects:
- SearchResult: One match.
- SqliteSearcher / SqliteIndexer: FTS5 implementations of the protocols.
- SearchBridge: Failure-tolerant front for a host's index.
- build_index: Index every content file of a directory.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import tempfile
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path

from .protocols import Indexer, Searcher
from .utils import escape_html, split_camel_case

logger = logging.getLogger(__name__)

DEFAULT_INDEX_NAME = "search.db"
DEFAULT_MAX_RESULTS = 20
INDEXED_EXTENSIONS = frozenset({".md", ".txt", ".html"})

_SCHEMA = """
CREATE VIRTUAL TABLE documents USING fts5(
    doc_id UNINDEXED,
    store_value UNINDEXED,
    title,
    body
);
"""


@dataclass(frozen=True)
class SearchResult:
    """A search match.

    Attributes:
        store_value: Stored value of the document (content-relative path).
        title: Title indexed with the document.
    """

    store_value: str
    title: str = ""


def _match_expression(terms: str) -> str:
    """Quote every term so user input is never parsed as FTS5 syntax."""
    quoted = ['"' + term.replace('"', '""') + '"' for term in terms.split()]
    return " ".join(quoted)


class SqliteSearcher:
    """Searches an FTS5 index file read-only."""

    def __init__(self, path: Path):
        if not path.is_file():
            raise FileNotFoundError(f"search index not found: {path}")
        self.path = path
        self.conn = sqlite3.connect(
            f"file:{path}?mode=ro", uri=True, check_same_thread=False
        )

    def search(self, terms: str, max_results: int) -> list[SearchResult]:
        expression = _match_expression(terms)
        if not expression or max_results <= 0:
            return []
        cursor = self.conn.execute(
            """
            SELECT store_value, title FROM documents
            WHERE documents MATCH ?
            ORDER BY rank
            LIMIT ?
            """,
            (expression, max_results),
        )
        return [SearchResult(store_value=row[0], title=row[1]) for row in cursor]

    def close(self) -> None:
        self.conn.close()


class SqliteIndexer:
    """Collects documents and writes them into a new FTS5 index file."""

    def __init__(self):
        self._documents: dict[str, tuple[str, str, str]] = {}

    def __len__(self) -> int:
        return len(self._documents)

    def add_document(self, doc_id: str, store_value: str, text: str, title: str = "") -> None:
        self._documents[doc_id] = (store_value, title, text)

    def finalize_and_write(self, path: Path) -> None:
        """Write the index next to path and atomically move it into place."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".index-", suffix=".db", dir=path.parent)
        os.close(fd)
        try:
            conn = sqlite3.connect(tmp_name)
            try:
                conn.executescript(_SCHEMA)
                conn.executemany(
                    "INSERT INTO documents (doc_id, store_value, title, body) VALUES (?, ?, ?, ?)",
                    (
                        (doc_id, store_value, title, text)
                        for doc_id, (store_value, title, text) in self._documents.items()
                    ),
                )
                conn.commit()
            finally:
                conn.close()
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def document_title(relative_path: str) -> str:
    """Derive a searchable title from a content-relative path.

    >>> document_title("/guides/getting_started-fastCgi.md")
    'getting started fast Cgi'
    """
    base = Path(relative_path).name.split(".", 1)[0]
    title = base.replace("-", " ").replace("_", " ")
    return split_camel_case(title)


def iter_documents(content_dir: Path) -> Iterable[Path]:
    for path in sorted(content_dir.rglob("*")):
        if path.is_file() and path.suffix in INDEXED_EXTENSIONS:
            yield path


def build_index(content_dir: Path, index_path: Path, indexer: Indexer | None = None) -> int:
    """Index every content file below content_dir.

    Args:
        content_dir: Host content directory.
        index_path: Index file to write.
        indexer: Indexer to use; a new SqliteIndexer by default.

    Returns:
        Number of documents written.
    """
    indexer = indexer if indexer is not None else SqliteIndexer()
    count = 0
    for path in iter_documents(content_dir):
        relative = "/" + path.relative_to(content_dir).as_posix()
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Error reading %s for indexing: %s", relative, exc)
            continue
        title = document_title(relative)
        logger.info("Indexing %s: %s", title, relative)
        indexer.add_document(f"t:{relative}", relative, f"{text}\n{title}", title=title)
        count += 1
    indexer.finalize_and_write(index_path)
    return count


class SearchBridge:
    """Failure-tolerant access to one host's search index.

    Attributes:
        index_path: Index file queried on every search.
    """

    def __init__(
        self,
        index_path: Path,
        searcher_factory: Callable[[Path], Searcher] = SqliteSearcher,
    ):
        self.index_path = index_path
        self._searcher_factory = searcher_factory

    def search(self, terms: str | Iterable[str], max_results: int = DEFAULT_MAX_RESULTS) -> list[SearchResult]:
        """Query the index.

        Returns an empty list on empty terms, a non-positive max_results or
        any index failure; failures are logged.
        """
        if not isinstance(terms, str):
            terms = " ".join(terms)
        terms = terms.strip()
        if not terms or max_results <= 0:
            return []
        try:
            searcher = self._searcher_factory(self.index_path)
        except (OSError, sqlite3.Error) as exc:
            logger.error("Unable to open search index %s: %s", self.index_path, exc)
            return []
        try:
            return list(searcher.search(terms, max_results))
        except sqlite3.Error as exc:
            logger.error("Search failed on %s: %s", self.index_path, exc)
            return []
        finally:
            searcher.close()


def render_results(terms: str, results: list[SearchResult], link_prefix: str = "") -> str:
    """Render search results as an HTML fragment."""
    if not results:
        return "<h3>No results</h3>"
    parts = [f'<h2>Search Results: "{escape_html(terms)}"</h2>', "<ul>"]
    for result in results:
        href = escape_html(link_prefix + result.store_value)
        label = escape_html(result.title or result.store_value)
        parts.append(f'<li><a href="{href}">{label}</a></li>')
    parts.append("</ul>")
    return "\n".join(parts)

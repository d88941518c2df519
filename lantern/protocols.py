"""Protocol definitions for Lantern.

The full-text index is an external collaborator; these protocols describe
what the search bridge and the index command need from it, so alternative
index implementations can be dropped in.
"""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .search import SearchResult


@runtime_checkable
class Searcher(Protocol):
    """Queries an existing full-text index."""

    @abstractmethod
    def search(self, terms: str, max_results: int) -> list[SearchResult]:
        """Return at most max_results matches for terms, best first."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Release the index."""
        ...


@runtime_checkable
class Indexer(Protocol):
    """Builds a full-text index file."""

    @abstractmethod
    def add_document(self, doc_id: str, store_value: str, text: str, title: str = "") -> None:
        """Queue one document.

        Args:
            doc_id: Unique document identifier.
            store_value: Value returned to searchers for this document.
            text: Text to index.
            title: Display title returned with matches.
        """
        ...

    @abstractmethod
    def finalize_and_write(self, path: Path) -> None:
        """Write every queued document to the index at path."""
        ...

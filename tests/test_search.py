import logging
import sqlite3

import pytest

from lantern.protocols import Indexer, Searcher
from lantern.search import (
    SearchBridge,
    SearchResult,
    SqliteIndexer,
    SqliteSearcher,
    build_index,
    document_title,
    render_results,
)


@pytest.fixture
def content(tmp_path):
    root = tmp_path / "content"
    (root / "guides").mkdir(parents=True)
    (root / "index.md").write_text("# Welcome\n\nStart here.\n", encoding="utf-8")
    (root / "guides" / "installFastCgi.md").write_text("Configure the socket listener.\n", encoding="utf-8")
    (root / "notes.txt").write_text("socket notes\n", encoding="utf-8")
    (root / "image.png").write_bytes(b"\x89PNG")
    return root


def test_document_title():
    assert document_title("/guides/installFastCgi.md") == "install Fast Cgi"
    assert document_title("/a/read-me_now.txt") == "read me now"


def test_build_and_search(content, tmp_path):
    index_path = tmp_path / "out" / "search.db"
    assert build_index(content, index_path) == 3

    searcher = SqliteSearcher(index_path)
    try:
        results = searcher.search("socket", 10)
        assert {r.store_value for r in results} == {"/guides/installFastCgi.md", "/notes.txt"}
        # titles are searchable too
        assert searcher.search("fast", 10) == [
            SearchResult(store_value="/guides/installFastCgi.md", title="install Fast Cgi")
        ]
        assert len(searcher.search("socket", 1)) == 1
        assert searcher.search("", 10) == []
    finally:
        searcher.close()


def test_search_terms_are_not_query_syntax(content, tmp_path):
    index_path = tmp_path / "search.db"
    build_index(content, index_path)
    bridge = SearchBridge(index_path)
    assert bridge.search('socket" OR "x') == []
    assert bridge.search("NEAR(socket") == []
    assert len(bridge.search(["socket", "listener"])) == 1


def test_rebuild_replaces_index(content, tmp_path):
    index_path = tmp_path / "search.db"
    build_index(content, index_path)
    (content / "notes.txt").unlink()
    assert build_index(content, index_path) == 2
    assert [r.store_value for r in SearchBridge(index_path).search("socket")] == ["/guides/installFastCgi.md"]
    assert [p.name for p in tmp_path.iterdir() if p.name.startswith(".index-")] == []


def test_bridge_without_index_returns_nothing(tmp_path, caplog):
    bridge = SearchBridge(tmp_path / "missing.db")
    with caplog.at_level(logging.ERROR):
        assert bridge.search("anything") == []
    assert "Unable to open search index" in caplog.text


def test_bridge_with_corrupt_index(tmp_path, caplog):
    index_path = tmp_path / "search.db"
    index_path.write_bytes(b"not a database at all" * 100)
    with caplog.at_level(logging.ERROR):
        assert SearchBridge(index_path).search("anything") == []


def test_bridge_short_circuits(tmp_path):
    opened = []

    def factory(path):
        opened.append(path)
        raise AssertionError("should not open")

    bridge = SearchBridge(tmp_path / "search.db", searcher_factory=factory)
    assert bridge.search("   ") == []
    assert bridge.search("x", max_results=0) == []
    assert opened == []


def test_bridge_closes_searcher_on_query_error(tmp_path):
    closed = []

    class BrokenSearcher:
        def search(self, terms, max_results):
            raise sqlite3.OperationalError("no such table: documents")

        def close(self):
            closed.append(True)

    bridge = SearchBridge(tmp_path / "search.db", searcher_factory=lambda path: BrokenSearcher())
    assert bridge.search("x") == []
    assert closed == [True]


def test_sqlite_implementations_satisfy_protocols(tmp_path):
    (tmp_path / "a.md").write_text("a", encoding="utf-8")
    build_index(tmp_path, tmp_path / "i.db")
    searcher = SqliteSearcher(tmp_path / "i.db")
    assert isinstance(searcher, Searcher)
    searcher.close()
    assert isinstance(SqliteIndexer(), Indexer)


def test_render_results():
    assert render_results("x", []) == "<h3>No results</h3>"
    html = render_results("<b>", [SearchResult("/a.md", "A & B")], link_prefix="/blog")
    assert '<h2>Search Results: "&lt;b&gt;"</h2>' in html
    assert '<li><a href="/blog/a.md">A &amp; B</a></li>' in html

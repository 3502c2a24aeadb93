import sqlite3

import pytest

from indexer.build_index import SearchIndexBuilder, chunk_markdown, read_markdown
from pipelines.transform import write_markdown

VIEW = """# View

A type that represents part of your app's user interface.

## Overview

You create custom views by declaring types that conform to the View protocol.

## Topics

Implementing a custom view.
"""

ARRAY = """# Array

An ordered, random-access collection.

## Overview

Arrays are one of the most commonly used data types in an app.
"""


@pytest.fixture
def corpus(tmp_path):
    docs = tmp_path / "docs"
    write_markdown(docs, "documentation/swiftui/view.md", VIEW,
                   {"source_url": "https://developer.apple.com/documentation/swiftui/view",
                    "captured_at": "2024-01-01T00:00:00+00:00"})
    write_markdown(docs, "documentation/swift/array.md", ARRAY,
                   {"source_url": "https://developer.apple.com/documentation/swift/array"})
    return docs


def count(db, table):
    conn = sqlite3.connect(db)
    try:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    finally:
        conn.close()


def test_read_markdown_parses_front_matter(corpus):
    title, fm, body = read_markdown(corpus / "documentation/swiftui/view.md")

    assert title == "View"
    assert fm["source_url"] == "https://developer.apple.com/documentation/swiftui/view"
    assert body.startswith("# View")


def test_chunk_markdown_splits_on_headings():
    chunks = chunk_markdown(VIEW)

    assert [(h, a) for h, a, _ in chunks] == [
        ("Introduction", "introduction"),
        ("Overview", "overview"),
        ("Topics", "topics"),
    ]
    assert "View protocol" in chunks[1][2]


def test_chunk_markdown_packs_long_sections():
    paragraphs = "\n\n".join("x" * 400 for _ in range(5))
    chunks = chunk_markdown(f"## Long\n\n{paragraphs}\n")

    assert len(chunks) == 3
    assert all(len(text) <= 1000 for _, _, text in chunks)


class TestSearchIndexBuilder:

    def test_build_indexes_every_file(self, tmp_path, corpus):
        db = tmp_path / "search.db"
        progress = []

        stats = SearchIndexBuilder(db, {"docs": corpus}).build(on_progress=lambda n, t: progress.append((n, t)))

        assert stats.indexed == 2
        assert stats.chunks == 5
        assert progress == [(1, 2), (2, 2)]
        assert count(db, "documents") == 2
        assert count(db, "chunks_fts") == 5

        conn = sqlite3.connect(db)
        paths = [r[0] for r in conn.execute("SELECT path FROM chunks_fts WHERE chunks_fts MATCH 'protocol'")]
        conn.close()
        assert paths == ["docs/documentation/swiftui/view.md"]

    def test_rebuild_skips_unchanged_and_replaces_modified(self, tmp_path, corpus):
        db = tmp_path / "search.db"
        builder = SearchIndexBuilder(db, {"docs": corpus})
        builder.build()

        write_markdown(corpus, "documentation/swift/array.md", ARRAY + "\n## Topics\n\nCreating an array.\n", {})
        stats = builder.build()

        assert (stats.indexed, stats.unchanged) == (1, 1)
        assert count(db, "chunks") == 6
        assert count(db, "chunks_fts") == 6

    def test_deleted_files_are_pruned(self, tmp_path, corpus):
        db = tmp_path / "search.db"
        builder = SearchIndexBuilder(db, {"docs": corpus})
        builder.build()

        (corpus / "documentation/swift/array.md").unlink()
        stats = builder.build()

        assert stats.removed == 1
        assert count(db, "documents") == 1
        assert count(db, "chunks_fts") == 3

    def test_missing_directory_keeps_its_documents(self, tmp_path, corpus):
        db = tmp_path / "search.db"
        SearchIndexBuilder(db, {"docs": corpus}).build()

        stats = SearchIndexBuilder(db, {"docs": tmp_path / "gone"}).build()

        assert stats.removed == 0
        assert count(db, "documents") == 2

    def test_clear_reindexes_everything(self, tmp_path, corpus):
        db = tmp_path / "search.db"
        builder = SearchIndexBuilder(db, {"docs": corpus})
        builder.build()

        stats = builder.build(clear=True)

        assert stats.indexed == 2
        assert count(db, "chunks_fts") == 5

# Builds a SQLite FTS5 index over the crawled Markdown directories.

import hashlib
import json
import logging
import pathlib
import re
import sqlite3
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

SCHEMA_PATH = pathlib.Path(__file__).resolve().parent / "schema.sql"
MAX_CHUNK_CHARS = 1000

ProgressCallback = Callable[[int, int], None]


def read_markdown(p: pathlib.Path) -> Tuple[str, Dict[str, str], str]:
    """Split a crawled file into (title, front matter, body)."""
    text = p.read_text(encoding="utf-8", errors="ignore")
    fm = {}
    if text.startswith('---'):
        end = text.find('\n---', 3)
        if end != -1:
            head = text[3:end].strip()
            for line in head.splitlines():
                if ':' in line:
                    k, v = line.split(':', 1)
                    v = v.strip()
                    try:
                        value = json.loads(v)
                    except ValueError:
                        value = v.strip("'\"")
                    fm[k.strip()] = "" if value is None else str(value)
            text = text[end + 4:].lstrip("\n")
    m = re.search(r"^#\s+(.+)$", text, re.MULTILINE)
    title = m.group(1).strip() if m else p.stem
    return title, fm, text


def chunk_markdown(md: str) -> List[Tuple[str, str, str]]:
    """Split Markdown on ``##`` headings into (heading, anchor, text) chunks."""
    parts = re.split(r"(?m)^(##+)\s+(.*)$", md)
    chunks = []
    if parts:
        preamble = parts[0].strip()
        if preamble:
            chunks.append(("Introduction", "introduction", preamble))
        for i in range(1, len(parts), 3):
            heading = parts[i+1].strip()
            block = parts[i+2].strip()
            anchor = re.sub(r'[^a-z0-9]+', '-', heading.lower()).strip('-')
            paragraphs = re.split(r"\n\s*\n", block)
            cur = ""
            for para in paragraphs:
                if len(cur) + len(para) > MAX_CHUNK_CHARS:
                    if cur.strip():
                        chunks.append((heading, anchor, cur.strip()))
                        cur = ""
                cur += ("\n\n" if cur else "") + para
            if cur.strip():
                chunks.append((heading, anchor, cur.strip()))
    return chunks


@dataclass
class IndexStats:
    indexed: int = 0
    unchanged: int = 0
    removed: int = 0
    chunks: int = 0

    @property
    def total(self) -> int:
        return self.indexed + self.unchanged


class SearchIndexBuilder:
    """Incrementally indexes one or more Markdown directories.

    Each directory is registered under a source name; documents are stored
    as ``<source>/<relative path>`` so the MCP server can map a path back
    to a file under the same roots.
    """

    def __init__(self, db_path: Union[str, pathlib.Path],
                 directories: Dict[str, Union[str, pathlib.Path]],
                 logger: Optional[logging.Logger] = None):
        self.db_path = pathlib.Path(db_path).expanduser()
        self.directories = {name: pathlib.Path(d).expanduser() for name, d in directories.items()}
        self.logger = logger or logging.getLogger(__name__)

    def connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA case_sensitive_like=OFF")
        ensure_schema(conn)
        return conn

    def _files(self) -> List[Tuple[str, pathlib.Path, str]]:
        files = []
        for source, root in sorted(self.directories.items()):
            if not root.is_dir():
                self.logger.info(f"Skipping {source}: {root} does not exist")
                continue
            for p in sorted(root.rglob("*.md")):
                files.append((source, p, f"{source}/{p.relative_to(root).as_posix()}"))
        return files

    def build(self, clear: bool = False,
              on_progress: Optional[ProgressCallback] = None) -> IndexStats:
        """Index every Markdown file; unchanged documents are not re-chunked.

        Args:
            clear: Drop all indexed documents first
            on_progress: Called with ``(processed, total)`` after every file
        """
        stats = IndexStats()
        files = self._files()
        conn = self.connect()
        try:
            if clear:
                conn.execute("DELETE FROM chunks_fts")
                conn.execute("DELETE FROM chunks")
                conn.execute("DELETE FROM documents")

            for n, (source, path, rel) in enumerate(files, start=1):
                added = index_file(conn, source, path, rel)
                if added is None:
                    stats.unchanged += 1
                else:
                    stats.indexed += 1
                    stats.chunks += added
                if on_progress is not None:
                    on_progress(n, len(files))

            stats.removed = prune_missing(
                conn, [rel for _, _, rel in files],
                [name for name, root in self.directories.items() if root.is_dir()])
            conn.commit()
        finally:
            conn.close()

        self.logger.info(
            f"Indexed {stats.indexed} documents ({stats.chunks} chunks), "
            f"{stats.unchanged} unchanged, {stats.removed} removed -> {self.db_path}"
        )
        return stats


def ensure_schema(conn: sqlite3.Connection):
    conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))


def _delete_chunks(conn: sqlite3.Connection, doc_id: int):
    conn.execute(
        "DELETE FROM chunks_fts WHERE rowid IN (SELECT id FROM chunks WHERE document_id=?)",
        (doc_id,))
    conn.execute("DELETE FROM chunks WHERE document_id=?", (doc_id,))


def index_file(conn: sqlite3.Connection, source: str, path: pathlib.Path, rel: str) -> Optional[int]:
    """Index one file. Returns the number of chunks written, None when unchanged."""
    title, fm, md = read_markdown(path)
    source_url = fm.get("source_url", "")
    captured_at = fm.get("captured_at", "")
    h = hashlib.sha256(md.encode("utf-8")).hexdigest()

    row = conn.execute("SELECT id, hash FROM documents WHERE path=?", (rel,)).fetchone()
    if row and row[1] == h:
        return None

    if row:
        doc_id = row[0]
        _delete_chunks(conn, doc_id)
        conn.execute("UPDATE documents SET title=?, source_url=?, captured_at=?, hash=? WHERE id=?",
                     (title, source_url, captured_at, h, doc_id))
    else:
        cur = conn.execute(
            "INSERT INTO documents(path, source, title, source_url, captured_at, hash) VALUES(?,?,?,?,?,?)",
            (rel, source, title, source_url, captured_at, h))
        doc_id = cur.lastrowid

    chunks = chunk_markdown(md)
    for heading, anchor, text in chunks:
        cur = conn.execute("INSERT INTO chunks(document_id, heading, anchor, text) VALUES(?,?,?,?)",
                           (doc_id, heading, anchor, text))
        conn.execute("INSERT INTO chunks_fts(rowid, text, heading, anchor, path) VALUES(?, ?, ?, ?, ?)",
                     (cur.lastrowid, text, heading, anchor, rel))
    return len(chunks)


def prune_missing(conn: sqlite3.Connection, present: Iterable[str], sources: Iterable[str]) -> int:
    """Drop documents of the indexed sources whose files are gone."""
    present = set(present)
    sources = list(sources)
    if not sources:
        return 0
    marks = ",".join("?" for _ in sources)
    rows = conn.execute(f"SELECT id, path FROM documents WHERE source IN ({marks})", sources).fetchall()
    removed = 0
    for doc_id, rel in rows:
        if rel not in present:
            _delete_chunks(conn, doc_id)
            conn.execute("DELETE FROM documents WHERE id=?", (doc_id,))
            removed += 1
    return removed

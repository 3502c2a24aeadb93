"""HTML to Markdown transform and output path derivation.

Everything here is pure apart from :func:`write_markdown`. The crawler only
relies on the ``(html) -> text`` contract of :func:`html_to_markdown`, so any
other transform can be swapped in.
"""

import hashlib
import json
import pathlib
import re
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from trafilatura import extract

MIN_EXTRACTED_CHARS = 40

_UNSAFE_SEGMENT = re.compile(r"[^a-zA-Z0-9_-]")
_UNSAFE_HOST = re.compile(r"[^a-z0-9.-]")
_BLANK_LINES = re.compile(r"\n{3,}")

# File name for directory URLs; a real segment with this name gets a digest
INDEX_NAME = "_index"


def content_hash(text: str) -> str:
    """SHA-256 of normalized page text, used for change detection."""
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


def extract_title(html: str) -> Optional[str]:
    soup = BeautifulSoup(html, "html.parser")
    h1 = soup.find("h1")
    if h1 and h1.get_text(strip=True):
        return h1.get_text(" ", strip=True)
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    return None


def html_to_markdown(html: str, url: Optional[str] = None) -> str:
    """Convert rendered HTML into normalized Markdown text.

    trafilatura does the main-content extraction; when it finds too little
    (navigation-heavy index pages, mostly) we fall back to the visible text.
    """
    md = extract(html, url=url, output_format="markdown",
                 include_links=True, include_tables=True)
    if not md or len(md.strip()) < MIN_EXTRACTED_CHARS:
        soup = BeautifulSoup(html, "html.parser")
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        md = soup.get_text("\n")

    lines = [line.rstrip() for line in md.splitlines()]
    text = _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()

    title = extract_title(html)
    if title and not text.startswith("#"):
        text = f"# {title}\n\n{text}"
    return text + "\n"


def _digest(key: str) -> str:
    return hashlib.sha256(key.encode('utf-8')).hexdigest()[:8]


def url_to_relative_path(url: str, include_host: bool = False) -> str:
    """Derive a stable relative ``.md`` path from a URL's path segments.

    Segments are sanitized to ``[A-Za-z0-9_-]``. A directory URL (trailing
    slash) maps to the reserved name ``_index``. Whenever sanitizing changed
    something, the path was not in canonical form, the URL has a query
    string, or a real segment is named ``_index``, a short digest of the
    original path is appended so distinct URLs never share a file.

    Args:
        url: Absolute page URL
        include_host: Prefix the path with the host, for crawls whose
            scope spans more than one host
    """
    parsed = urlparse(url)
    path = parsed.path or "/"

    segments = [s for s in path.split("/") if s]
    directory = path.endswith("/")
    canonical = "/" + "/".join(segments) + ("/" if directory and segments else "")

    safe = [_UNSAFE_SEGMENT.sub("-", s) for s in segments]
    if directory:
        segments.append(INDEX_NAME)
        safe.append(INDEX_NAME)

    name = safe[-1]
    if (safe != segments or parsed.query or canonical != path
            or (not directory and segments[-1] == INDEX_NAME)):
        key = path + ("?" + parsed.query if parsed.query else "")
        name = f"{name}-{_digest(key)}"

    parts = safe[:-1] + [name + ".md"]
    if include_host:
        host = parsed.netloc.lower()
        safe_host = _UNSAFE_HOST.sub("-", host)
        if safe_host != host:
            safe_host = f"{safe_host}-{_digest(host)}"
        parts.insert(0, safe_host)
    return "/".join(parts)


def write_markdown(out_dir: pathlib.Path, relative_path: str, md: str,
                   meta: Dict[str, Any]) -> pathlib.Path:
    """Write Markdown with a provenance front matter block."""
    fp = pathlib.Path(out_dir) / relative_path
    front = "---\n" + "\n".join(f"{k}: {json.dumps(v)}" for k, v in meta.items()) + "\n---\n\n"
    fp.parent.mkdir(parents=True, exist_ok=True)
    fp.write_text(front + md, encoding="utf-8")
    return fp

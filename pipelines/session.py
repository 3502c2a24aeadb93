"""Crawl session state and its on-disk representation.

Each crawl output directory holds a single ``metadata.json``::

    {
      "pages": {url: PageRecord, ...},      # every page ever saved here
      "crawl_state": CrawlSession | null,   # the current/last traversal
      "last_crawl": "...",
      "stats": {...}
    }

``pages`` survives across runs and drives change detection; ``crawl_state``
is what makes an interrupted crawl resumable. Only one crawler may own an
output directory at a time. Two processes pointed at the same directory
will overwrite each other's state; nothing here guards against that.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from config.settings import METADATA_FILE
from .errors import AmbiguousSessionError, CorruptStateError
from .persistence import read_json, write_json_atomic

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


@dataclass
class PageRecord:
    """One crawled page."""
    url: str
    content_hash: str
    local_path: str
    depth: int
    last_crawled_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'url': self.url,
            'content_hash': self.content_hash,
            'local_path': self.local_path,
            'depth': self.depth,
            'last_crawled_at': self.last_crawled_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PageRecord':
        return cls(
            url=data['url'],
            content_hash=data['content_hash'],
            local_path=data['local_path'],
            depth=int(data['depth']),
            last_crawled_at=_parse_time(data.get('last_crawled_at')) or _now(),
        )


@dataclass
class CrawlSession:
    """Resumable traversal state for one (start URL, output directory) pair."""
    start_url: str
    allowed_prefixes: Set[str]
    max_pages: int
    max_depth: int
    output_directory: str
    visited: Dict[str, PageRecord] = field(default_factory=dict)
    queue: List[Tuple[str, int]] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    is_active: bool = True
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def touch(self):
        self.updated_at = _now()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start_url': self.start_url,
            'allowed_prefixes': sorted(self.allowed_prefixes),
            'max_pages': self.max_pages,
            'max_depth': self.max_depth,
            'output_directory': self.output_directory,
            'visited': {url: record.to_dict() for url, record in self.visited.items()},
            'queue': [[url, depth] for url, depth in self.queue],
            'failed': dict(self.failed),
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CrawlSession':
        return cls(
            start_url=data['start_url'],
            allowed_prefixes=set(data['allowed_prefixes']),
            max_pages=int(data['max_pages']),
            max_depth=int(data['max_depth']),
            output_directory=data['output_directory'],
            visited={
                url: PageRecord.from_dict(record)
                for url, record in data.get('visited', {}).items()
            },
            queue=[(url, int(depth)) for url, depth in data.get('queue', [])],
            failed=dict(data.get('failed', {})),
            is_active=bool(data.get('is_active', False)),
            created_at=_parse_time(data.get('created_at')) or _now(),
            updated_at=_parse_time(data.get('updated_at')) or _now(),
        )


@dataclass
class CrawlMetadata:
    """Contents of ``metadata.json``."""
    pages: Dict[str, PageRecord] = field(default_factory=dict)
    crawl_state: Optional[CrawlSession] = None
    last_crawl: Optional[datetime] = None
    stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pages': {url: record.to_dict() for url, record in self.pages.items()},
            'crawl_state': self.crawl_state.to_dict() if self.crawl_state else None,
            'last_crawl': self.last_crawl.isoformat() if self.last_crawl else None,
            'stats': self.stats,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CrawlMetadata':
        state = data.get('crawl_state')
        return cls(
            pages={
                url: PageRecord.from_dict(record)
                for url, record in data.get('pages', {}).items()
            },
            crawl_state=CrawlSession.from_dict(state) if state else None,
            last_crawl=_parse_time(data.get('last_crawl')),
            stats=dict(data.get('stats') or {}),
        )


class SessionStore:
    """Loads and atomically saves ``metadata.json`` for one output directory."""

    def __init__(self, output_directory, filename: str = METADATA_FILE):
        self.output_directory = Path(output_directory)
        self.path = self.output_directory / filename

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> CrawlMetadata:
        """Load metadata, or return an empty document if none exists yet.

        Raises:
            CorruptStateError: the file exists but is unreadable or malformed.
        """
        raw = read_json(self.path)
        if raw is None:
            return CrawlMetadata()
        if not isinstance(raw, dict):
            raise CorruptStateError(self.path, "expected a JSON object")
        try:
            return CrawlMetadata.from_dict(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CorruptStateError(self.path, f"malformed session data ({e!r})") from e

    def save(self, metadata: CrawlMetadata):
        if metadata.crawl_state is not None:
            metadata.crawl_state.touch()
        write_json_atomic(self.path, metadata.to_dict())


def _scan_directories(candidates: Iterable[Path], base_directory: Optional[Path]) -> List[Path]:
    """Known candidates first, then every directory directly under the base."""
    search: List[Path] = [Path(c).expanduser() for c in candidates]
    if base_directory is not None:
        base = Path(base_directory).expanduser()
        if base.is_dir():
            search.extend(sorted(p for p in base.iterdir()
                                 if p.is_dir() and not p.name.startswith('.')))

    unique: List[Path] = []
    seen: Set[Path] = set()
    for directory in search:
        key = directory.resolve()
        if key not in seen:
            seen.add(key)
            unique.append(directory)
    return unique


def list_active_sessions(candidates: Iterable[Path],
                         base_directory: Optional[Path] = None) -> List[Tuple[Path, CrawlSession]]:
    """Every active session found in the scanned directories.

    Unreadable metadata files are skipped with a warning here; loading the
    chosen session later still fails closed.
    """
    found: List[Tuple[Path, CrawlSession]] = []
    seen: Set[Path] = set()

    for directory in _scan_directories(candidates, base_directory):
        store = SessionStore(directory)
        if not store.exists():
            continue
        try:
            metadata = store.load()
        except CorruptStateError as e:
            logger.warning(f"Ignoring unreadable session while scanning: {e}")
            continue

        session = metadata.crawl_state
        if session is None or not session.is_active:
            continue
        output = Path(session.output_directory).expanduser()
        if output.resolve() in seen:
            continue
        seen.add(output.resolve())
        found.append((output, session))

    return found


def discover_session(start_url: str, candidates: Iterable[Path],
                     base_directory: Optional[Path] = None) -> Optional[Path]:
    """Find the output directory of an active session for ``start_url``.

    Returns:
        The matching output directory, or None if no active session exists.

    Raises:
        AmbiguousSessionError: more than one distinct directory matches.
    """
    matches = [directory for directory, session
               in list_active_sessions(candidates, base_directory)
               if session.start_url == start_url]

    if len(matches) > 1:
        raise AmbiguousSessionError(start_url, matches)
    if matches:
        logger.info(f"Found existing session for {start_url} in {matches[0]}")
        return matches[0]
    return None

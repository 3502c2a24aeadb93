"""Crawl frontier: what to fetch next and what has already been fetched.

The frontier wraps a :class:`CrawlSession` and enforces its invariants:

* nothing outside the allowed prefixes is ever queued;
* a URL is never queued twice, nor queued after it was visited or failed;
* nothing deeper than ``max_depth`` is queued;
* no unit is handed out once ``max_pages`` pages have been visited.

Units are handed out breadth-first in discovery order.
"""

import logging
from collections import deque
from typing import Callable, Deque, Iterable, Optional, Set, Tuple
from urllib.parse import urlparse, urlunparse

from .errors import ConfigurationError
from .job_config import CrawlConfig
from .session import CrawlMetadata, CrawlSession, PageRecord, SessionStore

logger = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    """Drop the fragment so ``page#a`` and ``page#b`` are one unit."""
    parsed = urlparse(url.strip())
    return urlunparse(parsed._replace(fragment=''))


def derive_allowed_prefixes(start_url: str) -> Set[str]:
    """Derive a scope prefix from scheme, host and leading path segment.

    ``https://host/documentation/swiftui`` yields
    ``https://host/documentation/``; a URL without a path yields
    ``https://host/``.
    """
    parsed = urlparse(start_url)
    segments = [s for s in parsed.path.split('/') if s]
    base = f"{parsed.scheme}://{parsed.netloc}/"
    if not segments:
        return {base}
    if len(segments) == 1 and not parsed.path.endswith('/'):
        # "https://host/docs" must stay inside its own scope
        return {f"{base}{segments[0]}"}
    return {f"{base}{segments[0]}/"}


def _matches_prefix(url: str, prefix: str) -> bool:
    if not url.startswith(prefix):
        return False
    # "https://host/docs" admits "/docs/..." but not "/docs-archive"
    return prefix.endswith('/') or len(url) == len(prefix) or url[len(prefix)] in '/?#'


def is_in_scope(url: str, prefixes: Iterable[str]) -> bool:
    """True when ``url`` falls under one of ``prefixes`` on a segment boundary."""
    return any(_matches_prefix(url, prefix) for prefix in prefixes)


class Frontier:
    """Breadth-first URL frontier backed by a persisted crawl session."""

    def __init__(self, session: CrawlSession,
                 persist: Optional[Callable[[], None]] = None,
                 save_interval: int = 1,
                 logger: Optional[logging.Logger] = None):
        """Initialize frontier.

        Args:
            session: Session to mutate; its queue order is preserved.
            persist: Called to write the session to durable storage.
            save_interval: Persist after every N recorded units.
            logger: Log sink (defaults to this module's logger).
        """
        self.session = session
        self._persist = persist
        self.save_interval = max(1, save_interval)
        self.logger = logger or logging.getLogger(__name__)

        self._queue: Deque[Tuple[str, int]] = deque(session.queue)
        self._queued: Set[str] = {url for url, _ in self._queue}
        self._unsaved = 0

    # -- queries ---------------------------------------------------------

    @property
    def visited_count(self) -> int:
        return len(self.session.visited)

    @property
    def queued_count(self) -> int:
        return len(self._queue)

    @property
    def budget_exhausted(self) -> bool:
        return len(self.session.visited) >= self.session.max_pages

    def in_scope(self, url: str) -> bool:
        return is_in_scope(url, self.session.allowed_prefixes)

    def is_known(self, url: str) -> bool:
        return (url in self.session.visited
                or url in self._queued
                or url in self.session.failed)

    # -- mutations -------------------------------------------------------

    def enqueue(self, url: str, depth: int) -> bool:
        """Queue ``url`` at ``depth`` if it passes every frontier rule.

        Returns:
            True if the URL was queued.
        """
        url = normalize_url(url)
        if depth > self.session.max_depth:
            return False
        if not self.in_scope(url):
            return False
        if self.is_known(url):
            return False

        self._queue.append((url, depth))
        self._queued.add(url)
        return True

    def next_unit(self) -> Optional[Tuple[str, int]]:
        """Pop the next unit, or None when the queue or page budget is exhausted."""
        if not self._queue or self.budget_exhausted:
            return None
        url, depth = self._queue.popleft()
        self._queued.discard(url)
        return url, depth

    def record_outcome(self, url: str, record: PageRecord, new_links: Iterable[str]) -> int:
        """Mark ``url`` visited, queue its in-scope links, persist.

        Must be called exactly once per unit returned by :meth:`next_unit`.

        Returns:
            Number of links newly queued.
        """
        self.session.visited[url] = record
        added = 0
        for link in new_links:
            if self.enqueue(link, record.depth + 1):
                added += 1
        self._mutated()
        return added

    def record_failure(self, url: str, error: str):
        """Consume a unit that failed; it is not retried in this session."""
        self.session.failed[url] = error
        self._mutated()

    def finish(self):
        """Mark the session complete and persist it."""
        self.session.is_active = False
        self.flush()

    def flush(self):
        """Write current state regardless of the save interval."""
        self.session.queue = list(self._queue)
        self._unsaved = 0
        if self._persist is not None:
            self._persist()

    def _mutated(self):
        self._unsaved += 1
        if self._unsaved >= self.save_interval:
            self.flush()


def load_or_create(config: CrawlConfig, store: SessionStore, resume: bool = False,
                   log: Optional[logging.Logger] = None) -> Tuple[CrawlSession, CrawlMetadata, bool]:
    """Load the persisted session for ``config`` or start a new one.

    An active session with the same start URL is always resumed, whether or
    not ``resume`` was requested. An active session for a different start
    URL is a configuration error, with or without ``resume``; it is never
    replaced by a new session.

    Returns:
        Tuple of (session, metadata, resumed)

    Raises:
        CorruptStateError: the metadata file exists but cannot be read.
        ConfigurationError: the directory holds an active session for another
            start URL, or the seed is outside the allowed prefixes.
    """
    log = log or logger
    metadata = store.load()
    start_url = normalize_url(config.start_url)
    state = metadata.crawl_state

    if state is not None and state.is_active:
        if state.start_url == start_url:
            _apply_config(state, config)
            log.info(f"Resuming session for {start_url}: "
                     f"{len(state.visited)} visited, {len(state.queue)} queued")
            return state, metadata, True
        raise ConfigurationError(
            f"Active session in {store.output_directory} belongs to {state.start_url}, "
            f"not {start_url}; finish it with 'resume' or choose another --output-dir"
        )
    elif resume:
        log.warning(f"No active session in {store.output_directory}; starting a new crawl")

    prefixes = set(config.allowed_prefixes) or derive_allowed_prefixes(start_url)
    if not is_in_scope(start_url, prefixes):
        raise ConfigurationError(f"Start URL {start_url} is outside the allowed prefixes")

    session = CrawlSession(
        start_url=start_url,
        allowed_prefixes=prefixes,
        max_pages=config.max_pages,
        max_depth=config.max_depth,
        output_directory=str(config.output_directory),
        queue=[(start_url, 0)],
    )
    metadata.crawl_state = session
    log.info(f"Starting new session for {start_url} (scope: {', '.join(sorted(prefixes))})")
    return session, metadata, False


def _apply_config(session: CrawlSession, config: CrawlConfig):
    """Carry current budgets onto a resumed session, keeping its queue consistent."""
    session.max_pages = config.max_pages
    session.max_depth = config.max_depth
    session.output_directory = str(config.output_directory)
    if config.allowed_prefixes:
        session.allowed_prefixes = set(config.allowed_prefixes)

    session.queue = [
        (url, depth) for url, depth in session.queue
        if depth <= session.max_depth
        and is_in_scope(url, session.allowed_prefixes)
        and url not in session.visited
    ]

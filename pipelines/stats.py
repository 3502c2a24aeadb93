"""Statistics and progress reporting for crawl and fetch jobs.

Counters only ever move forward. Progress callbacks are fire-and-forget:
a failing callback is logged and otherwise ignored.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class PageOutcome(str, Enum):
    """Terminal state of a single crawl unit."""
    NEW = "new"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class CrawlStats:
    """Statistics for a crawl session."""
    new_pages: int = 0
    updated_pages: int = 0
    skipped_pages: int = 0
    errors: int = 0
    total_pages: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def __post_init__(self):
        if self.start_time is None:
            self.start_time = datetime.now(timezone.utc)

    @property
    def duration(self) -> Optional[timedelta]:
        if self.end_time and self.start_time:
            return self.end_time - self.start_time
        return None

    def record(self, outcome: PageOutcome):
        """Count one processed unit."""
        self.total_pages += 1
        if outcome == PageOutcome.NEW:
            self.new_pages += 1
        elif outcome == PageOutcome.UPDATED:
            self.updated_pages += 1
        elif outcome == PageOutcome.SKIPPED:
            self.skipped_pages += 1
        else:
            self.errors += 1

    def finish(self):
        """Mark crawl as finished."""
        self.end_time = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'new_pages': self.new_pages,
            'updated_pages': self.updated_pages,
            'skipped_pages': self.skipped_pages,
            'errors': self.errors,
            'total_pages': self.total_pages,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
        }


@dataclass
class FetchStats:
    """Statistics for a batch fetch run."""
    total_packages: int = 0
    successful_fetches: int = 0
    errors: int = 0
    processed: int = 0
    rate_limited: bool = False
    stopped_at: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def __post_init__(self):
        if self.start_time is None:
            self.start_time = datetime.now(timezone.utc)

    @property
    def duration(self) -> Optional[timedelta]:
        if self.end_time and self.start_time:
            return self.end_time - self.start_time
        return None

    def finish(self):
        self.end_time = datetime.now(timezone.utc)


@dataclass
class CrawlProgress:
    """Snapshot handed to crawl progress callbacks after every unit."""
    current_url: str
    visited: int
    queued: int
    max_pages: int
    outcome: PageOutcome
    stats: CrawlStats = field(repr=False, default_factory=CrawlStats)

    @property
    def total_estimate(self) -> int:
        return min(self.max_pages, self.visited + self.queued)

    @property
    def percentage(self) -> float:
        total = self.total_estimate
        if total <= 0:
            return 100.0
        return min(100.0, self.visited / total * 100)


@dataclass
class FetchProgress:
    """Snapshot handed to fetch progress callbacks after every entry."""
    current: int
    total: int
    item_name: str
    stats: FetchStats = field(repr=False, default_factory=FetchStats)

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 100.0
        return self.current / self.total * 100


def notify_progress(callback: Optional[Callable[[Any], None]], progress: Any,
                    log: Optional[logging.Logger] = None) -> None:
    """Invoke a progress callback without letting it break the caller."""
    if callback is None:
        return
    try:
        callback(progress)
    except Exception as e:
        (log or logger).warning(f"Progress callback failed: {e}")

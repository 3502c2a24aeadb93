"""Rate-limited, checkpointed enrichment of the Swift package catalog.

The fetch runs in two phases over the package list:

1. *Ranking*: one cheap request per repository for its star count. The
   list is then stable-sorted by stars so the most popular packages are
   enriched first and a partial run is still useful.
2. *Detail*: walk the ranked list from the checkpointed index, fetching
   descriptive metadata and reusing the star count cached in phase 1.

``checkpoint.json`` carries the ranking as well as the results, so a
resumed run skips phase 1 and walks exactly the same order.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from config.settings import CHECKPOINT_FILE, PACKAGE_LIST_URL, PACKAGES_OUTPUT_FILE
from .catalog import GitHubCatalog, PackageInfo, parse_owner_repo
from .errors import CorruptStateError, NotFoundError, RateLimitedError
from .job_config import FetchConfig
from .persistence import read_json, write_json_atomic
from .stats import FetchProgress, FetchStats, notify_progress

logger = logging.getLogger(__name__)

ERROR_NOT_FOUND = "not_found"
ERROR_FETCH_FAILED = "fetch_failed"
ERROR_INVALID_URL = "invalid_url"

# (package url, cached star count or None when phase 1 did not get one)
RankedEntry = Tuple[str, Optional[int]]


@dataclass
class FetchCheckpoint:
    """Durable progress of a detail pass.

    ``processed_count`` always equals ``len(items)``: every index below it
    produced exactly one item, errored or not.
    """
    processed_count: int = 0
    items: List[PackageInfo] = field(default_factory=list)
    ranking: Optional[List[RankedEntry]] = None
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'processed_count': self.processed_count,
            'packages': [item.to_dict() for item in self.items],
            'ranking': [[url, stars] for url, stars in self.ranking] if self.ranking is not None else None,
            'timestamp': (self.timestamp or datetime.now(timezone.utc)).isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FetchCheckpoint':
        ranking = data.get('ranking')
        timestamp = data.get('timestamp')
        checkpoint = cls(
            processed_count=int(data['processed_count']),
            items=[PackageInfo.from_dict(item) for item in data['packages']],
            ranking=[(str(url), stars) for url, stars in ranking] if ranking is not None else None,
            timestamp=datetime.fromisoformat(timestamp) if timestamp else None,
        )
        if checkpoint.processed_count != len(checkpoint.items):
            raise ValueError(
                f"processed_count {checkpoint.processed_count} does not match "
                f"{len(checkpoint.items)} stored packages"
            )
        return checkpoint


def load_checkpoint(path: Path) -> Optional[FetchCheckpoint]:
    """Read a checkpoint, failing closed on anything unreadable."""
    data = read_json(path)
    if data is None:
        return None
    try:
        return FetchCheckpoint.from_dict(data)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise CorruptStateError(path, f"invalid checkpoint: {e}") from e


def rank_order(ranked: Sequence[RankedEntry]) -> List[RankedEntry]:
    """Stable sort by star count, most starred first; unknown counts rank as 0."""
    return sorted(ranked, key=lambda entry: entry[1] or 0, reverse=True)


class PackageFetcher:
    """Two-phase GitHub metadata fetcher for the package catalog."""

    def __init__(self,
                 config: FetchConfig,
                 catalog: Optional[GitHubCatalog] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 logger: Optional[logging.Logger] = None):
        """Initialize fetcher.

        Args:
            config: Validated fetch configuration
            catalog: Remote catalog client; defaults to a :class:`GitHubCatalog`
                that is closed when the fetch ends
            sleep: Pacing primitive, injectable so tests run without delays
            logger: Log sink
        """
        self.config = config
        self.sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

        self._owns_catalog = catalog is None
        self.catalog = catalog or GitHubCatalog(token=config.github_token, logger=self.logger)

        self.checkpoint_path = config.output_directory / CHECKPOINT_FILE
        self.output_path = config.output_directory / PACKAGES_OUTPUT_FILE

    async def fetch(self,
                    entries: Optional[Sequence[str]] = None,
                    on_progress: Optional[Callable[[FetchProgress], None]] = None) -> FetchStats:
        """Run the fetch and write ``packages-with-stars.json``.

        Args:
            entries: Package repository URLs; downloaded from the package
                list when omitted
            on_progress: Called after every detail entry

        Returns:
            Statistics for this run. ``rate_limited`` is set when the API
            quota ran out; the checkpoint then points at the stalled entry.

        Raises:
            CorruptStateError: the checkpoint exists but cannot be read
        """
        stats = FetchStats()
        self.config.output_directory.mkdir(parents=True, exist_ok=True)

        try:
            checkpoint = self._initial_checkpoint()

            if checkpoint.ranking is None:
                if entries is None:
                    list_url = self.config.package_list_url or PACKAGE_LIST_URL
                    self.logger.info(f"Downloading package list from {list_url}")
                    entries = await self.catalog.fetch_package_list(list_url)
                self.logger.info(f"Ranking {len(entries)} packages by stars")
                checkpoint.ranking = await self._rank(entries)
            else:
                self.logger.info(
                    f"Resuming from checkpoint: {checkpoint.processed_count} of "
                    f"{len(checkpoint.ranking)} packages processed"
                )

            await self._detail_pass(checkpoint, stats, on_progress)

        finally:
            if self._owns_catalog:
                await self.catalog.close()

        stats.finish()
        self._write_output(checkpoint.items, stats)

        if stats.rate_limited:
            self.logger.warning(
                f"Rate limited at package {stats.stopped_at + 1}; "
                f"rerun with resume after the quota resets or set GITHUB_TOKEN"
            )
        self.logger.info(
            f"Fetch completed: {stats.successful_fetches} fetched, {stats.errors} errors, "
            f"{stats.total_packages} packages written to {self.output_path}"
        )
        return stats

    def _initial_checkpoint(self) -> FetchCheckpoint:
        if not self.config.resume:
            return FetchCheckpoint()

        checkpoint = load_checkpoint(self.checkpoint_path)
        if checkpoint is None:
            self.logger.info(f"No checkpoint at {self.checkpoint_path}; starting a fresh fetch")
            return FetchCheckpoint()
        return checkpoint

    async def _rank(self, entries: Sequence[str]) -> List[RankedEntry]:
        """Phase 1: star count per entry, then a stable descending sort."""
        ranked: List[RankedEntry] = []
        rate_limited = False

        for index, url in enumerate(entries):
            stars = None
            parsed = parse_owner_repo(url)

            if parsed is not None and not rate_limited:
                identity = f"{parsed[0]}/{parsed[1]}"
                try:
                    stars = await self.catalog.fetch_ranking_signal(identity)
                except RateLimitedError:
                    rate_limited = True
                    self.logger.warning(
                        f"Rate limited while ranking at {index + 1}/{len(entries)}; "
                        f"remaining packages keep their list order"
                    )
                except Exception as e:
                    self.logger.debug(f"Ranking failed for {identity}: {e}")

                if not rate_limited:
                    if (index + 1) % self.config.pause_every == 0:
                        await self.sleep(self.config.ranking_pause_delay)
                    else:
                        await self.sleep(self.config.ranking_delay)

            ranked.append((url, stars))

            if (index + 1) % 100 == 0:
                self.logger.info(f"Ranked {index + 1}/{len(entries)} packages")

        return rank_order(ranked)

    async def _detail_pass(self, checkpoint: FetchCheckpoint, stats: FetchStats,
                           on_progress: Optional[Callable[[FetchProgress], None]]):
        """Phase 2: enrich ranked entries from ``processed_count`` on."""
        ranking = checkpoint.ranking
        total = len(ranking) if self.config.limit is None else min(self.config.limit, len(ranking))
        start = checkpoint.processed_count
        stats.total_packages = total

        for index in range(start, total):
            url, cached_stars = ranking[index]
            try:
                item = await self._fetch_one(url, cached_stars)
            except RateLimitedError:
                stats.rate_limited = True
                stats.stopped_at = index
                self._save_checkpoint(checkpoint, index)
                break

            checkpoint.items.append(item)
            stats.processed += 1
            if item.error is None:
                stats.successful_fetches += 1
            else:
                stats.errors += 1

            notify_progress(on_progress, FetchProgress(
                current=index + 1,
                total=total,
                item_name=item.identity if item.owner else url,
                stats=stats,
            ), self.logger)

            if (index + 1) % self.config.checkpoint_interval == 0:
                self._save_checkpoint(checkpoint, index + 1)
                self.logger.info(f"Checkpoint saved at {index + 1}/{total}")

            if (index + 1) % self.config.pause_every == 0:
                await self.sleep(self.config.pause_delay)
            else:
                await self.sleep(self.config.request_delay)
        else:
            self._save_checkpoint(checkpoint, max(start, total))

    async def _fetch_one(self, url: str, cached_stars: Optional[int]) -> PackageInfo:
        """Fetch detail for one entry and classify the outcome.

        Raises:
            RateLimitedError: the quota ran out; the caller stops the phase
        """
        parsed = parse_owner_repo(url)
        if parsed is None:
            self.logger.debug(f"Not a GitHub repository URL: {url}")
            return PackageInfo(owner="", repo="", url=url, error=ERROR_INVALID_URL)

        owner, repo = parsed
        identity = f"{owner}/{repo}"
        fallback_stars = cached_stars or 0

        try:
            detail = await self.catalog.fetch_detail(identity)
        except RateLimitedError:
            raise
        except NotFoundError:
            return PackageInfo(owner=owner, repo=repo, stars=fallback_stars, error=ERROR_NOT_FOUND)
        except Exception as e:
            self.logger.warning(f"Fetch failed for {identity}: {e}")
            return PackageInfo(owner=owner, repo=repo, stars=fallback_stars, error=ERROR_FETCH_FAILED)

        stars = cached_stars if cached_stars is not None else int(detail.get('stars') or 0)
        return PackageInfo(
            owner=owner,
            repo=repo,
            stars=stars,
            description=detail.get('description'),
            url=detail.get('url') or url,
            archived=bool(detail.get('archived', False)),
            fork=bool(detail.get('fork', False)),
            updated_at=detail.get('updated_at'),
            language=detail.get('language'),
            license=detail.get('license'),
        )

    def _save_checkpoint(self, checkpoint: FetchCheckpoint, processed_count: int):
        checkpoint.processed_count = processed_count
        checkpoint.timestamp = datetime.now(timezone.utc)
        write_json_atomic(self.checkpoint_path, checkpoint.to_dict())

    def _write_output(self, items: Sequence[PackageInfo], stats: FetchStats):
        """Drop errored items without stars, sort by stars, write the result file."""
        kept = [item for item in items if item.error is None or item.stars > 0]
        kept.sort(key=lambda item: item.stars, reverse=True)
        stats.total_packages = len(kept)

        write_json_atomic(self.output_path, {
            'total_packages': len(kept),
            'total_processed': len(items),
            'errors': sum(1 for item in items if item.error is not None),
            'rate_limited': stats.rate_limited,
            'generated_at': datetime.now(timezone.utc).isoformat(),
            'packages': [item.to_dict() for item in kept],
        })

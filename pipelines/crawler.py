"""Documentation crawler pipeline for DocHarbor.

Drives a resumable, breadth-first crawl: every unit handed out by the
frontier goes through render -> transform -> hash -> save (or skip) ->
link extraction -> persist before the next one starts. Units run strictly
one at a time because the render capability is usually a single scarce
browser session.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Set
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

from .frontier import Frontier, load_or_create
from .job_config import CrawlConfig
from .render import HttpRenderer, Renderer
from .session import CrawlMetadata, PageRecord, SessionStore
from .stats import CrawlProgress, CrawlStats, PageOutcome, notify_progress
from .transform import content_hash, html_to_markdown, url_to_relative_path, write_markdown

logger = logging.getLogger(__name__)


def extract_links(content: str, base_url: str) -> Set[str]:
    """Extract absolute, fragment-free http(s) links from HTML content."""
    links = set()

    try:
        soup = BeautifulSoup(content, 'html.parser')

        for link in soup.find_all('a', href=True):
            href = link['href'].strip()
            if not href or href.startswith(('mailto:', 'javascript:', 'tel:')):
                continue
            absolute_url = urljoin(base_url, href)
            parsed = urlparse(absolute_url)
            if parsed.scheme not in ('http', 'https'):
                continue
            links.add(urlunparse(parsed._replace(fragment='')))

    except Exception as e:
        logger.warning(f"Failed to extract links from {base_url}: {e}")

    return links


class DocumentationCrawler:
    """Resumable crawler for one documentation tree."""

    def __init__(self,
                 config: CrawlConfig,
                 renderer: Optional[Renderer] = None,
                 transform: Callable[[str], str] = html_to_markdown,
                 resume: bool = False,
                 logger: Optional[logging.Logger] = None):
        """Initialize crawler.

        Args:
            config: Validated crawl configuration
            renderer: Render capability; defaults to an :class:`HttpRenderer`
                that is closed when the crawl ends
            transform: ``(html) -> text`` normalizer
            resume: Require resuming the persisted session for this start URL
            logger: Log sink
        """
        self.config = config
        self.transform = transform
        self.resume = resume
        self.logger = logger or logging.getLogger(__name__)

        self._owns_renderer = renderer is None
        self.renderer = renderer or HttpRenderer(
            request_timeout=config.request_timeout,
            user_agent=config.user_agent,
            logger=self.logger,
        )

        self.store = SessionStore(config.output_directory)
        self.metadata: Optional[CrawlMetadata] = None
        self.frontier: Optional[Frontier] = None
        self.resumed = False
        self.include_host = False

    async def crawl(self, on_progress: Optional[Callable[[CrawlProgress], None]] = None) -> CrawlStats:
        """Run the crawl until the queue or page budget is exhausted.

        Args:
            on_progress: Called after every processed unit

        Returns:
            Statistics for this run

        Raises:
            CorruptStateError: persisted session cannot be read
            ConfigurationError: the output directory holds an active session
                for another start URL
        """
        session, metadata, self.resumed = load_or_create(
            self.config, self.store, resume=self.resume, log=self.logger
        )
        self.metadata = metadata
        self.include_host = len({urlparse(p).netloc.lower() for p in session.allowed_prefixes}) > 1
        self.frontier = Frontier(
            session,
            persist=lambda: self.store.save(metadata),
            save_interval=self.config.save_interval,
            logger=self.logger,
        )
        self.config.output_directory.mkdir(parents=True, exist_ok=True)

        stats = CrawlStats()
        self.logger.info(
            f"Crawling {session.start_url} -> {self.config.output_directory} "
            f"(max_pages={session.max_pages}, max_depth={session.max_depth}, force={self.config.force})"
        )

        try:
            # Persist right away so an early crash still leaves a resumable session
            self.frontier.flush()

            while True:
                unit = self.frontier.next_unit()
                if unit is None:
                    break
                url, depth = unit

                try:
                    outcome = await self._process_unit(url, depth)
                except asyncio.CancelledError:
                    stats.record(PageOutcome.FAILED)
                    stats.finish()
                    self.logger.warning(f"Crawl cancelled while processing {url}; session left resumable")
                    raise

                stats.record(outcome)
                notify_progress(on_progress, CrawlProgress(
                    current_url=url,
                    visited=self.frontier.visited_count,
                    queued=self.frontier.queued_count,
                    max_pages=session.max_pages,
                    outcome=outcome,
                    stats=stats,
                ), self.logger)

                if stats.total_pages % 50 == 0:
                    self.logger.info(
                        f"[{self.frontier.visited_count}/{session.max_pages}] "
                        f"{stats.new_pages} new, {stats.updated_pages} updated, "
                        f"{stats.skipped_pages} skipped, {stats.errors} errors, "
                        f"{self.frontier.queued_count} queued"
                    )

            stats.finish()
            metadata.last_crawl = stats.end_time
            metadata.stats = stats.to_dict()
            self.frontier.finish()

        finally:
            if self._owns_renderer:
                await self.renderer.close()

        self.logger.info(
            f"Crawl completed: {stats.new_pages} new, {stats.updated_pages} updated, "
            f"{stats.skipped_pages} skipped, {stats.errors} errors out of {stats.total_pages} pages"
        )
        return stats

    async def _process_unit(self, url: str, depth: int) -> PageOutcome:
        """Render, hash and save a single page, then hand its links to the frontier."""
        try:
            html = await self.renderer.render(url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.warning(f"Render failed for {url}: {e}")
            self.frontier.record_failure(url, str(e))
            return PageOutcome.FAILED

        try:
            text = self.transform(html)
            digest = content_hash(text)
            prior = self.metadata.pages.get(url)

            if (prior is not None
                    and prior.content_hash == digest
                    and not self.config.force
                    and (self.config.output_directory / prior.local_path).exists()):
                outcome = PageOutcome.SKIPPED
                local_path = prior.local_path
            else:
                local_path = url_to_relative_path(url, include_host=self.include_host)
                write_markdown(self.config.output_directory, local_path, text, {
                    "source_url": url,
                    "captured_at": datetime.now(timezone.utc).isoformat(),
                    "content_hash": digest,
                    "depth": depth,
                })
                outcome = PageOutcome.UPDATED if prior is not None else PageOutcome.NEW

        except Exception as e:
            self.logger.error(f"Failed to save {url}: {e}")
            self.frontier.record_failure(url, str(e))
            return PageOutcome.FAILED

        record = PageRecord(url=url, content_hash=digest, local_path=local_path, depth=depth)
        self.metadata.pages[url] = record
        added = self.frontier.record_outcome(url, record, extract_links(html, url))
        self.logger.debug(f"{outcome.value}: {url} (depth {depth}, {added} new links)")
        return outcome

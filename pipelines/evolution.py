"""Swift Evolution proposal downloader.

Proposals already are Markdown, so there is nothing to render: the
``proposals/`` directory of the evolution repository is listed through
the GitHub contents API and every ``NNNN-title.md`` file is downloaded
raw and saved as ``SE-NNNN.md``. Content hashes kept in
``proposals.json`` give the same new/updated/skipped classification the
documentation crawler uses.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from config.settings import SWIFT_EVOLUTION_REPO
from .catalog import GitHubCatalog
from .errors import CorruptStateError, RateLimitedError
from .persistence import read_json, write_json_atomic
from .stats import CrawlStats, FetchProgress, PageOutcome, notify_progress
from .transform import content_hash, write_markdown

logger = logging.getLogger(__name__)

PROPOSALS_FILE = "proposals.json"

PROPOSAL_FILENAME = re.compile(r"^(\d{4})-[^/]+\.md$")
STATUS_LINE = re.compile(r"^\s*[*-]\s*Status:\s*\*{0,2}([^*\n]+)", re.IGNORECASE | re.MULTILINE)
ACCEPTED_STATUSES = ("accepted", "implemented")


def parse_status(markdown: str) -> Optional[str]:
    """Return the proposal's status line text, e.g. ``Implemented (Swift 5.5)``."""
    match = STATUS_LINE.search(markdown)
    if not match:
        return None
    return match.group(1).strip()


def is_accepted(status: Optional[str]) -> bool:
    return bool(status) and status.lower().startswith(ACCEPTED_STATUSES)


@dataclass
class ProposalEntry:
    proposal_id: str
    name: str
    download_url: str
    html_url: str


class SwiftEvolutionCrawler:
    """Download Swift Evolution proposals into a directory of Markdown files."""

    def __init__(self,
                 output_directory: Path,
                 catalog: Optional[GitHubCatalog] = None,
                 only_accepted: bool = False,
                 force: bool = False,
                 repository: str = SWIFT_EVOLUTION_REPO,
                 logger: Optional[logging.Logger] = None):
        self.output_directory = Path(output_directory).expanduser()
        self.only_accepted = only_accepted
        self.force = force
        self.repository = repository
        self.logger = logger or logging.getLogger(__name__)

        self._owns_catalog = catalog is None
        self.catalog = catalog or GitHubCatalog(logger=self.logger)
        self.index_path = self.output_directory / PROPOSALS_FILE

    def _load_index(self) -> Dict[str, Any]:
        data = read_json(self.index_path)
        if data is None:
            return {'proposals': {}}
        if not isinstance(data, dict) or not isinstance(data.get('proposals'), dict):
            raise CorruptStateError(self.index_path, "expected an object with a 'proposals' map")
        return data

    async def list_proposals(self) -> List[ProposalEntry]:
        """List proposal files, oldest proposal first."""
        listing = await self.catalog.list_directory(self.repository, "proposals")
        entries = []
        for item in listing:
            name = item.get('name', '')
            match = PROPOSAL_FILENAME.match(name)
            if item.get('type') != 'file' or not match or not item.get('download_url'):
                continue
            entries.append(ProposalEntry(
                proposal_id=f"SE-{match.group(1)}",
                name=name,
                download_url=item['download_url'],
                html_url=item.get('html_url') or f"https://github.com/{self.repository}/blob/main/proposals/{name}",
            ))
        entries.sort(key=lambda e: e.name)
        return entries

    async def crawl(self, on_progress: Optional[Callable[[FetchProgress], None]] = None) -> CrawlStats:
        """Download every (optionally only accepted) proposal.

        Raises:
            RateLimitedError: the API quota ran out; proposals saved so far
                are kept and recorded
            CorruptStateError: ``proposals.json`` is unreadable
        """
        stats = CrawlStats()
        index = self._load_index()
        known: Dict[str, Any] = index['proposals']
        self.output_directory.mkdir(parents=True, exist_ok=True)

        try:
            entries = await self.list_proposals()
            self.logger.info(f"Found {len(entries)} Swift Evolution proposals in {self.repository}")

            for position, entry in enumerate(entries, start=1):
                try:
                    outcome = await self._process(entry, known)
                except RateLimitedError:
                    self.logger.error(f"Rate limited at {entry.proposal_id}; stopping")
                    raise
                except Exception as e:
                    self.logger.warning(f"Failed to download {entry.proposal_id}: {e}")
                    outcome = PageOutcome.FAILED

                if outcome is not None:
                    stats.record(outcome)
                notify_progress(on_progress, FetchProgress(
                    current=position,
                    total=len(entries),
                    item_name=entry.proposal_id,
                ), self.logger)

        finally:
            stats.finish()
            index['last_crawl'] = stats.end_time.isoformat()
            index['stats'] = stats.to_dict()
            write_json_atomic(self.index_path, index)
            if self._owns_catalog:
                await self.catalog.close()

        self.logger.info(
            f"Evolution download completed: {stats.new_pages} new, {stats.updated_pages} updated, "
            f"{stats.skipped_pages} skipped, {stats.errors} errors"
        )
        return stats

    async def _process(self, entry: ProposalEntry, known: Dict[str, Any]) -> Optional[PageOutcome]:
        """Download and save one proposal; None when it was filtered out."""
        markdown = await self.catalog.fetch_text(entry.download_url, entry.proposal_id)
        status = parse_status(markdown)

        if self.only_accepted and not is_accepted(status):
            self.logger.debug(f"Skipping {entry.proposal_id} with status {status!r}")
            return None

        digest = content_hash(markdown)
        filename = f"{entry.proposal_id}.md"
        prior = known.get(entry.proposal_id)

        if (prior is not None and prior.get('content_hash') == digest and not self.force
                and (self.output_directory / filename).exists()):
            return PageOutcome.SKIPPED

        write_markdown(self.output_directory, filename, markdown, {
            "source_url": entry.html_url,
            "captured_at": datetime.now(timezone.utc).isoformat(),
            "content_hash": digest,
            "proposal_id": entry.proposal_id,
            "status": status,
        })
        known[entry.proposal_id] = {
            'name': entry.name,
            'content_hash': digest,
            'local_path': filename,
            'status': status,
        }
        return PageOutcome.UPDATED if prior is not None else PageOutcome.NEW

"""Pipelines package for DocHarbor.

Provides the resumable documentation crawler, the rate-limited package
fetcher, the Swift Evolution downloader and the job orchestrator.
"""

from .errors import (
    DocHarborError,
    ConfigurationError,
    AmbiguousSessionError,
    CorruptStateError,
    RenderError,
    CatalogError,
    NotFoundError,
    RateLimitedError
)
from .job_config import CrawlConfig, FetchConfig
from .stats import CrawlStats, FetchStats, CrawlProgress, FetchProgress, PageOutcome
from .session import CrawlSession, CrawlMetadata, PageRecord, SessionStore, discover_session, list_active_sessions
from .frontier import Frontier, derive_allowed_prefixes, load_or_create
from .render import Renderer, HttpRenderer
from .crawler import DocumentationCrawler, extract_links
from .catalog import GitHubCatalog, PackageInfo, parse_owner_repo
from .fetcher import PackageFetcher, FetchCheckpoint, load_checkpoint
from .evolution import SwiftEvolutionCrawler
from .orchestrator import JobResult, OrchestratorReport, run_jobs

__all__ = [
    # Errors
    'DocHarborError',
    'ConfigurationError',
    'AmbiguousSessionError',
    'CorruptStateError',
    'RenderError',
    'CatalogError',
    'NotFoundError',
    'RateLimitedError',

    # Configuration and statistics
    'CrawlConfig',
    'FetchConfig',
    'CrawlStats',
    'FetchStats',
    'CrawlProgress',
    'FetchProgress',
    'PageOutcome',

    # Crawl
    'CrawlSession',
    'CrawlMetadata',
    'PageRecord',
    'SessionStore',
    'discover_session',
    'list_active_sessions',
    'Frontier',
    'derive_allowed_prefixes',
    'load_or_create',
    'Renderer',
    'HttpRenderer',
    'DocumentationCrawler',
    'extract_links',

    # Fetch
    'GitHubCatalog',
    'PackageInfo',
    'parse_owner_repo',
    'PackageFetcher',
    'FetchCheckpoint',
    'load_checkpoint',
    'SwiftEvolutionCrawler',

    # Orchestration
    'JobResult',
    'OrchestratorReport',
    'run_jobs'
]

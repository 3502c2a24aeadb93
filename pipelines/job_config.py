"""Per-job configuration for crawl and fetch runs.

Each job gets one fully enumerated, validated configuration object.
Validation happens once, at construction, so the traversal loops never
re-check their inputs.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from config.settings import USER_AGENT
from .errors import ConfigurationError


def _expand(path) -> Path:
    return Path(os.path.expanduser(str(path)))


@dataclass
class CrawlConfig:
    """Configuration for one documentation crawl.

    Attributes:
        start_url: Seed URL; must be absolute http(s).
        output_directory: Where Markdown and ``metadata.json`` are written.
        allowed_prefixes: URL prefixes that define the crawl scope. When
            empty, a prefix is derived from the start URL.
        max_pages: Page budget for a single run.
        max_depth: Maximum link distance from the start URL.
        force: Rewrite pages even when their content hash is unchanged.
        request_timeout: Per-request timeout for the default renderer.
        save_interval: Persist session state every N processed units.
        user_agent: User-Agent for the default renderer.
    """
    start_url: str
    output_directory: Path
    allowed_prefixes: List[str] = field(default_factory=list)
    max_pages: int = 15000
    max_depth: int = 15
    force: bool = False
    request_timeout: float = 30.0
    save_interval: int = 1
    user_agent: str = USER_AGENT

    def __post_init__(self):
        parsed = urlparse(self.start_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(f"Invalid start URL: {self.start_url!r}")

        if self.max_pages < 1:
            raise ConfigurationError("max_pages must be at least 1")

        if self.max_depth < 0:
            raise ConfigurationError("max_depth cannot be negative")

        if self.save_interval < 1:
            raise ConfigurationError("save_interval must be at least 1")

        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive")

        self.output_directory = _expand(self.output_directory)
        self.allowed_prefixes = [p.strip() for p in self.allowed_prefixes if p and p.strip()]
        for prefix in self.allowed_prefixes:
            if urlparse(prefix).scheme not in ("http", "https"):
                raise ConfigurationError(f"Allowed prefix must be an absolute URL: {prefix!r}")


@dataclass
class FetchConfig:
    """Configuration for the package metadata batch fetcher.

    Attributes:
        output_directory: Where the checkpoint and results are written.
        limit: Process at most this many entries (None for all).
        resume: Continue from ``checkpoint.json`` when present.
        request_delay: Pause after every detail request (seconds).
        pause_every: Insert a longer pause after every N entries.
        pause_delay: Length of the longer pause (seconds).
        ranking_delay: Pause after every ranking request (seconds).
        ranking_pause_delay: Longer pause during the ranking pass (seconds).
        checkpoint_interval: Write a checkpoint every N entries.
        github_token: Optional API token; without one the budget is lower.
        package_list_url: JSON array of repository URLs to enrich.
    """
    output_directory: Path
    limit: Optional[int] = None
    resume: bool = False
    request_delay: float = 1.2
    pause_every: int = 50
    pause_delay: float = 5.0
    ranking_delay: float = 0.5
    ranking_pause_delay: float = 2.0
    checkpoint_interval: int = 100
    github_token: Optional[str] = None
    package_list_url: Optional[str] = None

    def __post_init__(self):
        if self.limit is not None and self.limit < 0:
            raise ConfigurationError("limit cannot be negative")

        for name in ("request_delay", "pause_delay", "ranking_delay", "ranking_pause_delay"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} cannot be negative")

        if self.pause_every < 1:
            raise ConfigurationError("pause_every must be at least 1")

        if self.checkpoint_interval < 1:
            raise ConfigurationError("checkpoint_interval must be at least 1")

        self.output_directory = _expand(self.output_directory)

"""GitHub REST client used to enrich package catalog entries.

Distinguishes three failure modes the batch fetcher treats differently:
``NotFoundError`` (repository gone), ``RateLimitedError`` (quota exhausted)
and plain ``CatalogError`` (everything else).
"""

import asyncio
import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from config.settings import GITHUB_API_URL, USER_AGENT
from .errors import CatalogError, NotFoundError, RateLimitedError

logger = logging.getLogger(__name__)

OWNER_REPO_PATTERN = re.compile(r"^https?://github\.com/([^/]+)/([^/]+?)(?:\.git)?/?$")


def parse_owner_repo(url: str) -> Optional[Tuple[str, str]]:
    """Split ``https://github.com/owner/repo(.git)`` into (owner, repo)."""
    match = OWNER_REPO_PATTERN.match(url.strip())
    if not match:
        return None
    return match.group(1), match.group(2)


@dataclass
class PackageInfo:
    """Enrichment result for one catalog entry."""
    owner: str
    repo: str
    stars: int = 0
    description: Optional[str] = None
    url: str = ""
    archived: bool = False
    fork: bool = False
    updated_at: Optional[str] = None
    language: Optional[str] = None
    license: Optional[str] = None
    error: Optional[str] = None

    def __post_init__(self):
        if not self.url:
            self.url = f"https://github.com/{self.owner}/{self.repo}"

    @property
    def identity(self) -> str:
        return f"{self.owner}/{self.repo}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PackageInfo':
        fields = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in fields})


class GitHubCatalog:
    """Minimal asynchronous GitHub API client."""

    def __init__(self,
                 token: Optional[str] = None,
                 user_agent: str = USER_AGENT,
                 api_url: str = GITHUB_API_URL,
                 request_timeout: float = 30.0,
                 logger: Optional[logging.Logger] = None):
        self.token = token
        self.user_agent = user_agent
        self.api_url = api_url.rstrip('/')
        self.request_timeout = request_timeout
        self.logger = logger or logging.getLogger(__name__)
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self):
        if self.session is None or self.session.closed:
            headers = {
                'Accept': 'application/vnd.github.v3+json',
                'User-Agent': self.user_agent,
            }
            if self.token:
                headers['Authorization'] = f"Bearer {self.token}"
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
                headers=headers,
            )

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def _get(self, url: str, identity: str, as_json: bool = True) -> Any:
        await self._ensure_session()
        try:
            async with self.session.get(url) as response:
                if response.status == 200:
                    if as_json:
                        return await response.json(content_type=None)
                    return await response.text()

                if response.status == 404:
                    raise NotFoundError(identity)

                if response.status in (403, 429):
                    remaining = response.headers.get('X-RateLimit-Remaining')
                    if response.status == 429 or remaining == '0':
                        raise RateLimitedError(identity, response.headers.get('X-RateLimit-Reset'))
                    raise CatalogError(identity, "forbidden", status_code=response.status)

                raise CatalogError(identity, f"HTTP {response.status}", status_code=response.status)

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise CatalogError(identity, str(e) or e.__class__.__name__) from e

    async def fetch_package_list(self, url: str) -> List[str]:
        """Download the JSON array of repository URLs that seeds a fetch."""
        data = await self._get(url, "package list")
        if not isinstance(data, list):
            raise CatalogError("package list", "expected a JSON array")
        return [str(entry) for entry in data]

    async def fetch_ranking_signal(self, identity: str) -> int:
        """Star count for ``owner/repo``."""
        data = await self._get(f"{self.api_url}/repos/{identity}", identity)
        return int(data.get('stargazers_count') or 0)

    async def fetch_detail(self, identity: str) -> Dict[str, Any]:
        """Descriptive metadata for ``owner/repo``."""
        data = await self._get(f"{self.api_url}/repos/{identity}", identity)
        license_info = data.get('license') or {}
        return {
            'stars': int(data.get('stargazers_count') or 0),
            'description': data.get('description'),
            'url': data.get('html_url') or f"https://github.com/{identity}",
            'archived': bool(data.get('archived', False)),
            'fork': bool(data.get('fork', False)),
            'updated_at': data.get('updated_at'),
            'language': data.get('language'),
            'license': license_info.get('spdx_id'),
        }

    async def list_directory(self, repo: str, path: str, ref: str = "main") -> List[Dict[str, Any]]:
        """List a repository directory through the contents API."""
        data = await self._get(f"{self.api_url}/repos/{repo}/contents/{path}?ref={ref}", f"{repo}/{path}")
        if not isinstance(data, list):
            raise CatalogError(f"{repo}/{path}", "expected a directory listing")
        return data

    async def fetch_text(self, url: str, identity: str) -> str:
        """Download a raw file."""
        return await self._get(url, identity, as_json=False)

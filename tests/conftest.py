import asyncio
import os
import sys
from typing import Dict, Iterable, List, Optional

import pytest

# Add the parent directory to the path so tests run from a plain checkout
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from pipelines.errors import CatalogError, NotFoundError, RateLimitedError, RenderError


def page_html(url: str, links: Iterable[str] = (), body: str = "") -> str:
    anchors = "".join(f'<a href="{link}">{link}</a>' for link in links)
    return (f"<html><head><title>{url}</title></head>"
            f"<body><h1>Page {url}</h1><p>{body or 'Content of ' + url}</p>{anchors}</body></html>")


class FakeRenderer:
    """In-memory site.

    ``pages`` maps URL -> HTML. With ``fanout`` set, unknown URLs are
    generated on the fly, each linking to ``fanout`` children ``<url>/cN``.
    """

    def __init__(self, pages: Optional[Dict[str, str]] = None, fanout: Optional[int] = None,
                 fail: Iterable[str] = (), cancel_on: Optional[str] = None):
        self.pages = dict(pages or {})
        self.fanout = fanout
        self.fail = set(fail)
        self.cancel_on = cancel_on
        self.calls: List[str] = []

    async def render(self, url: str) -> str:
        self.calls.append(url)
        if url == self.cancel_on:
            raise asyncio.CancelledError()
        if url in self.fail:
            raise RenderError(url, "simulated failure")
        if url in self.pages:
            return self.pages[url]
        if self.fanout is None:
            raise RenderError(url, "HTTP 404")
        children = [f"{url.rstrip('/')}/c{i}" for i in range(self.fanout)]
        return page_html(url, children)


class FakeCatalog:
    """Stand-in for :class:`GitHubCatalog` driven by a star table."""

    def __init__(self, stars: Dict[str, int], missing: Iterable[str] = (),
                 failing: Iterable[str] = (), rate_limit_detail: Iterable[str] = (),
                 rate_limit_ranking_after: Optional[int] = None):
        self.stars = dict(stars)
        self.missing = set(missing)
        self.failing = set(failing)
        self.rate_limit_detail = set(rate_limit_detail)
        self.rate_limit_ranking_after = rate_limit_ranking_after
        self.ranking_calls: List[str] = []
        self.detail_calls: List[str] = []
        self.package_list: List[str] = []
        self.closed = False

    async def fetch_package_list(self, url: str) -> List[str]:
        return list(self.package_list)

    async def fetch_ranking_signal(self, identity: str) -> int:
        self.ranking_calls.append(identity)
        if (self.rate_limit_ranking_after is not None
                and len(self.ranking_calls) > self.rate_limit_ranking_after):
            raise RateLimitedError(identity)
        if identity in self.missing:
            raise NotFoundError(identity)
        return self.stars.get(identity, 0)

    async def fetch_detail(self, identity: str) -> dict:
        self.detail_calls.append(identity)
        if identity in self.rate_limit_detail:
            raise RateLimitedError(identity)
        if identity in self.missing:
            raise NotFoundError(identity)
        if identity in self.failing:
            raise CatalogError(identity, "HTTP 500", status_code=500)
        return {
            'stars': self.stars.get(identity, 0),
            'description': f"{identity} description",
            'url': f"https://github.com/{identity}",
            'archived': False,
            'fork': False,
            'updated_at': "2024-01-01T00:00:00Z",
            'language': "Swift",
            'license': "MIT",
        }

    async def close(self):
        self.closed = True


class SleepRecorder:
    """Injectable replacement for ``asyncio.sleep``."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def docharbor_home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("DOCHARBOR_HOME", str(home))
    for variable in ("DOCHARBOR_CONFIG", "DOCHARBOR_USER_AGENT", "DOCHARBOR_LOG_LEVEL"):
        monkeypatch.delenv(variable, raising=False)
    return home

"""Render capability used by the crawl driver.

The crawler depends only on :class:`Renderer`: ``await render(url)`` returns
the final HTML or raises. :class:`HttpRenderer` is the default
implementation and fetches pages over plain HTTP with aiohttp. Pages that
need JavaScript should be served by a browser-backed renderer implementing
the same protocol.
"""

import asyncio
import logging
import random
from typing import Optional, Protocol

import aiohttp

from config.settings import USER_AGENT
from .errors import RenderError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class Renderer(Protocol):
    """Anything that can turn a URL into final HTML."""

    async def render(self, url: str) -> str:
        ...


class HttpRenderer:
    """Asynchronous HTTP renderer with retry and exponential backoff."""

    def __init__(self,
                 request_timeout: float = 30.0,
                 user_agent: str = USER_AGENT,
                 max_retries: int = 3,
                 retry_delay: float = 1.0,
                 max_retry_delay: float = 60.0,
                 logger: Optional[logging.Logger] = None):
        """Initialize renderer.

        Args:
            request_timeout: Request timeout in seconds
            user_agent: User agent string
            max_retries: Maximum number of retry attempts
            retry_delay: Base delay between retries (seconds)
            max_retry_delay: Maximum delay between retries (seconds)
            logger: Log sink
        """
        self.request_timeout = request_timeout
        self.user_agent = user_agent
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.logger = logger or logging.getLogger(__name__)
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self):
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers={'User-Agent': self.user_agent}
            )

    async def close(self):
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay with jitter."""
        base_delay = self.retry_delay * (2 ** attempt)
        jitter = random.uniform(0.1, 0.3) * base_delay
        return min(base_delay + jitter, self.max_retry_delay)

    async def render(self, url: str) -> str:
        """Fetch ``url`` and return its HTML.

        Raises:
            RenderError: after retries are exhausted, on a non-retryable
                HTTP status, or for non-HTML content.
        """
        await self._ensure_session()
        last_error = "unknown error"

        for attempt in range(self.max_retries + 1):
            try:
                async with self.session.get(url, allow_redirects=True) as response:
                    if response.status in RETRYABLE_STATUS_CODES and attempt < self.max_retries:
                        delay = self._calculate_retry_delay(attempt)
                        self.logger.warning(
                            f"Retryable status {response.status} for {url}, "
                            f"retrying in {delay:.2f}s (attempt {attempt + 1}/{self.max_retries + 1})"
                        )
                        await asyncio.sleep(delay)
                        continue

                    if response.status != 200:
                        raise RenderError(url, f"HTTP {response.status}")

                    content_type = response.headers.get('content-type', '')
                    if content_type and not content_type.startswith(('text/', 'application/xhtml')):
                        raise RenderError(url, f"non-HTML content type: {content_type}")

                    return await response.text()

            except (asyncio.TimeoutError, aiohttp.ClientConnectionError) as e:
                last_error = str(e) or e.__class__.__name__
                if attempt < self.max_retries:
                    delay = self._calculate_retry_delay(attempt)
                    self.logger.warning(
                        f"Error fetching {url}: {last_error}, retrying in {delay:.2f}s "
                        f"(attempt {attempt + 1}/{self.max_retries + 1})"
                    )
                    await asyncio.sleep(delay)
                    continue
                break
            except aiohttp.ClientError as e:
                raise RenderError(url, str(e)) from e

        raise RenderError(url, f"giving up after {self.max_retries + 1} attempts: {last_error}")

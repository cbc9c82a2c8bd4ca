"""Source document retrieval.

Fetches the raw free-for-dev README over HTTP with bounded retries.
"""

import asyncio
import logging
import random
import time
from typing import Optional

import aiohttp

from .errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_URL = "https://raw.githubusercontent.com/ripienaar/free-for-dev/refs/heads/master/README.md"
DEFAULT_USER_AGENT = "FreeTierCatalog/1.0"
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class ReadmeFetcher:
    """Asynchronous fetcher for the catalog source document."""

    def __init__(self,
                 url: str = DEFAULT_SOURCE_URL,
                 request_timeout: int = 30,
                 user_agent: str = DEFAULT_USER_AGENT,
                 max_retries: int = 3,
                 retry_delay: float = 1.0,
                 max_retry_delay: float = 60.0,
                 session: Optional[aiohttp.ClientSession] = None):
        """Initialize fetcher.

        Args:
            url: Location of the raw markdown document
            request_timeout: Request timeout in seconds
            user_agent: User agent string
            max_retries: Maximum number of retry attempts
            retry_delay: Base delay between retries (seconds)
            max_retry_delay: Maximum delay between retries (seconds)
            session: Optional externally managed client session
        """
        self.url = url
        self.request_timeout = request_timeout
        self.user_agent = user_agent
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": self.user_agent}
            )
            self._owns_session = True
        return self.session

    async def close(self):
        """Close the session if this fetcher created it."""
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Backoff for ``attempt``: doubling base delay plus up to 30% jitter, capped."""
        base_delay = self.retry_delay * (2 ** attempt)
        jitter = random.uniform(0.1, 0.3) * base_delay
        return min(base_delay + jitter, self.max_retry_delay)

    def _is_retryable_error(self, exception: Exception) -> bool:
        if isinstance(exception, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
            return True
        return isinstance(exception, (aiohttp.ClientConnectionError,
                                      aiohttp.ServerDisconnectedError))

    async def fetch_raw(self) -> str:
        """Fetch the raw markdown document.

        Raises:
            FetchError: On a non-success status or a transport failure
                that survived all retries.
        """
        session = await self._ensure_session()
        start_time = time.time()
        last_exception: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            try:
                logger.debug(f"Fetching {self.url} (attempt {attempt + 1}/{self.max_retries + 1})")
                async with session.get(self.url, allow_redirects=True) as response:
                    if response.status in RETRYABLE_STATUS_CODES and attempt < self.max_retries:
                        delay = self._calculate_retry_delay(attempt)
                        logger.warning(f"Retryable status {response.status} for {self.url}, retrying in {delay:.2f}s")
                        await asyncio.sleep(delay)
                        continue

                    if not 200 <= response.status < 300:
                        raise FetchError(
                            f"Failed to fetch content: HTTP {response.status} {response.reason or ''}".strip(),
                            url=self.url,
                            status_code=response.status,
                        )

                    try:
                        content = await response.text()
                    except UnicodeDecodeError as e:
                        raise FetchError(
                            f"Undecodable response body from {self.url}: {e}",
                            url=self.url,
                            status_code=response.status,
                        ) from e
                    logger.info(f"Fetched {len(content)} characters from {self.url} "
                                f"in {time.time() - start_time:.2f}s")
                    return content

            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_exception = e
                if attempt < self.max_retries and self._is_retryable_error(e):
                    delay = self._calculate_retry_delay(attempt)
                    logger.warning(f"Error fetching {self.url}: {e!r}, retrying in {delay:.2f}s "
                                   f"(attempt {attempt + 1}/{self.max_retries + 1})")
                    await asyncio.sleep(delay)
                    continue
                logger.warning(f"Giving up on {self.url} after {attempt + 1} attempts: {e!r}")
                break

        raise FetchError(f"Failed to fetch content from {self.url}: {last_exception!r}",
                         url=self.url) from last_exception

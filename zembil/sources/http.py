"""
A small async HTTP client shared by the registry sources: JSON and text
metadata calls plus streaming artifact downloads, all with retries.
"""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Optional

import aiofiles
import aiohttp

from zembil import __version__
from zembil.exceptions import NotFoundError, UpstreamError

log = logging.getLogger(__name__)

# Statuses worth retrying; everything else in 4xx is a definitive answer.
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


class HttpClient:
    """
    Async client wrapping a lazily created aiohttp session.

    Features:
    - Connection pooling
    - Retries with exponential backoff for transient failures
    - 404 mapped to NotFoundError, other failures to UpstreamError
    """

    CHUNK_SIZE = 262144  # 256 KB

    def __init__(
        self,
        timeout: int = 60,
        max_attempts: int = 3,
        base_delay: float = 1.5,
        max_connections: int = 8,
    ):
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_connections = max_connections
        self._session: Optional[aiohttp.ClientSession] = None

    async def _initialize_session(self) -> aiohttp.ClientSession:
        """Ensures an active aiohttp session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_connections * 2,
                limit_per_host=self.max_connections,
                ttl_dns_cache=300,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={
                    "User-Agent": f"zembil/{__version__}",
                    "Accept-Encoding": "gzip, deflate",
                },
                timeout=aiohttp.ClientTimeout(
                    total=None, sock_connect=15, sock_read=self.timeout
                ),
            )
        return self._session

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            log.debug("HTTP session closed.")

    async def _backoff(self, attempt: int) -> None:
        if attempt < self.max_attempts:
            await asyncio.sleep(self.base_delay * (2 ** (attempt - 1)))

    async def get_json(self, url: str) -> Any:
        """Fetches and decodes a JSON document."""
        return await self._fetch(url, lambda r: r.json(content_type=None))

    async def get_text(self, url: str) -> str:
        """Fetches a text document such as a POM or a metadata XML file."""
        return await self._fetch(url, lambda r: r.text())

    async def exists(self, url: str) -> bool:
        """True if a HEAD request for the URL succeeds. Network failures count as absent."""
        session = await self._initialize_session()
        try:
            async with session.head(url, allow_redirects=True) as response:
                return response.status < 400
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.debug(f"HEAD {url} failed: {e}")
            return False

    async def _fetch(
        self,
        url: str,
        reader: Callable[[aiohttp.ClientResponse], Awaitable[Any]],
    ) -> Any:
        """
        GETs a URL and decodes the body with `reader`, retrying transient failures.

        Raises:
            NotFoundError: If the server answers 404.
            UpstreamError: If the request keeps failing or the body can't be decoded.
        """
        session = await self._initialize_session()
        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                async with session.get(url, allow_redirects=True) as response:
                    if response.status == 404:
                        raise NotFoundError(f"Not found: {url}")
                    if response.status in RETRYABLE_STATUSES:
                        last_error = UpstreamError(
                            f"HTTP {response.status} from {url}"
                        )
                    else:
                        response.raise_for_status()
                        return await reader(response)
            except ValueError as e:
                raise UpstreamError(f"Undecodable response from {url}: {e}") from e
            except aiohttp.ClientResponseError as e:
                raise UpstreamError(f"HTTP {e.status} from {url}") from e
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e

            log.debug(
                f"Request attempt {attempt}/{self.max_attempts} for {url} failed: "
                f"{last_error}"
            )
            await self._backoff(attempt)

        raise UpstreamError(
            f"Request to {url} failed after {self.max_attempts} attempts: {last_error}"
        ) from last_error

    async def download_file(self, url: str, destination_path: Path) -> int:
        """
        Streams a URL to a file, retrying transient failures.

        The file is only present at `destination_path` once fully written.

        Returns:
            The number of bytes written.
        """
        session = await self._initialize_session()
        partial_path = destination_path.with_name(destination_path.name + ".partial")
        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                async with session.get(url, allow_redirects=True) as response:
                    if response.status == 404:
                        raise NotFoundError(f"Artifact not found: {url}")
                    response.raise_for_status()

                    bytes_downloaded = 0
                    async with aiofiles.open(partial_path, "wb") as f:
                        async for chunk in response.content.iter_chunked(
                            self.CHUNK_SIZE
                        ):
                            await f.write(chunk)
                            bytes_downloaded += len(chunk)

                await asyncio.to_thread(os.replace, partial_path, destination_path)
                log.debug(f"Downloaded {bytes_downloaded} bytes from {url}")
                return bytes_downloaded
            except aiohttp.ClientResponseError as e:
                last_error = e
                if e.status not in RETRYABLE_STATUSES:
                    break
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
            finally:
                partial_path.unlink(missing_ok=True)

            log.debug(
                f"Download attempt {attempt}/{self.max_attempts} for "
                f"'{destination_path.name}' failed: {last_error}. Retrying..."
            )
            await self._backoff(attempt)

        raise UpstreamError(f"Download of {url} failed: {last_error}") from last_error

"""
File downloader for HashSync.

Streams one resource at a time to disk with progress reporting.
Uses asyncio + aiohttp; retry policy lives in the orchestrator, the engine
only knows how to build a cache-busting request for a retry attempt.
"""

import asyncio
import logging
import os
import ssl
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import aiohttp
import certifi

from ..config import SyncConfig
from ..core.constants import CACHE_BUST_LENGTH, CACHE_BUST_PARAM
from ..core.files import ensure_parent_dir
from ..core.formatting import format_size, random_string
from ..core.progress import SyncProgress
from ..errors import FileSystemError, HttpStatusError, NetworkError

logger = logging.getLogger(__name__)


def get_certifi_path() -> str:
    """Get path to certifi CA bundle, handling PyInstaller bundles."""
    if getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS'):
        bundled_cert = os.path.join(sys._MEIPASS, 'certifi', 'cacert.pem')
        if os.path.exists(bundled_cert):
            return bundled_cert
    return certifi.where()


def with_query_param(url: str, name: str, value: str) -> str:
    """Add (or replace) one query parameter, keeping the rest of the URL."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != name]
    query.append((name, value))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


@dataclass(frozen=True)
class DownloadRequest:
    """
    The URL actually requested for one attempt.

    The first attempt uses the URL as-is; later attempts carry a random
    query parameter so intermediate caches cannot serve the same bad bytes.
    """
    url: str
    attempt: int = 1

    @property
    def cache_busted(self) -> bool:
        return self.attempt > 1

    @property
    def request_url(self) -> str:
        if not self.cache_busted:
            return self.url
        return with_query_param(self.url, CACHE_BUST_PARAM, random_string(CACHE_BUST_LENGTH))


class DownloadEngine:
    """
    Async single-file downloader.

    Use as an async context manager so one aiohttp session (and connection
    pool) is shared by every download of a sync pass:

        async with DownloadEngine(config, progress) as engine:
            await engine.fetch(url, path, size)
    """

    def __init__(
        self,
        config: SyncConfig,
        progress: Optional[SyncProgress] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config
        self.progress = progress
        self.chunk_size = config.chunk_size
        self.timeout = aiohttp.ClientTimeout(
            connect=config.connect_timeout,
            sock_read=config.read_timeout,
        )
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "DownloadEngine":
        if self._session is None:
            ssl_context = ssl.create_default_context(cafile=get_certifi_path())
            connector = aiohttp.TCPConnector(limit=4, ttl_dns_cache=300, ssl=ssl_context)
            self._session = aiohttp.ClientSession(
                timeout=self.timeout,
                connector=connector,
                headers={"User-Agent": self.config.user_agent},
            )
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("DownloadEngine must be entered with 'async with' before use")
        return self._session

    async def fetch(
        self,
        url: str,
        destination: Path,
        expected_size: int = 0,
        resume_offset: int = 0,
        attempt: int = 1,
        display_name: Optional[str] = None,
    ) -> int:
        """
        Download url to destination, truncating anything already there.

        Args:
            url: Resolved download URL
            destination: File to write
            expected_size: Manifest size, used when the server sends no length
            resume_offset: Bytes already counted in the pass-wide total
            attempt: 1-based attempt number; >1 adds a cache-busting parameter
            display_name: Name shown in progress output

        Returns:
            Number of bytes written.

        Raises:
            HttpStatusError: non-2xx response (no body is written)
            NetworkError: connection, timeout or payload failure
            FileSystemError: destination could not be created or written
        """
        request = DownloadRequest(url, attempt)
        name = display_name or destination.name
        ensure_parent_dir(destination)

        if self.progress:
            self.progress.start_file(name, expected_size, resume_offset)

        request_url = request.request_url
        logger.debug("Starting download (attempt %d): %s -> %s", attempt, request_url, destination)

        try:
            async with self.session.get(request_url, allow_redirects=True) as response:
                if not 200 <= response.status < 300:
                    raise HttpStatusError(url, response.status)

                total_size = response.content_length or expected_size
                if self.progress:
                    self.progress.set_file_total(total_size)
                logger.info("Downloading %s (%s)", name, format_size(total_size))

                return await self._write_response(response, destination)

        except asyncio.TimeoutError as e:
            raise NetworkError(url, "download", "timed out") from e
        except aiohttp.ClientError as e:
            raise NetworkError(url, "download", str(e) or type(e).__name__) from e

    async def _write_response(self, response: aiohttp.ClientResponse, destination: Path) -> int:
        """Stream the response body to destination in chunks."""
        downloaded_bytes = 0
        try:
            f = open(destination, "wb")
        except OSError as e:
            raise FileSystemError(destination, "file creation", str(e)) from e

        with f:
            async for chunk in response.content.iter_chunked(self.chunk_size):
                if not chunk:
                    continue
                try:
                    f.write(chunk)
                except OSError as e:
                    raise FileSystemError(destination, "write", str(e)) from e
                downloaded_bytes += len(chunk)
                if self.progress:
                    self.progress.set_file_position(downloaded_bytes)

        return downloaded_bytes

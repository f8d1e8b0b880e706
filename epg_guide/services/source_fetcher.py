"""
Source Fetcher

Retrieves EPG sources over HTTP and stores them, decompressed, on local disk.
"""
import logging
from pathlib import Path
from typing import Protocol

import httpx

from epg_guide.services.fetch_types import FetchedSource
from epg_guide.utils.file_operations import download_source, probe_last_modified


logger = logging.getLogger(__name__)


class SourceFetcher(Protocol):
    """Anything able to materialize a source URL as a decompressed local file."""

    async def fetch(self, url: str, destination: Path) -> FetchedSource:
        ...

    async def last_modified(self, url: str) -> str | None:
        ...


class HttpSourceFetcher:
    """
    Fetches sources with httpx.

    Gzip payloads are inflated while streaming. There is no retry loop here:
    a failed fetch aborts the refresh and the next scheduled run tries again.
    """

    def __init__(self, timeout: float = 300.0, transport: httpx.AsyncBaseTransport | None = None):
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    async def fetch(self, url: str, destination: Path) -> FetchedSource:
        async with self._client() as client:
            written, last_modified = await download_source(client, url, destination)
        return FetchedSource(path=destination, bytes_written=written, last_modified=last_modified)

    async def last_modified(self, url: str) -> str | None:
        async with self._client() as client:
            return await probe_last_modified(client, url)

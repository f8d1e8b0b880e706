"""
File operation utilities

This module handles streaming source download, decompression and cleanup.
"""
import logging
import shutil
import zlib
from pathlib import Path

import aiofiles
import httpx

from epg_guide.services.errors import DecompressFailure, FetchFailure
from epg_guide.utils.url_helpers import sanitize_url_for_logging


logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


class _StreamInflater:
    """Incremental gzip inflater that passes plain payloads through untouched."""

    def __init__(self, url: str):
        self._url = url
        self._head = b""
        self._decompressor = None
        self._decided = False

    @property
    def compressed(self) -> bool:
        return self._decompressor is not None

    def feed(self, chunk: bytes) -> bytes:
        if not self._decided:
            self._head += chunk
            if len(self._head) < len(GZIP_MAGIC):
                return b""
            chunk, self._head = self._head, b""
            self._decided = True
            if chunk.startswith(GZIP_MAGIC):
                self._decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)

        if self._decompressor is None:
            return chunk
        try:
            return self._inflate(chunk)
        except zlib.error as e:
            raise DecompressFailure(self._url, str(e)) from e

    def _inflate(self, data: bytes) -> bytes:
        out = []
        while data:
            if self._decompressor.eof:
                # Concatenated gzip members
                self._decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
            out.append(self._decompressor.decompress(data))
            data = self._decompressor.unused_data if self._decompressor.eof else b""
        return b"".join(out)

    def finish(self) -> bytes:
        if not self._decided:
            # Payload shorter than the magic number
            self._decided = True
            return self._head
        if self._decompressor is None:
            return b""
        try:
            tail = self._decompressor.flush()
        except zlib.error as e:
            raise DecompressFailure(self._url, str(e)) from e
        if not self._decompressor.eof:
            raise DecompressFailure(self._url, "gzip stream ended unexpectedly")
        return tail


async def download_source(
    client: httpx.AsyncClient,
    url: str,
    destination: Path
) -> tuple[int, str | None]:
    """
    Stream a source to disk, inflating gzip payloads on the fly

    Args:
        client: HTTP client to use (carries the timeout configuration)
        url: URL to download from
        destination: File to write the decompressed payload to

    Returns:
        Tuple of (decompressed bytes written, Last-Modified header or None)

    Raises:
        FetchFailure: On HTTP status errors, network errors and timeouts
        DecompressFailure: If a gzip payload is corrupt or truncated
    """
    logger.info(f"Downloading file from {sanitize_url_for_logging(url)}...")
    inflater = _StreamInflater(url)
    written = 0

    try:
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            last_modified = response.headers.get("last-modified")

            async with aiofiles.open(destination, "wb") as f:
                async for chunk in response.aiter_bytes():
                    data = inflater.feed(chunk)
                    if data:
                        await f.write(data)
                        written += len(data)
                tail = inflater.finish()
                if tail:
                    await f.write(tail)
                    written += len(tail)

    except httpx.HTTPStatusError as e:
        logger.error(f"HTTP {e.response.status_code} while downloading {sanitize_url_for_logging(url)}")
        raise FetchFailure(url, f"HTTP {e.response.status_code}") from e
    except httpx.TimeoutException as e:
        raise FetchFailure(url, f"timeout ({type(e).__name__})") from e
    except httpx.HTTPError as e:
        raise FetchFailure(url, f"{type(e).__name__}: {e}") from e

    logger.info(
        f"Downloaded {written / (1024 * 1024):.2f} MB to {destination} "
        f"({'gzip' if inflater.compressed else 'plain'} payload)"
    )
    return written, last_modified


async def probe_last_modified(client: httpx.AsyncClient, url: str) -> str | None:
    """
    Read the Last-Modified header of a source with a HEAD request

    Raises:
        FetchFailure: On HTTP status errors, network errors and timeouts
    """
    try:
        response = await client.head(url, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise FetchFailure(url, f"HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        raise FetchFailure(url, f"{type(e).__name__}: {e}") from e
    return response.headers.get("last-modified")


def cleanup_temp_file(file_path: Path) -> bool:
    """
    Safely delete a temporary file

    Args:
        file_path: Path to file to delete

    Returns:
        True if deleted successfully, False otherwise
    """
    if not file_path or not file_path.exists():
        return False

    try:
        file_path.unlink()
        logger.debug(f"Cleaned up temporary file: {file_path}")
        return True
    except (OSError, PermissionError) as e:
        logger.warning(f"Failed to delete temporary file {file_path}: {e}")
        return False


def cleanup_temp_dir(dir_path: Path) -> bool:
    """
    Safely delete a temporary directory and everything in it

    Returns:
        True if deleted successfully, False otherwise
    """
    if not dir_path or not dir_path.exists():
        return False

    try:
        shutil.rmtree(dir_path)
        logger.debug(f"Cleaned up temporary directory: {dir_path}")
        return True
    except (OSError, PermissionError) as e:
        logger.warning(f"Failed to delete temporary directory {dir_path}: {e}")
        return False


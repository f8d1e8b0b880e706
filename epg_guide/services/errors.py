"""
Error types raised by the EPG ingestion pipeline and the query layer.
"""
from epg_guide.utils.url_helpers import sanitize_url_for_logging


def _describe(url: str, reason: str) -> tuple[str, str]:
    safe_url = sanitize_url_for_logging(url)
    return safe_url, reason.replace(url, safe_url) if url else reason


class EPGPipelineError(Exception):
    """Base class for refresh pipeline failures."""


class FetchFailure(EPGPipelineError):
    """Raised when a source cannot be retrieved (network, HTTP status, timeout)."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        safe_url, safe_reason = _describe(url, reason)
        super().__init__(f"Failed to fetch {safe_url}: {safe_reason}")


class DecompressFailure(EPGPipelineError):
    """Raised when a gzip payload is corrupt or truncated."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        safe_url, safe_reason = _describe(url, reason)
        super().__init__(f"Failed to decompress {safe_url}: {safe_reason}")


class SourceTooSmall(EPGPipelineError):
    """Raised when a source contributes less content than the configured minimum.

    The merge pipeline treats this as a warning and skips the source.
    """

    def __init__(self, bytes_written: int, min_bytes: int):
        self.bytes_written = bytes_written
        self.min_bytes = min_bytes
        super().__init__(
            f"Source content too small: {bytes_written} bytes (minimum {min_bytes})"
        )


class SourceMergeError(EPGPipelineError):
    """Raised when no configured source produced usable content."""


class IndexNotReady(Exception):
    """Raised when the schedule index is queried before the first successful refresh."""


__all__ = [
    "EPGPipelineError",
    "FetchFailure",
    "DecompressFailure",
    "SourceTooSmall",
    "SourceMergeError",
    "IndexNotReady",
]

"""
Source Merger

Fetches every configured source in order, concatenates their bodies into one
staged XMLTV document, then parses that document into a ScheduleIndex.
"""
from __future__ import annotations

import asyncio
import logging
import re
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterable, Sequence

from epg_guide.services.errors import FetchFailure, SourceMergeError, SourceTooSmall
from epg_guide.services.fetch_types import ParseResult, SourceSummary
from epg_guide.services.schedule_index import ScheduleIndex
from epg_guide.services.source_fetcher import SourceFetcher
from epg_guide.services.xmltv_line_parser import is_envelope_line, parse_xmltv_file
from epg_guide.utils.file_operations import cleanup_temp_dir, cleanup_temp_file
from epg_guide.utils.url_helpers import sanitize_url_for_logging


logger = logging.getLogger(__name__)

MERGED_EPG_FILE = "merged_epg.xml"
MERGED_HEADER = b'<?xml version="1.0" encoding="UTF-8"?>\n<tv>\n'
MERGED_FOOTER = b"</tv>\n"

_COMPLETE_TRAILER = re.compile(r"(</[A-Za-z_][\w.:-]*\s*>|/>)$")


@dataclass(slots=True)
class FragmentStats:
    bytes_written: int = 0
    lines_written: int = 0
    truncated: bool = False


@dataclass(slots=True)
class MergeOutcome:
    index: ScheduleIndex
    sources: list[SourceSummary]
    parse_result: ParseResult


def write_fragment(lines: Iterable[str], out: BinaryIO) -> FragmentStats:
    """
    Copy one source's body into the merged document.

    Declarations, DOCTYPE, blank lines and the <tv> wrapper are dropped so that
    fragments concatenate into a single document. The last body line is held
    back and dropped if it does not end in a complete close tag, so a source
    cut off mid-element does not leave half a line in the merged file.

    Args:
        lines: Lines of one decompressed source
        out: Merged document opened in binary append mode

    Returns:
        FragmentStats for the lines actually written
    """
    stats = FragmentStats()
    pending: str | None = None

    for raw in lines:
        line = raw.rstrip("\r\n")
        if is_envelope_line(line.strip()):
            continue
        if pending is not None:
            stats.bytes_written += out.write(pending.encode("utf-8") + b"\n")
            stats.lines_written += 1
        pending = line

    if pending is not None:
        if _COMPLETE_TRAILER.search(pending.strip()):
            stats.bytes_written += out.write(pending.encode("utf-8") + b"\n")
            stats.lines_written += 1
        else:
            stats.truncated = True
            logger.warning("Dropping incomplete trailing line: %.80s", pending.strip())

    return stats


def append_staged_source(staged: Path, merged: Path, min_bytes: int) -> FragmentStats:
    """
    Append a staged source to the merged document.

    Raises:
        SourceTooSmall: If the source contributed fewer than min_bytes; the
            merged document is restored to its previous size first
    """
    with open(staged, encoding="utf-8", errors="replace") as src, open(merged, "ab") as out:
        offset = out.tell()
        stats = write_fragment(src, out)
        if stats.bytes_written < min_bytes:
            out.truncate(offset)
            raise SourceTooSmall(stats.bytes_written, min_bytes)
    return stats


class SourceMergePipeline:
    """Fetch, concatenate and parse a fixed list of sources for one refresh."""

    def __init__(
        self,
        sources: Sequence[str],
        fetcher: SourceFetcher,
        *,
        min_source_bytes: int = 1024,
        fetch_timeout_seconds: float = 300.0,
        parse_timeout_seconds: int | None = None,
        staging_root: Path | str | None = None
    ) -> None:
        self.sources = [source for source in sources if source]
        self.total_sources = len(self.sources)
        self._fetcher = fetcher
        self._min_source_bytes = min_source_bytes
        self._fetch_timeout = fetch_timeout_seconds
        self._parse_timeout = parse_timeout_seconds
        self._staging_root = Path(staging_root) if staging_root else None

    async def run(self) -> MergeOutcome:
        """
        Run the full merge.

        The staging directory is removed on every exit path, including
        cancellation, so nothing is left behind and nothing is published.

        Raises:
            FetchFailure: If any source cannot be fetched (aborts the merge)
            DecompressFailure: If any source payload is corrupt
            SourceMergeError: If no source produced usable content
            ValueError: If parsing times out
        """
        if self._staging_root:
            self._staging_root.mkdir(parents=True, exist_ok=True)
        staging_dir = Path(tempfile.mkdtemp(prefix="epg-", dir=self._staging_root))
        merged_path = staging_dir / MERGED_EPG_FILE
        logger.debug("Staging directory: %s", staging_dir)

        try:
            merged_path.write_bytes(MERGED_HEADER)
            summaries = await self._merge_sources(staging_dir, merged_path)

            merged_count = sum(1 for summary in summaries if summary.status == "merged")
            if not merged_count:
                raise SourceMergeError(
                    f"None of {self.total_sources} EPG source(s) produced usable content"
                )

            with open(merged_path, "ab") as out:
                out.write(MERGED_FOOTER)
            logger.info(
                "Merged %s/%s sources into %s (%.2f MB)",
                merged_count,
                self.total_sources,
                merged_path,
                merged_path.stat().st_size / 1024 / 1024,
            )

            parse_result = await self._parse_merged(merged_path)
            index = ScheduleIndex.build(parse_result, summaries)
            return MergeOutcome(index=index, sources=summaries, parse_result=parse_result)
        finally:
            cleanup_temp_dir(staging_dir)

    async def _merge_sources(self, staging_dir: Path, merged_path: Path) -> list[SourceSummary]:
        summaries: list[SourceSummary] = []
        loop = asyncio.get_running_loop()

        # Strictly sequential: one staged source on disk at a time
        for index, source_url in enumerate(self.sources, start=1):
            sanitized_url = sanitize_url_for_logging(source_url)
            started_at = datetime.now(timezone.utc)
            staged_path = staging_dir / f"epg_source_{index}.xml"
            logger.info(
                "[Source %s/%s] Starting download: %s",
                index,
                self.total_sources,
                sanitized_url,
            )

            try:
                try:
                    fetched = await asyncio.wait_for(
                        self._fetcher.fetch(source_url, staged_path),
                        timeout=self._fetch_timeout,
                    )
                except asyncio.TimeoutError as exc:
                    raise FetchFailure(
                        source_url, f"timed out after {self._fetch_timeout}s"
                    ) from exc

                logger.info(
                    "[Source %s/%s] Fetched %.2f MB, appending to merged document",
                    index,
                    self.total_sources,
                    fetched.bytes_written / 1024 / 1024,
                )

                try:
                    stats = await loop.run_in_executor(
                        None,
                        append_staged_source,
                        fetched.path,
                        merged_path,
                        self._min_source_bytes,
                    )
                except SourceTooSmall as exc:
                    logger.warning(
                        "[Source %s/%s] Skipping %s: %s",
                        index,
                        self.total_sources,
                        sanitized_url,
                        exc,
                    )
                    summaries.append(SourceSummary(
                        index=index,
                        sanitized_url=sanitized_url,
                        started_at=started_at,
                        completed_at=datetime.now(timezone.utc),
                        status="skipped",
                        bytes_fetched=fetched.bytes_written,
                        last_modified=fetched.last_modified,
                        warning=str(exc),
                    ))
                    continue
            finally:
                cleanup_temp_file(staged_path)

            if stats.truncated:
                logger.warning(
                    "[Source %s/%s] Source ended mid-element; trailing line dropped",
                    index,
                    self.total_sources,
                )
            summaries.append(SourceSummary(
                index=index,
                sanitized_url=sanitized_url,
                started_at=started_at,
                completed_at=datetime.now(timezone.utc),
                status="merged",
                bytes_fetched=fetched.bytes_written,
                bytes_merged=stats.bytes_written,
                truncated=stats.truncated,
                last_modified=fetched.last_modified,
            ))
            logger.info(
                "[Source %s/%s] Completed: %s lines merged",
                index,
                self.total_sources,
                stats.lines_written,
            )

        return summaries

    async def _parse_merged(self, merged_path: Path) -> ParseResult:
        """
        Parse the merged document in a worker thread with timeout protection.

        On timeout or cancellation the worker is signalled to stop at its next
        line, so it does not keep reading once the refresh has given up.

        Raises:
            ValueError: If parsing exceeds the configured timeout
        """
        effective_timeout = self._parse_timeout if self._parse_timeout and self._parse_timeout > 0 else None
        timeout_display = f"{effective_timeout}s" if effective_timeout else "disabled"
        logger.debug("Offloading XMLTV parsing to thread pool executor (timeout: %s)...", timeout_display)

        loop = asyncio.get_running_loop()
        cancel_event = threading.Event()
        parse_task = loop.run_in_executor(None, parse_xmltv_file, merged_path, cancel_event)
        try:
            if effective_timeout:
                return await asyncio.wait_for(parse_task, timeout=effective_timeout)
            return await parse_task
        except asyncio.CancelledError:
            cancel_event.set()
            raise
        except asyncio.TimeoutError:
            cancel_event.set()
            logger.error("XMLTV parsing timed out after %s for %s", timeout_display, merged_path)
            raise ValueError("XMLTV parsing timed out - file may be too large or malformed")

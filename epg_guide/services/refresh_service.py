"""
Refresh Coordination

Runs the fetch-merge-parse-publish cycle with concurrency protection and
publishes the resulting index. A failed or cancelled refresh never replaces
the last good index.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Sequence

from epg_guide.services.errors import EPGPipelineError, FetchFailure
from epg_guide.services.schedule_index import ScheduleIndexStore
from epg_guide.services.source_fetcher import SourceFetcher
from epg_guide.services.source_merger import MergeOutcome, SourceMergePipeline
from epg_guide.utils.url_helpers import sanitize_url_for_logging


logger = logging.getLogger(__name__)

PipelineFactory = Callable[[Sequence[str], SourceFetcher], SourceMergePipeline]


class RefreshCoordinator:
    """
    Coordinates refresh operations to prevent concurrent executions.

    Uses an internal asyncio.Lock so that only one refresh runs at a time; a
    second request made while one is in flight is skipped rather than queued.
    """

    def __init__(
        self,
        store: ScheduleIndexStore,
        sources: Sequence[str],
        fetcher: SourceFetcher,
        pipeline_factory: PipelineFactory
    ):
        self._store = store
        self._sources = [source for source in sources if source]
        self._fetcher = fetcher
        self._pipeline_factory = pipeline_factory
        self._refresh_lock = asyncio.Lock()
        self._current_task: asyncio.Task | None = None
        self._source_versions: dict[str, str | None] = {}
        self.last_result: dict | None = None

    @property
    def store(self) -> ScheduleIndexStore:
        return self._store

    def is_refreshing(self) -> bool:
        """
        Check if a refresh operation is currently in progress.

        Returns:
            True if refresh is running, False otherwise
        """
        return self._refresh_lock.locked()

    async def refresh(self) -> dict:
        """
        Rebuild and publish the schedule index from all sources.

        Returns:
            Dictionary with refresh statistics, or an error/skip message
        """
        if self._refresh_lock.locked():
            logger.warning("EPG refresh already in progress, skipping this request")
            return {
                "status": "skipped",
                "message": "EPG refresh operation already in progress",
            }

        async with self._refresh_lock:
            logger.info("EPG refresh started at %s", datetime.now(timezone.utc).isoformat())

            if not self._sources:
                logger.warning("EPG_SOURCES not configured - refresh aborted")
                return {"error": "EPG_SOURCES not configured"}

            self._current_task = asyncio.current_task()
            pipeline = self._pipeline_factory(self._sources, self._fetcher)
            try:
                outcome = await pipeline.run()
            except EPGPipelineError as exc:
                logger.error("EPG refresh failed, keeping previous index: %s", exc)
                return self._record_failure(exc)
            except Exception as exc:  # Catch-all so the scheduler and API keep running
                logger.error("Unexpected error during EPG refresh: %s", exc, exc_info=True)
                return self._record_failure(exc)
            finally:
                self._current_task = None

            self._store.publish(outcome.index)
            self._source_versions = {
                source_url: summary.last_modified
                for source_url, summary in zip(self._sources, outcome.sources)
            }
            self.last_result = self._build_result(outcome)
            logger.info("EPG refresh completed successfully")
            return self.last_result

    async def check_and_refresh(self) -> dict:
        """
        Refresh only if a source changed since the last successful refresh.

        A source counts as changed when its Last-Modified header differs from
        the one recorded at the last refresh, or when it is missing or cannot
        be probed.
        """
        if not self._store.is_ready:
            logger.info("No schedule index published yet - running full refresh")
            return await self.refresh()

        for source_url in self._sources:
            sanitized_url = sanitize_url_for_logging(source_url)
            try:
                current = await self._fetcher.last_modified(source_url)
            except FetchFailure as exc:
                logger.warning("Could not probe %s for updates (%s) - refreshing", sanitized_url, exc)
                return await self.refresh()

            recorded = self._source_versions.get(source_url)
            if current is None or recorded is None or current != recorded:
                logger.info(
                    "Source %s changed (Last-Modified %s -> %s) - refreshing",
                    sanitized_url,
                    recorded,
                    current,
                )
                return await self.refresh()

        logger.info("All %s EPG source(s) unchanged - skipping refresh", len(self._sources))
        return {"status": "unchanged", "sources_checked": len(self._sources)}

    async def shutdown(self) -> None:
        """Cancel an in-flight refresh; its staging files are removed on unwind."""
        task = self._current_task
        if task is None or task.done() or task is asyncio.current_task():
            return

        logger.info("Cancelling in-flight EPG refresh")
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.info("In-flight EPG refresh cancelled")
        except Exception as exc:
            logger.error("Error while cancelling EPG refresh: %s", exc, exc_info=True)

    def _record_failure(self, exc: BaseException) -> dict:
        self.last_result = {
            "error": str(exc),
            "error_type": type(exc).__name__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "index_retained": self._store.is_ready,
        }
        return self.last_result

    def _build_result(self, outcome: MergeOutcome) -> dict:
        index = outcome.index
        merged = sum(1 for summary in outcome.sources if summary.status == "merged")
        return {
            "status": "success",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "sources_processed": len(outcome.sources),
            "sources_merged": merged,
            "sources_skipped": len(outcome.sources) - merged,
            "channels": index.channel_count,
            "programmes": index.programme_count,
            "lines_processed": outcome.parse_result.lines_processed,
            "channels_dropped": index.channels_dropped,
            "programmes_dropped": index.programmes_dropped,
            "orphans_dropped": index.orphans_dropped,
            "duplicates_dropped": index.duplicates_dropped,
            "built_at": index.built_at.isoformat(),
            "source_details": [summary.to_dict() for summary in outcome.sources],
        }

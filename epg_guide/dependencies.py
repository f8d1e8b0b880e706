"""
Dependency Providers

Owns the process-wide schedule index store and refresh coordinator and hands
them to FastAPI routes and the scheduler. Tests replace them through
app.dependency_overrides or reset_dependencies().
"""
import logging

from epg_guide.config import settings
from epg_guide.services.refresh_service import RefreshCoordinator
from epg_guide.services.schedule_index import ScheduleIndexStore
from epg_guide.services.source_fetcher import HttpSourceFetcher, SourceFetcher
from epg_guide.services.source_merger import SourceMergePipeline


logger = logging.getLogger(__name__)

_index_store: ScheduleIndexStore | None = None
_refresh_coordinator: RefreshCoordinator | None = None


def build_pipeline(sources, fetcher: SourceFetcher) -> SourceMergePipeline:
    """Create a merge pipeline configured from settings."""
    return SourceMergePipeline(
        sources,
        fetcher,
        min_source_bytes=settings.epg_min_source_bytes,
        fetch_timeout_seconds=settings.epg_fetch_timeout_sec,
        parse_timeout_seconds=settings.epg_parse_timeout_sec,
        staging_root=settings.epg_staging_dir,
    )


def get_index_store() -> ScheduleIndexStore:
    """
    Get the global schedule index store.

    Returns:
        The global ScheduleIndexStore
    """
    global _index_store
    if _index_store is None:
        _index_store = ScheduleIndexStore()
    return _index_store


def get_refresh_coordinator() -> RefreshCoordinator:
    """
    Get or create the global refresh coordinator singleton.

    Returns:
        The global RefreshCoordinator, publishing into get_index_store()
    """
    global _refresh_coordinator
    if _refresh_coordinator is None:
        _refresh_coordinator = RefreshCoordinator(
            get_index_store(),
            settings.epg_sources,
            HttpSourceFetcher(timeout=settings.epg_fetch_timeout_sec),
            build_pipeline,
        )
        logger.debug("Created refresh coordinator for %s source(s)", len(settings.epg_sources))
    return _refresh_coordinator


def reset_dependencies() -> None:
    """
    Reset the index store and refresh coordinator (mainly for testing).

    WARNING: Only use this in test environments!
    """
    global _index_store, _refresh_coordinator
    _index_store = None
    _refresh_coordinator = None

from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Query
import logging

from epg_guide.dependencies import get_index_store, get_refresh_coordinator
from epg_guide.schemas import ChannelTimelineResponse
from epg_guide.services.errors import IndexNotReady
from epg_guide.services.guide_query_service import get_guide_timelines
from epg_guide.services.refresh_service import RefreshCoordinator
from epg_guide.services.schedule_index import ScheduleIndexStore
from epg_guide.services.scheduler_service import epg_scheduler
from epg_guide.utils.timezone import DateFormatError, parse_iso8601_to_utc


logger = logging.getLogger(__name__)

main_router = APIRouter()
guide_router = APIRouter(prefix="/v2/guide")

MAX_WINDOW_MINUTES = 60 * 24 * 366 * 10  # Ten years


@main_router.get("/")
async def root() -> dict:
    """Root endpoint with service information"""
    next_run = epg_scheduler.get_next_run_time()

    return {
        "service": "EPG Guide Service",
        "version": "0.1.0",
        "next_scheduled_refresh": next_run.isoformat() if next_run else None,
        "endpoints": {
            "refresh": "/refresh - Manually trigger EPG refresh (POST)",
            "timelines": "/v2/guide/timelines - Programmes per channel (query params: start, channelIds, duration)",
            "health": "/health - Health check"
        }
    }


@main_router.get("/health")
async def health_check(
    store: Annotated[ScheduleIndexStore, Depends(get_index_store)]
) -> dict:
    """Health check endpoint"""
    next_run = epg_scheduler.get_next_run_time()
    index = store.snapshot()
    return {
        "status": "ok",
        "scheduler_running": epg_scheduler.scheduler.running if epg_scheduler.scheduler else False,
        "next_refresh": next_run.isoformat() if next_run else None,
        "index_ready": index is not None,
        "index_built_at": index.built_at.isoformat() if index else None,
        "channels": index.channel_count if index else 0,
        "programmes": index.programme_count if index else 0,
    }


@main_router.post("/refresh")
async def trigger_refresh(
    coordinator: Annotated[RefreshCoordinator, Depends(get_refresh_coordinator)]
) -> dict:
    """
    Manually trigger EPG refresh from all sources

    This will download, merge and parse EPG data, then publish the new index
    """
    logger.info("Manual EPG refresh triggered via API")
    result = await coordinator.refresh()

    if "error" in result:
        raise HTTPException(status_code=500, detail=result["error"])

    return result


@guide_router.get("/timelines", response_model=list[ChannelTimelineResponse])
async def get_timelines(
    start: Annotated[str, Query(description="ISO8601 datetime, e.g. 2024-01-01T10:30:00Z")],
    channel_ids: Annotated[str, Query(alias="channelIds", min_length=1, description="Comma-separated channel ids")],
    duration: Annotated[int, Query(ge=0, le=MAX_WINDOW_MINUTES, description="Window length in minutes")],
    store: Annotated[ScheduleIndexStore, Depends(get_index_store)]
) -> list[ChannelTimelineResponse]:
    """
    Get programmes overlapping [start, start + duration) for a set of channels

    Args:
        start: ISO8601 start of the window
        channelIds: Comma-separated channel ids; unknown ids are ignored
        duration: Window length in minutes

    Returns:
        One entry per matching channel with its overlapping programmes
    """
    try:
        window_start = parse_iso8601_to_utc(start)
    except DateFormatError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        return get_guide_timelines(store, window_start, channel_ids, duration)
    except IndexNotReady as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except OverflowError as exc:
        # Window end falls outside the representable datetime range
        raise HTTPException(status_code=400, detail="Requested window is out of range") from exc

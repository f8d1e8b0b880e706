"""
Guide Query Service

Read-only lookups against the published schedule index.
"""
from collections.abc import Collection
from datetime import datetime, timedelta
import logging

from epg_guide.schemas import ChannelTimelineResponse, ProgrammeResponse
from epg_guide.services.errors import IndexNotReady
from epg_guide.services.fetch_types import ProgrammeRecord
from epg_guide.services.schedule_index import ChannelTimeline, ScheduleIndex, ScheduleIndexStore
from epg_guide.utils.timezone import parse_canonical_timestamp

logger = logging.getLogger(__name__)


def overlaps_window(programme: ProgrammeRecord, window_start: datetime, window_end: datetime) -> bool:
    """
    Half-open overlap test

    A programme is included when start < window_end and stop > window_start.
    Programmes with a missing or unparseable start/stop never match.
    """
    start = parse_canonical_timestamp(programme.start)
    stop = parse_canonical_timestamp(programme.stop)
    if start is None or stop is None:
        return False
    return start < window_end and stop > window_start


def query_schedule(
    index: ScheduleIndex | None,
    channel_ids: Collection[str],
    window_start: datetime,
    window_duration: timedelta
) -> list[ChannelTimeline]:
    """
    Filter an index snapshot to a set of channels and a time window

    Args:
        index: Snapshot of the published index (None if never built)
        channel_ids: Channel ids to include; unknown ids are ignored
        window_start: Aware start of the window
        window_duration: Length of the window

    Returns:
        Matching channels in index order, each with only overlapping programmes

    Raises:
        IndexNotReady: If no index has been published yet
    """
    if index is None:
        raise IndexNotReady("EPG data not loaded yet")

    window_end = window_start + window_duration
    wanted = set(channel_ids)

    return [
        ChannelTimeline(
            channel_id=channel.channel_id,
            display_name=channel.display_name,
            icon_url=channel.icon_url,
            timelines=tuple(
                programme for programme in channel.timelines
                if overlaps_window(programme, window_start, window_end)
            ),
        )
        for channel in index.channels
        if channel.channel_id in wanted
    ]


def get_guide_timelines(
    store: ScheduleIndexStore,
    start: datetime,
    channel_ids: str,
    duration_minutes: int
) -> list[ChannelTimelineResponse]:
    """
    Get timelines for comma-separated channel ids starting at `start`

    Args:
        store: Index store to snapshot
        start: Aware start of the window
        channel_ids: Comma-separated channel ids
        duration_minutes: Window length in minutes

    Returns:
        Response models for the matching channels
    """
    ids = [channel_id.strip() for channel_id in channel_ids.split(",") if channel_id.strip()]
    logger.info(
        f"Guide request: {len(ids)} channels, start={start.isoformat()}, duration={duration_minutes}m"
    )

    channels = query_schedule(store.snapshot(), ids, start, timedelta(minutes=duration_minutes))

    response = [_to_response(channel) for channel in channels]
    logger.info(
        f"Guide response: {len(response)} channels found, "
        f"{sum(len(channel.timelines) for channel in response)} programmes"
    )
    return response


def _to_response(channel: ChannelTimeline) -> ChannelTimelineResponse:
    return ChannelTimelineResponse(
        channel_id=channel.channel_id,
        display_name=channel.display_name,
        icon=channel.icon_url,
        timelines=[
            ProgrammeResponse(
                id=programme.id,
                start=programme.start,
                stop=programme.stop,
                title=programme.title,
                sub_title=programme.sub_title,
                description=programme.description,
                genre=programme.genre,
                date=programme.date,
                episode_number=programme.episode_number,
                previously_shown=programme.previously_shown,
                star_rating=programme.star_rating,
                content_rating=programme.content_rating,
                content_rating_system=programme.content_rating_system,
            )
            for programme in channel.timelines
        ],
    )

"""
Data merging utilities

This module groups parsed programmes under their channels when building the schedule index.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from epg_guide.services.fetch_types import ChannelRecord, ProgrammeRecord

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TimelineGrouping:
    """Programmes grouped by channel id, in document order."""
    timelines: dict[str, list[ProgrammeRecord]]
    programmes_kept: int = 0
    orphans_dropped: int = 0
    duplicates_dropped: int = 0


def group_programmes_by_channel(
    channels: Mapping[str, ChannelRecord],
    programmes: Iterable[ProgrammeRecord]
) -> TimelineGrouping:
    """
    Group programmes under the channels they reference.

    Programmes referencing a channel that was never committed are dropped.
    Programmes whose id was already seen are dropped as duplicates, which
    happens when the same content is merged from more than one source.

    Args:
        channels: Committed channels keyed by channel id
        programmes: Parsed programmes in document order

    Returns:
        TimelineGrouping with one (possibly empty) list per channel
    """
    grouping = TimelineGrouping(timelines={channel_id: [] for channel_id in channels})
    seen_ids: set[str] = set()
    orphan_channels: set[str] = set()

    for programme in programmes:
        timeline = grouping.timelines.get(programme.channel_id)
        if timeline is None:
            grouping.orphans_dropped += 1
            orphan_channels.add(programme.channel_id)
            continue

        if programme.id in seen_ids:
            grouping.duplicates_dropped += 1
            logger.debug(
                "Skipping duplicate programme: %s on %s",
                programme.title,
                programme.channel_id,
            )
            continue

        seen_ids.add(programme.id)
        timeline.append(programme)
        grouping.programmes_kept += 1

    if orphan_channels:
        logger.warning(
            "%s programme(s) reference %s unknown channel(s); dropped",
            grouping.orphans_dropped,
            len(orphan_channels),
        )

    return grouping

"""
Schedule Index

Immutable in-memory snapshot of merged channels and their programme timelines,
plus the single owned reference through which snapshots are published.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping, Sequence

from epg_guide.services.fetch_types import ParseResult, ProgrammeRecord, SourceSummary
from epg_guide.utils.data_merging import group_programmes_by_channel

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ChannelTimeline:
    channel_id: str
    display_name: str
    icon_url: str | None
    timelines: tuple[ProgrammeRecord, ...]


@dataclass(frozen=True)
class ScheduleIndex:
    """A complete, never-mutated result of one refresh."""
    channels: tuple[ChannelTimeline, ...]
    built_at: datetime
    sources: tuple[SourceSummary, ...] = ()
    programmes_dropped: int = 0
    channels_dropped: int = 0
    orphans_dropped: int = 0
    duplicates_dropped: int = 0
    _by_id: Mapping[str, ChannelTimeline] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self):
        lookup = {channel.channel_id: channel for channel in self.channels}
        object.__setattr__(self, "_by_id", MappingProxyType(lookup))

    @classmethod
    def build(
        cls,
        parse_result: ParseResult,
        sources: Sequence[SourceSummary] = (),
        built_at: datetime | None = None
    ) -> "ScheduleIndex":
        """Group parsed programmes under their channels and freeze the result."""
        grouping = group_programmes_by_channel(parse_result.channels, parse_result.programmes)
        channels = tuple(
            ChannelTimeline(
                channel_id=channel.channel_id,
                display_name=channel.display_name,
                icon_url=channel.icon_url,
                timelines=tuple(grouping.timelines[channel.channel_id]),
            )
            for channel in parse_result.channels.values()
        )
        index = cls(
            channels=channels,
            built_at=built_at or datetime.now(timezone.utc),
            sources=tuple(sources),
            programmes_dropped=parse_result.programmes_dropped,
            channels_dropped=parse_result.channels_dropped,
            orphans_dropped=grouping.orphans_dropped,
            duplicates_dropped=grouping.duplicates_dropped,
        )
        logger.info(
            "Schedule index built: %s channels, %s programmes "
            "(%s orphaned, %s duplicate programmes dropped)",
            index.channel_count,
            index.programme_count,
            grouping.orphans_dropped,
            grouping.duplicates_dropped,
        )
        return index

    @property
    def channel_count(self) -> int:
        return len(self.channels)

    @property
    def programme_count(self) -> int:
        return sum(len(channel.timelines) for channel in self.channels)

    def get(self, channel_id: str) -> ChannelTimeline | None:
        return self._by_id.get(channel_id)

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._by_id


class ScheduleIndexStore:
    """
    Owner of the currently published ScheduleIndex.

    Readers take a snapshot reference; publishing replaces the reference in a
    single assignment, so a reader always sees a complete index or none.
    """

    def __init__(self, initial: ScheduleIndex | None = None):
        self._current = initial

    def snapshot(self) -> ScheduleIndex | None:
        return self._current

    def publish(self, index: ScheduleIndex) -> None:
        previous = self._current
        self._current = index
        logger.info(
            "Published schedule index built at %s (replaced %s)",
            index.built_at.isoformat(),
            previous.built_at.isoformat() if previous else "nothing",
        )

    @property
    def is_ready(self) -> bool:
        return self._current is not None

"""
Tests for the schedule index, its store and the windowed query.
"""
from datetime import datetime, timedelta, timezone

import pytest

from epg_guide.services.errors import IndexNotReady
from epg_guide.services.fetch_types import ChannelRecord, ParseResult, ProgrammeRecord
from epg_guide.services.guide_query_service import get_guide_timelines, query_schedule
from epg_guide.services.schedule_index import ScheduleIndex, ScheduleIndexStore
from epg_guide.services.xmltv_line_parser import parse_xmltv_lines

from xmltv_samples import BBC_ONE_XML


def at(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 1, 1, hour, minute, tzinfo=timezone.utc)


def programme(channel_id: str, title: str, start: str | None, stop: str | None) -> ProgrammeRecord:
    return ProgrammeRecord(id=f"{channel_id}-{title}", channel_id=channel_id, start=start, stop=stop, title=title)


@pytest.fixture
def bbc_index() -> ScheduleIndex:
    return ScheduleIndex.build(parse_xmltv_lines(BBC_ONE_XML.splitlines()))


class TestScheduleIndex:
    """Index construction and publication."""

    def test_every_programme_resolves_to_a_channel(self):
        result = ParseResult(
            channels={"a": ChannelRecord("a", "A")},
            programmes=[
                programme("a", "Kept", "2024-01-01T10:00:00.000Z", "2024-01-01T11:00:00.000Z"),
                programme("zzz", "Orphan", "2024-01-01T10:00:00.000Z", "2024-01-01T11:00:00.000Z"),
            ],
        )
        index = ScheduleIndex.build(result)
        for channel in index.channels:
            for entry in channel.timelines:
                assert entry.channel_id == channel.channel_id
        assert index.orphans_dropped == 1

    def test_document_order_is_kept(self):
        result = ParseResult(
            channels={"a": ChannelRecord("a", "A")},
            programmes=[
                programme("a", "Late", "2024-01-01T12:00:00.000Z", "2024-01-01T13:00:00.000Z"),
                programme("a", "Early", "2024-01-01T08:00:00.000Z", "2024-01-01T09:00:00.000Z"),
            ],
        )
        index = ScheduleIndex.build(result)
        assert [p.title for p in index.get("a").timelines] == ["Late", "Early"]

    def test_channel_without_programmes_is_present(self):
        index = ScheduleIndex.build(ParseResult(channels={"a": ChannelRecord("a", "A")}))
        assert index.get("a").timelines == ()
        assert index.programme_count == 0

    def test_store_swaps_reference(self, bbc_index):
        store = ScheduleIndexStore()
        assert store.snapshot() is None
        assert store.is_ready is False

        store.publish(bbc_index)
        old_snapshot = store.snapshot()
        replacement = ScheduleIndex.build(ParseResult())
        store.publish(replacement)

        assert old_snapshot is bbc_index
        assert old_snapshot.channel_count == 1
        assert store.snapshot() is replacement


class TestQuerySchedule:
    """Half-open window filtering."""

    @pytest.mark.parametrize("window_start, minutes, included", [
        (at(10, 30), 60, True),     # [10:30, 11:30) overlaps
        (at(11), 60, False),        # stop is exclusive
        (at(9), 60, False),         # start is exclusive
        (at(9, 59), 1, False),
        (at(9, 59), 2, True),
        (at(10, 59), 0, True),
        (at(9), 180, True),         # window contains programme
    ])
    def test_overlap_law(self, bbc_index, window_start, minutes, included):
        result = query_schedule(bbc_index, ["bbc1"], window_start, timedelta(minutes=minutes))
        assert len(result) == 1
        assert (len(result[0].timelines) == 1) is included

    def test_unknown_channels_absent(self, bbc_index):
        result = query_schedule(bbc_index, ["bbc1", "nope"], at(10), timedelta(hours=1))
        assert [c.channel_id for c in result] == ["bbc1"]

    def test_no_matching_channels_is_empty_not_error(self, bbc_index):
        assert query_schedule(bbc_index, ["nope"], at(10), timedelta(hours=1)) == []

    def test_not_ready_is_distinct(self):
        with pytest.raises(IndexNotReady):
            query_schedule(None, ["bbc1"], at(10), timedelta(hours=1))

    def test_unparseable_times_never_match(self):
        result = ParseResult(
            channels={"a": ChannelRecord("a", "A")},
            programmes=[
                programme("a", "Garbage", "soon", "2024-01-01T11:00:00.000Z"),
                programme("a", "NoStop", "2024-01-01T10:00:00.000Z", None),
            ],
        )
        index = ScheduleIndex.build(result)
        assert query_schedule(index, ["a"], at(0), timedelta(days=1))[0].timelines == ()

    def test_query_does_not_mutate_index(self, bbc_index):
        query_schedule(bbc_index, ["bbc1"], at(20), timedelta(minutes=1))
        assert len(bbc_index.get("bbc1").timelines) == 1


class TestGetGuideTimelines:
    """Response mapping for the HTTP layer."""

    def test_scenario_overlapping(self, bbc_index):
        store = ScheduleIndexStore(bbc_index)
        response = get_guide_timelines(store, at(10, 30), "bbc1", 30)
        payload = [channel.model_dump(by_alias=True) for channel in response]
        assert payload[0]["channelId"] == "bbc1"
        assert payload[0]["displayName"] == "BBC One"
        news = payload[0]["timelines"][0]
        assert news["title"] == "News"
        assert news["start"] == "2024-01-01T10:00:00.000Z"
        assert news["stop"] == "2024-01-01T11:00:00.000Z"
        assert news["subTitle"] == ""
        assert news["previouslyShown"] is False
        assert news["starRating"] is None

    def test_scenario_after_programme(self, bbc_index):
        store = ScheduleIndexStore(bbc_index)
        response = get_guide_timelines(store, at(11), "bbc1", 15)
        assert len(response) == 1
        assert response[0].timelines == []

    def test_channel_ids_are_trimmed(self, bbc_index):
        store = ScheduleIndexStore(bbc_index)
        response = get_guide_timelines(store, at(10), " bbc1 , ,other", 60)
        assert [c.channel_id for c in response] == ["bbc1"]

    def test_not_ready(self):
        with pytest.raises(IndexNotReady):
            get_guide_timelines(ScheduleIndexStore(), at(10), "bbc1", 60)

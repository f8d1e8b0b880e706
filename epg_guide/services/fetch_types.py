"""
Shared dataclasses used across the EPG ingestion pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal


@dataclass(slots=True)
class ChannelRecord:
    """A channel committed by the parser."""
    channel_id: str
    display_name: str
    icon_url: str | None = None


@dataclass(frozen=True, slots=True)
class ProgrammeRecord:
    """A normalized programme, immutable once committed."""
    id: str
    channel_id: str
    start: str | None
    stop: str | None
    title: str
    sub_title: str = ""
    description: str = ""
    genre: str = ""
    date: str | None = None
    episode_number: str = ""
    previously_shown: bool = False
    star_rating: str | None = None
    content_rating: str | None = None
    content_rating_system: str | None = None


@dataclass(slots=True)
class FetchedSource:
    """Result of fetching one source to local storage (already decompressed)."""
    path: Path
    bytes_written: int
    last_modified: str | None = None


@dataclass(slots=True)
class SourceSummary:
    index: int
    sanitized_url: str
    started_at: datetime
    completed_at: datetime
    status: Literal["merged", "skipped"]
    bytes_fetched: int = 0
    bytes_merged: int = 0
    truncated: bool = False
    last_modified: str | None = None
    warning: str | None = None

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.completed_at - self.started_at).total_seconds())

    def to_dict(self) -> dict:
        payload = {
            "source_index": self.index,
            "sanitized_url": self.sanitized_url,
            "status": self.status,
            "bytes_fetched": self.bytes_fetched,
            "bytes_merged": self.bytes_merged,
            "truncated": self.truncated,
            "last_modified": self.last_modified,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": self.duration_seconds,
        }
        if self.warning:
            payload["warning"] = self.warning
        return payload


@dataclass(slots=True)
class ParseResult:
    """Output of one parser pass over a merged document."""
    channels: dict[str, ChannelRecord] = field(default_factory=dict)
    programmes: list[ProgrammeRecord] = field(default_factory=list)
    lines_processed: int = 0
    channels_dropped: int = 0
    programmes_dropped: int = 0


__all__ = [
    "ChannelRecord",
    "ProgrammeRecord",
    "FetchedSource",
    "SourceSummary",
    "ParseResult",
]

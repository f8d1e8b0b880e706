"""
Services package for EPG Guide Service

This package contains the ingestion pipeline, the schedule index and the query layer.
"""
from epg_guide.services.errors import (
    DecompressFailure,
    FetchFailure,
    IndexNotReady,
    SourceMergeError,
    SourceTooSmall,
)
from epg_guide.services.fetch_types import ChannelRecord, ProgrammeRecord

__all__ = [
    'DecompressFailure',
    'FetchFailure',
    'IndexNotReady',
    'SourceMergeError',
    'SourceTooSmall',
    'ChannelRecord',
    'ProgrammeRecord',
]

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serializing field names in camelCase"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProgrammeResponse(CamelModel):
    """Single programme in a channel timeline"""
    id: str = Field(..., description="Programme ID derived from channel, start, stop and title")
    start: str | None = Field(None, description="UTC start time, e.g. 2024-01-01T10:00:00.000Z")
    stop: str | None = Field(None, description="UTC stop time, e.g. 2024-01-01T11:00:00.000Z")
    title: str
    sub_title: str = ""
    description: str = ""
    genre: str = Field("", description="Comma-separated categories")
    date: str | None = None
    episode_number: str = ""
    previously_shown: bool = False
    star_rating: str | None = None
    content_rating: str | None = None
    content_rating_system: str | None = None


class ChannelTimelineResponse(CamelModel):
    """Programmes of one channel overlapping the requested window"""
    channel_id: str = Field(..., description="Channel XMLTV ID")
    display_name: str = Field(..., description="Display name of the channel")
    icon: str | None = Field(None, description="URL to channel icon")
    timelines: list[ProgrammeResponse] = Field(default_factory=list)


class ErrorDetail(BaseModel):
    """Standard error detail"""
    code: str = Field(..., description="Error code (e.g., 'INDEX_NOT_READY', 'VALIDATION_ERROR')")
    message: str = Field(..., description="Human-readable error message")
    context: dict | list | None = Field(None, description="Additional context about the error")


class StandardErrorResponse(BaseModel):
    """Standardized error response for all endpoints"""
    status: str = Field("error", description="Status indicator")
    timestamp: str = Field(..., description="ISO8601 timestamp of error")
    error: ErrorDetail = Field(..., description="Error details")

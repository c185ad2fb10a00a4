"""Pydantic models and dataclasses for service IO."""

from .errors import ErrorResponse
from .events import StreamEvent, StreamEventType
from .jobs import (
    DeliveryMode,
    GenerationJob,
    GenerationResult,
    InvalidTransitionError,
    JobError,
    JobLogEntry,
    JobSnapshot,
    JobStatus,
)
from .requests import (
    FailoverResponse,
    GenerationRequest,
    GenerationStarted,
    OutlineRequest,
    OutlineResponse,
    StreamStarted,
)
from .story import Chapter, OutlineEntry, StorySpec, count_words

__all__ = [
    "Chapter",
    "DeliveryMode",
    "ErrorResponse",
    "FailoverResponse",
    "GenerationJob",
    "GenerationRequest",
    "GenerationResult",
    "GenerationStarted",
    "InvalidTransitionError",
    "JobError",
    "JobLogEntry",
    "JobSnapshot",
    "JobStatus",
    "OutlineEntry",
    "OutlineRequest",
    "OutlineResponse",
    "StorySpec",
    "StreamEvent",
    "StreamEventType",
    "StreamStarted",
    "count_words",
]

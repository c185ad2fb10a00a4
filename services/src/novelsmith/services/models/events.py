"""Typed events published while a generation makes progress."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .jobs import utc_timestamp


class StreamEventType(str, Enum):
    """Closed set of events a stream listener can observe."""

    CONNECTED = "connected"
    STATUS = "status"
    PROCESS_UPDATE = "process_update"
    CHAPTER_PLANNING = "chapter_planning"
    CHAPTER_WRITING = "chapter_writing"
    CHAPTER_COMPLETE = "chapter_complete"
    COMPLETE = "complete"
    ERROR = "error"
    HEARTBEAT = "heartbeat"

    @property
    def is_terminal(self) -> bool:
        return self in (StreamEventType.COMPLETE, StreamEventType.ERROR)


class StreamEvent(BaseModel):
    """A single event broadcast to stream listeners."""

    type: StreamEventType
    stream_id: str
    job_id: str
    timestamp: str = Field(default_factory=utc_timestamp)
    data: dict[str, Any] = Field(default_factory=dict)

    def to_sse(self) -> str:
        """Render the event as a Server-Sent Events frame."""

        payload = {"type": self.type.value, "job_id": self.job_id, "timestamp": self.timestamp, **self.data}
        return f"event: {self.type.value}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


__all__ = ["StreamEvent", "StreamEventType"]

"""Request and response bodies for the generation routes."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

from .jobs import JobStatus
from .story import OutlineEntry, StorySpec


class OutlineRequest(BaseModel):
    """Payload for the outline-only endpoint."""

    story: StorySpec


class GenerationRequest(BaseModel):
    """Payload for starting a batch or streaming generation."""

    story: StorySpec
    outline: list[OutlineEntry] | None = Field(
        default=None,
        description="Optional pre-approved outline; skips outline synthesis when provided.",
    )

    @model_validator(mode="after")
    def _validate_outline_length(self) -> "GenerationRequest":
        if self.outline is not None and len(self.outline) != self.story.chapters:
            msg = (
                f"Outline has {len(self.outline)} entries but the story requests "
                f"{self.story.chapters} chapters."
            )
            raise ValueError(msg)
        return self


class OutlineResponse(BaseModel):
    outline: list[OutlineEntry]


class GenerationStarted(BaseModel):
    job_id: str
    status: JobStatus


class StreamStarted(BaseModel):
    stream_id: str
    job_id: str
    subscribe_url: str


class FailoverResponse(BaseModel):
    stream_id: str
    job_id: str
    resume_index: int
    failed_over: bool
    status_url: str


__all__ = [
    "FailoverResponse",
    "GenerationRequest",
    "GenerationStarted",
    "OutlineRequest",
    "OutlineResponse",
    "StreamStarted",
]

"""Generation job records and the snapshots exposed to pollers."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from .story import Chapter, OutlineEntry, StorySpec

OUTLINE_PROGRESS_SHARE = 20

LogLevel = Literal["info", "success", "warning", "error"]


def utc_timestamp() -> str:
    """Return an ISO-8601 UTC timestamp with ``Z`` suffix."""

    return datetime.now(tz=timezone.utc).isoformat().replace("+00:00", "Z")


class JobStatus(str, Enum):
    """Lifecycle states of a generation job."""

    INITIALIZED = "initialized"
    OUTLINE_CREATION = "outline_creation"
    DRAFTING = "drafting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class DeliveryMode(str, Enum):
    """How a job's progress reaches its client."""

    BATCH = "batch"
    STREAM = "stream"


class JobLogEntry(BaseModel):
    """Timestamped, human-readable job event."""

    timestamp: str
    level: LogLevel = "info"
    message: str


class JobError(BaseModel):
    """Terminal error attached to a failed job."""

    code: str
    message: str
    operation: str


class GenerationResult(BaseModel):
    """Aggregated output of a completed job."""

    title: str
    outline: list[OutlineEntry]
    chapters: list[Chapter]
    total_chapters: int
    total_words: int
    short_chapters: list[int] = Field(default_factory=list)
    completed_at: str


class JobSnapshot(BaseModel):
    """Read-only view of a job returned to status pollers."""

    job_id: str
    status: JobStatus
    delivery: DeliveryMode
    progress: int = Field(ge=0, le=100)
    chapters_completed: int
    total_chapters: int
    current_chapter: int
    current_process: str
    logs: list[JobLogEntry]
    error: JobError | None = None
    result: GenerationResult | None = None
    elapsed_seconds: int
    estimated_remaining_seconds: int | None = None


class InvalidTransitionError(RuntimeError):
    """Raised when a chapter would break the contiguous accepted prefix."""


@dataclass
class GenerationJob:
    """Mutable state of a single generation, owned by one runner at a time."""

    job_id: str
    spec: StorySpec
    outline: list[OutlineEntry] = field(default_factory=list)
    chapters: list[Chapter] = field(default_factory=list)
    status: JobStatus = JobStatus.INITIALIZED
    delivery: DeliveryMode = DeliveryMode.BATCH
    progress: int = 0
    current_chapter: int = 0
    current_process: str = "Initializing..."
    logs: list[JobLogEntry] = field(default_factory=list)
    error: JobError | None = None
    result: GenerationResult | None = None
    created_at: float = field(default_factory=time.monotonic)
    finished_at: float | None = None

    @property
    def total_chapters(self) -> int:
        return self.spec.chapters

    def log(self, message: str, *, level: LogLevel = "info") -> JobLogEntry:
        """Append a log entry and make it the current process message."""

        entry = JobLogEntry(timestamp=utc_timestamp(), level=level, message=message)
        self.logs.append(entry)
        self.current_process = message
        return entry

    def transition(self, status: JobStatus) -> bool:
        """Move to ``status`` unless the job already reached an absorbing state."""

        if self.status.is_terminal:
            return False
        self.status = status
        if status.is_terminal:
            self.finished_at = time.monotonic()
            if status is JobStatus.COMPLETED:
                self.advance_progress(100)
        return True

    def advance_progress(self, value: int) -> None:
        """Raise progress to ``value``; progress never moves backwards."""

        self.progress = max(self.progress, min(100, int(value)))

    def drafting_progress(self) -> int:
        share = 100 - OUTLINE_PROGRESS_SHARE
        return OUTLINE_PROGRESS_SHARE + (share * len(self.chapters)) // self.total_chapters

    def accept_chapter(self, chapter: Chapter) -> None:
        """Append ``chapter``, enforcing strictly increasing contiguous indices."""

        expected = len(self.chapters) + 1
        if chapter.index != expected:
            raise InvalidTransitionError(
                f"Chapter {chapter.index} cannot be accepted before chapter {expected}."
            )
        self.chapters.append(chapter)
        self.advance_progress(self.drafting_progress())

    def snapshot(self, *, now: float | None = None) -> JobSnapshot:
        """Build a detached snapshot of the current state."""

        reference = self.finished_at if self.finished_at is not None else (now or time.monotonic())
        elapsed = max(0, int(reference - self.created_at))
        remaining: int | None = None
        if self.status.is_terminal:
            remaining = 0
        elif self.progress > 0:
            remaining = int(elapsed / self.progress * (100 - self.progress))
        return JobSnapshot(
            job_id=self.job_id,
            status=self.status,
            delivery=self.delivery,
            progress=self.progress,
            chapters_completed=len(self.chapters),
            total_chapters=self.total_chapters,
            current_chapter=self.current_chapter,
            current_process=self.current_process,
            logs=list(self.logs),
            error=self.error,
            result=self.result,
            elapsed_seconds=elapsed,
            estimated_remaining_seconds=remaining,
        )


__all__ = [
    "DeliveryMode",
    "GenerationJob",
    "GenerationResult",
    "InvalidTransitionError",
    "JobError",
    "JobLogEntry",
    "JobSnapshot",
    "JobStatus",
    "LogLevel",
    "OUTLINE_PROGRESS_SHARE",
    "utc_timestamp",
]

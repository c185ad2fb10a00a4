"""Progress channels shared by the batch and streaming delivery paths."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from .models.events import StreamEventType
from .models.jobs import GenerationJob, LogLevel

LOGGER = logging.getLogger(__name__)


class EventChannel(Protocol):
    """Sink for typed progress events emitted while a job runs."""

    def publish(self, event_type: StreamEventType, data: dict[str, Any]) -> None:
        ...

    def close(self) -> None:
        ...


class NullChannel:
    """Channel used by batch jobs; progress is only visible through polling."""

    def publish(self, event_type: StreamEventType, data: dict[str, Any]) -> None:
        return None

    def close(self) -> None:
        return None


class ProgressReporter(Protocol):
    def report(
        self,
        event_type: StreamEventType,
        message: str,
        *,
        level: LogLevel = "info",
        **data: Any,
    ) -> None:
        ...


class JobReporter:
    """Record progress on the job log and forward it to the active channel."""

    def __init__(self, job: GenerationJob, channel: EventChannel) -> None:
        self._job = job
        self._channel = channel

    @property
    def job(self) -> GenerationJob:
        return self._job

    def report(
        self,
        event_type: StreamEventType,
        message: str,
        *,
        level: LogLevel = "info",
        **data: Any,
    ) -> None:
        self._job.log(message, level=level)
        payload = {
            "message": message,
            "level": level,
            "progress": self._job.progress,
            "chapters_completed": len(self._job.chapters),
            "total_chapters": self._job.total_chapters,
            **data,
        }
        self.publish(event_type, payload)

    def publish(self, event_type: StreamEventType, data: dict[str, Any]) -> None:
        # A failing channel must never fail the job; delivery health is the
        # stream session's concern.
        try:
            self._channel.publish(event_type, data)
        except Exception as exc:  # noqa: BLE001 - delivery is best effort
            LOGGER.warning(
                "channel.publish_failed",
                extra={
                    "extra_payload": {
                        "job_id": self._job.job_id,
                        "event": event_type.value,
                        "error": str(exc),
                    }
                },
            )


__all__ = ["EventChannel", "JobReporter", "NullChannel", "ProgressReporter"]

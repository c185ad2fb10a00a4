"""Generation pipeline: outline once, then chapters strictly in order."""

from __future__ import annotations

import asyncio
import logging

from .chapter_drafter import ChapterDrafter
from .events import EventChannel, JobReporter
from .gateway import GenerationFailed
from .models.events import StreamEventType
from .models.jobs import (
    OUTLINE_PROGRESS_SHARE,
    GenerationJob,
    GenerationResult,
    JobStatus,
    utc_timestamp,
)
from .models.story import OutlineEntry
from .outline_synthesizer import OutlineError, OutlineSynthesizer
from .resilience import RetryExhausted, bounded_retry

LOGGER = logging.getLogger(__name__)


def build_result(job: GenerationJob) -> GenerationResult:
    """Aggregate the accepted chapters of ``job``."""

    chapters = list(job.chapters)
    return GenerationResult(
        title=job.spec.title,
        outline=list(job.outline),
        chapters=chapters,
        total_chapters=len(chapters),
        total_words=sum(chapter.word_count for chapter in chapters),
        short_chapters=[chapter.index for chapter in chapters if not chapter.meets_target],
        completed_at=utc_timestamp(),
    )


def _retry_outline_step(error: BaseException, attempt: int) -> float | None:
    if isinstance(error, OutlineError):
        return 0.0
    if isinstance(error, GenerationFailed) and not error.fatal:
        return 0.0
    return None


class GenerationPipeline:
    """Drive one job from its current state to completion.

    The pipeline resumes from whatever the job already holds: an existing
    outline skips synthesis and drafting starts after the accepted prefix.
    """

    def __init__(
        self,
        synthesizer: OutlineSynthesizer,
        drafter: ChapterDrafter,
        *,
        outline_step_attempts: int = 2,
        inter_chapter_delay_seconds: float = 1.0,
    ) -> None:
        if outline_step_attempts <= 0:
            raise ValueError("outline_step_attempts must be at least 1")
        self._synthesizer = synthesizer
        self._drafter = drafter
        self._outline_attempts = outline_step_attempts
        self._delay = max(0.0, inter_chapter_delay_seconds)

    async def run(self, job: GenerationJob, channel: EventChannel) -> GenerationResult | None:
        """Run ``job``; returns ``None`` when it stopped on cancellation."""

        reporter = JobReporter(job, channel)
        if not job.outline:
            if not self._enter(job, reporter, JobStatus.OUTLINE_CREATION):
                return None
            job.outline = await self._create_outline(job, reporter)
        if not job.status.is_terminal:
            job.advance_progress(OUTLINE_PROGRESS_SHARE)

        if not self._enter(job, reporter, JobStatus.DRAFTING):
            return None

        for entry in job.outline[len(job.chapters) :]:
            if job.status is JobStatus.CANCELLED:
                LOGGER.info(
                    "job.cancel_observed",
                    extra={"extra_payload": {"job_id": job.job_id, "next_chapter": entry.index}},
                )
                return None
            await self._draft(job, entry, reporter)
            if self._delay and len(job.chapters) < job.total_chapters:
                await asyncio.sleep(self._delay)

        if job.status.is_terminal:
            return None

        result = build_result(job)
        job.result = result
        job.transition(JobStatus.COMPLETED)
        reporter.report(
            StreamEventType.COMPLETE,
            f"Generation complete: {result.total_chapters} chapters, {result.total_words} words",
            level="success",
            result=result.model_dump(mode="json"),
        )
        return result

    def _enter(self, job: GenerationJob, reporter: JobReporter, status: JobStatus) -> bool:
        if not job.transition(status):
            return False
        reporter.publish(
            StreamEventType.STATUS,
            {"status": status.value, "progress": job.progress, "delivery": job.delivery.value},
        )
        return True

    async def _create_outline(self, job: GenerationJob, reporter: JobReporter) -> list[OutlineEntry]:
        async def attempt(number: int) -> list[OutlineEntry]:
            suffix = "" if number == 1 else f" (attempt {number})"
            reporter.report(StreamEventType.PROCESS_UPDATE, f"Creating story outline{suffix}...")
            return await self._synthesizer.create_outline(job.spec)

        try:
            outcome = await bounded_retry(
                attempt,
                max_attempts=self._outline_attempts,
                classify=_retry_outline_step,
                label="outline",
            )
        except RetryExhausted as exc:
            raise exc.last_error from exc

        entries = outcome.value
        reporter.report(
            StreamEventType.PROCESS_UPDATE,
            f"Outline created with {len(entries)} chapters",
            level="success",
            outline=[entry.model_dump() for entry in entries],
        )
        return entries

    async def _draft(self, job: GenerationJob, entry: OutlineEntry, reporter: JobReporter) -> None:
        job.current_chapter = entry.index
        reporter.report(
            StreamEventType.CHAPTER_PLANNING,
            f"Planning Chapter {entry.index}: {entry.title}",
            chapter=entry.index,
            title=entry.title,
        )
        chapter = await self._drafter.draft_chapter(
            job.spec,
            entry,
            list(job.chapters),
            reporter=reporter,
        )
        job.accept_chapter(chapter)
        reporter.report(
            StreamEventType.CHAPTER_COMPLETE,
            f"Chapter {chapter.index} complete ({chapter.word_count} words)",
            level="success" if chapter.meets_target else "warning",
            chapter=chapter.index,
            chapter_data=chapter.model_dump(),
        )


__all__ = ["GenerationPipeline", "build_result"]

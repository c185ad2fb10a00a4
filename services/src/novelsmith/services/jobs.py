"""Batch job lifecycle: background runners, polling, cancellation and timeouts."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Sequence

from . import metrics
from .config import ServiceSettings
from .events import EventChannel, JobReporter, NullChannel
from .gateway import AuthError, CompletionValidationError, GenerationFailed
from .models.events import StreamEventType
from .models.jobs import DeliveryMode, GenerationJob, JobError, JobSnapshot, JobStatus
from .models.story import OutlineEntry, StorySpec
from .outline_synthesizer import OutlineError, validate_outline
from .pipeline import GenerationPipeline
from .registry import JobRegistry

LOGGER = logging.getLogger(__name__)


def classify_failure(exc: BaseException) -> JobError:
    """Map a runner exception onto the job error reported to pollers."""

    if isinstance(exc, GenerationFailed):
        if isinstance(exc.last_error, AuthError):
            code = "MODEL_AUTH"
        elif isinstance(exc.last_error, CompletionValidationError):
            code = "MODEL_REJECTED"
        else:
            code = "MODEL_ERROR"
        return JobError(code=code, message=str(exc), operation=exc.operation)
    if isinstance(exc, OutlineError):
        return JobError(code="OUTLINE_INVALID", message=str(exc), operation="outline")
    return JobError(code="INTERNAL", message=f"Unexpected error: {exc}", operation="job")


class JobManager:
    """Own the background runner of every job and expose its status.

    Exactly one runner task is active per job. ``switch_to_batch`` tears the
    current runner down before launching its replacement.
    """

    def __init__(
        self,
        registry: JobRegistry,
        pipeline: GenerationPipeline,
        *,
        settings: ServiceSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._pipeline = pipeline
        self._settings = settings or ServiceSettings()
        self._clock = clock
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._handoffs: set[str] = set()

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    def create(
        self,
        spec: StorySpec,
        outline: Sequence[OutlineEntry] | None = None,
        *,
        delivery: DeliveryMode = DeliveryMode.BATCH,
    ) -> GenerationJob:
        """Allocate a job record without starting it."""

        entries = validate_outline(outline, expected=spec.chapters) if outline else []
        job = self._registry.create(
            lambda job_id: GenerationJob(
                job_id=job_id,
                spec=spec,
                outline=entries,
                delivery=delivery,
                created_at=self._clock(),
            )
        )
        job.log(f'Generation queued for "{spec.title}" ({spec.chapters} chapters)')
        LOGGER.info(
            "job.created",
            extra={
                "extra_payload": {
                    "job_id": job.job_id,
                    "chapters": spec.chapters,
                    "delivery": delivery.value,
                    "outline_supplied": bool(entries),
                }
            },
        )
        return job

    def start(self, spec: StorySpec, outline: Sequence[OutlineEntry] | None = None) -> str:
        """Create a batch job and schedule it; returns without waiting."""

        job = self.create(spec, outline)
        self.launch(job, NullChannel())
        return job.job_id

    def launch(self, job: GenerationJob, channel: EventChannel) -> asyncio.Task[None]:
        current = self._tasks.get(job.job_id)
        if current is not None and not current.done():
            raise RuntimeError(f"Job '{job.job_id}' already has an active runner.")
        task = asyncio.get_running_loop().create_task(
            self._run(job, channel), name=f"novelsmith-job-{job.job_id}"
        )
        self._tasks[job.job_id] = task
        task.add_done_callback(lambda finished: self._forget(job.job_id, finished))
        return task

    def _forget(self, job_id: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]

    def get(self, job_id: str) -> GenerationJob:
        return self._registry.get(job_id)

    def status(self, job_id: str) -> JobSnapshot:
        """Return a snapshot of the job; never mutates it."""

        return self._registry.get(job_id).snapshot(now=self._clock())

    def is_running(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    def cancel(self, job_id: str) -> JobSnapshot:
        """Mark the job cancelled; the runner stops before its next chapter."""

        job = self._registry.get(job_id)
        if job.transition(JobStatus.CANCELLED):
            job.log("Generation cancelled", level="warning")
            metrics.record_job(JobStatus.CANCELLED.value, delivery=job.delivery.value)
            LOGGER.info(
                "job.cancelled",
                extra={
                    "extra_payload": {
                        "job_id": job_id,
                        "chapters_completed": len(job.chapters),
                        "in_flight": self.is_running(job_id),
                    }
                },
            )
        return job.snapshot(now=self._clock())

    async def switch_to_batch(self, job_id: str, *, reason: str) -> int:
        """Tear down the current runner and resume the job in batch mode.

        Returns the number of chapters already accepted; drafting resumes at
        the next index.
        """

        job = self._registry.get(job_id)
        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            self._handoffs.add(job_id)
            task.cancel()
            await asyncio.wait({task})
            self._handoffs.discard(job_id)

        resume_index = len(job.chapters)
        job.delivery = DeliveryMode.BATCH
        if job.status.is_terminal:
            return resume_index

        job.log(
            f"Delivery switched to polling ({reason}); resuming at chapter {resume_index + 1}",
            level="warning",
        )
        self.launch(job, NullChannel())
        return resume_index

    async def wait(self, job_id: str, *, timeout: float | None = None) -> JobSnapshot:
        """Wait for the job's runner, following any failover handoff."""

        deadline = None if timeout is None else self._clock() + timeout
        while True:
            task = self._tasks.get(job_id)
            if task is None or task.done():
                if job_id in self._handoffs:
                    await asyncio.sleep(0)
                    continue
                break
            remaining = None if deadline is None else max(0.0, deadline - self._clock())
            done, _ = await asyncio.wait({task}, timeout=remaining)
            if not done:
                break
        return self.status(job_id)

    async def shutdown(self) -> None:
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, job: GenerationJob, channel: EventChannel) -> None:
        budget = self._settings.job_timeout_seconds - (self._clock() - job.created_at)
        scope = asyncio.timeout(max(0.0, budget))
        handed_off = False
        try:
            async with scope:
                result = await self._pipeline.run(job, channel)
        except asyncio.CancelledError:
            if job.job_id in self._handoffs:
                handed_off = True
                LOGGER.info(
                    "job.handoff",
                    extra={
                        "extra_payload": {
                            "job_id": job.job_id,
                            "chapters_completed": len(job.chapters),
                        }
                    },
                )
            elif job.transition(JobStatus.CANCELLED):
                job.log("Generation stopped by service shutdown", level="warning")
            raise
        except TimeoutError as exc:
            if not scope.expired():
                self._fail(job, channel, classify_failure(exc))
            else:
                self._fail(
                    job,
                    channel,
                    JobError(
                        code="JOB_TIMEOUT",
                        message=(
                            f"Generation exceeded its {self._settings.job_timeout_seconds:.0f}s "
                            "wall-clock budget."
                        ),
                        operation=f"chapter-{job.current_chapter}" if job.current_chapter else "outline",
                    ),
                )
        except (GenerationFailed, OutlineError) as exc:
            self._fail(job, channel, classify_failure(exc))
        except Exception as exc:  # noqa: BLE001 - surface as job failure
            LOGGER.exception("job.crashed", extra={"extra_payload": {"job_id": job.job_id}})
            self._fail(job, channel, classify_failure(exc))
        else:
            if result is not None:
                metrics.record_job(JobStatus.COMPLETED.value, delivery=job.delivery.value)
                LOGGER.info(
                    "job.completed",
                    extra={
                        "extra_payload": {
                            "job_id": job.job_id,
                            "total_words": result.total_words,
                            "short_chapters": result.short_chapters,
                        }
                    },
                )
        finally:
            if not handed_off:
                channel.close()

    def _fail(self, job: GenerationJob, channel: EventChannel, error: JobError) -> None:
        if not job.transition(JobStatus.FAILED):
            return
        job.error = error
        reporter = JobReporter(job, channel)
        reporter.report(
            StreamEventType.ERROR,
            error.message,
            level="error",
            code=error.code,
            operation=error.operation,
        )
        metrics.record_job(JobStatus.FAILED.value, delivery=job.delivery.value)
        LOGGER.warning(
            "job.failed",
            extra={
                "extra_payload": {
                    "job_id": job.job_id,
                    "code": error.code,
                    "operation": error.operation,
                    "error": error.message,
                    "chapters_completed": len(job.chapters),
                }
            },
        )


__all__ = ["JobManager", "classify_failure"]

"""Failover from stream delivery to batch polling without losing chapters."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

from .jobs import JobManager
from .models.events import StreamEventType
from .streams import StreamBroker, StreamSession

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecoveryOutcome:
    stream_id: str
    job_id: str
    resume_index: int
    failed_over: bool


class RecoveryCoordinator:
    """Watch stream sessions and move broken ones onto the batch path.

    A failover is triggered when the last listener of a session is detached
    because of a delivery failure, when a client reports the failure, or when
    no event reached any listener for ``stall_timeout`` seconds. Each session
    fails over at most once.
    """

    def __init__(
        self,
        manager: JobManager,
        broker: StreamBroker,
        *,
        stall_timeout: float = 300.0,
        check_interval: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if stall_timeout <= 0:
            raise ValueError("stall_timeout must be greater than zero.")
        self._manager = manager
        self._broker = broker
        self._stall_timeout = stall_timeout
        self._check_interval = check_interval or min(stall_timeout / 4, 30.0)
        self._clock = clock
        self._watchdogs: dict[str, asyncio.Task[None]] = {}
        self._pending: dict[str, asyncio.Task[RecoveryOutcome]] = {}
        broker.add_session_observer(self.watch)

    def watch(self, session: StreamSession) -> None:
        """Subscribe to delivery failures of ``session`` and start its stall watchdog."""

        stream_id = session.stream_id
        session.on_delivery_failure(lambda reason: self._schedule(stream_id, reason))
        self._watchdogs[stream_id] = asyncio.get_running_loop().create_task(
            self._watchdog(session), name=f"novelsmith-watchdog-{stream_id}"
        )

    def has_failed_over(self, stream_id: str) -> bool:
        session = self._broker.registry.find(stream_id)
        return session is not None and session.failed_over

    async def _watchdog(self, session: StreamSession) -> None:
        try:
            while not session.closed and not session.job.status.is_terminal:
                await asyncio.sleep(self._check_interval)
                if session.closed or session.job.status.is_terminal:
                    return
                idle = self._clock() - session.last_delivered_at
                if idle >= self._stall_timeout:
                    self._schedule(session.stream_id, f"no event delivered for {idle:.0f}s")
                    return
        finally:
            self._watchdogs.pop(session.stream_id, None)

    def _schedule(self, stream_id: str, reason: str) -> None:
        session = self._broker.registry.find(stream_id)
        if session is None or session.failed_over or stream_id in self._pending:
            return
        task = asyncio.get_running_loop().create_task(
            self.fail_over(stream_id, reason=reason), name=f"novelsmith-failover-{stream_id}"
        )
        self._pending[stream_id] = task
        task.add_done_callback(lambda _: self._pending.pop(stream_id, None))

    async def fail_over(self, stream_id: str, *, reason: str) -> RecoveryOutcome:
        """Tear down the stream path of ``stream_id`` and resume its job in batch mode."""

        session = self._broker.get(stream_id)
        job = session.job
        if session.failed_over or job.status.is_terminal:
            return RecoveryOutcome(stream_id, job.job_id, len(job.chapters), failed_over=False)
        session.failed_over = True

        LOGGER.warning(
            "recovery.failover",
            extra={
                "extra_payload": {
                    "stream_id": stream_id,
                    "job_id": job.job_id,
                    "reason": reason,
                    "chapters_completed": len(job.chapters),
                }
            },
        )
        session.publish(
            StreamEventType.STATUS,
            {
                "status": job.status.value,
                "delivery": "batch",
                "reason": reason,
                "message": "Stream delivery stopped; poll the job for progress.",
            },
        )
        session.close()
        watchdog = self._watchdogs.pop(stream_id, None)
        if watchdog is not None and watchdog is not asyncio.current_task():
            watchdog.cancel()

        resume_index = await self._manager.switch_to_batch(job.job_id, reason=reason)
        LOGGER.info(
            "recovery.resumed",
            extra={
                "extra_payload": {
                    "stream_id": stream_id,
                    "job_id": job.job_id,
                    "resume_chapter": resume_index + 1,
                }
            },
        )
        return RecoveryOutcome(stream_id, job.job_id, resume_index, failed_over=True)

    async def shutdown(self) -> None:
        tasks = list(self._watchdogs.values()) + list(self._pending.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = ["RecoveryCoordinator", "RecoveryOutcome"]

"""Scheduled retention sweeps for finished jobs and closed streams."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .config import ServiceSettings
from .registry import Registry

LOGGER = logging.getLogger(__name__)


class RetentionSweeper:
    """Periodic runner that drops records past their retention window."""

    def __init__(
        self,
        settings: ServiceSettings,
        registries: Iterable[Registry[Any]],
        *,
        interval_seconds: int | None = None,
    ) -> None:
        self._registries = list(registries)
        self._interval = interval_seconds or settings.retention_sweep_interval_seconds
        self._scheduler = BackgroundScheduler()
        self._job = None

    @property
    def running(self) -> bool:
        return self._job is not None

    def start(self) -> None:
        if self._job is not None:
            return
        trigger = IntervalTrigger(seconds=self._interval, start_date=datetime.now())
        self._job = self._scheduler.add_job(
            self.sweep,
            trigger,
            id="retention-sweeper",
            max_instances=1,
            replace_existing=True,
        )
        self._scheduler.start()
        LOGGER.info("Retention sweeper started (interval=%ss)", self._interval)

    def shutdown(self) -> None:
        if self._job is None:
            return
        self._scheduler.shutdown(wait=False)
        self._job = None
        LOGGER.info("Retention sweeper stopped")

    def sweep(self) -> int:
        removed = 0
        for registry in self._registries:
            try:
                removed += len(registry.collect_expired())
            except Exception as exc:  # pragma: no cover - keep the schedule alive
                LOGGER.exception("Retention sweep failed for %s", registry.prefix, exc_info=exc)
        return removed


__all__ = ["RetentionSweeper"]

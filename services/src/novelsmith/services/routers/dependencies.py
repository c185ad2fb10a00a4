"""Dependency injection helpers for FastAPI routers."""

from __future__ import annotations

from typing import cast

from fastapi import Request

from ..config import ServiceSettings
from ..jobs import JobManager
from ..outline_synthesizer import OutlineSynthesizer
from ..recovery import RecoveryCoordinator
from ..streams import StreamBroker

__all__ = [
    "get_job_manager",
    "get_outline_synthesizer",
    "get_recovery_coordinator",
    "get_settings",
    "get_stream_broker",
]


def get_settings(request: Request) -> ServiceSettings:
    """Return the service settings configured for the application."""

    return cast(ServiceSettings, request.app.state.settings)


def get_job_manager(request: Request) -> JobManager:
    """Return the job manager stored on the application state."""

    return cast(JobManager, request.app.state.job_manager)


def get_stream_broker(request: Request) -> StreamBroker:
    return cast(StreamBroker, request.app.state.stream_broker)


def get_recovery_coordinator(request: Request) -> RecoveryCoordinator:
    return cast(RecoveryCoordinator, request.app.state.recovery_coordinator)


def get_outline_synthesizer(request: Request) -> OutlineSynthesizer:
    """Return the outline synthesizer used by the outline-only route."""

    return cast(OutlineSynthesizer, request.app.state.outline_synthesizer)

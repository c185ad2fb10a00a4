"""Streaming generation routes backed by Server-Sent Events."""

from __future__ import annotations

import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from ..http import (
    default_error_responses,
    raise_not_found,
    raise_service_error,
    raise_validation_error,
)
from ..models.requests import FailoverResponse, GenerationRequest, StreamStarted
from ..outline_synthesizer import OutlineError
from ..recovery import RecoveryCoordinator
from ..registry import StreamNotFoundError
from ..streams import QueueListener, StreamBroker, StreamClosedError, StreamSession
from .dependencies import get_recovery_coordinator, get_stream_broker

LOGGER = logging.getLogger(__name__)

__all__ = ["router"]

_SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


class FailoverRequest(BaseModel):
    reason: str = "client reported delivery failure"


router = APIRouter(
    prefix="/streams",
    tags=["streams"],
    responses=default_error_responses(),
)


def _status_url(request: Request, job_id: str) -> str:
    return str(request.app.url_path_for("get_generation_status", job_id=job_id))


@router.post("", response_model=StreamStarted, status_code=status.HTTP_202_ACCEPTED)
async def start_stream(
    request_model: GenerationRequest,
    request: Request,
    broker: StreamBroker = Depends(get_stream_broker),
) -> StreamStarted:
    """Start a generation whose progress is pushed to subscribers."""

    try:
        session = broker.start(request_model.story, request_model.outline)
    except OutlineError as exc:
        raise_validation_error(message=str(exc), details=exc.details)
    return StreamStarted(
        stream_id=session.stream_id,
        job_id=session.job.job_id,
        subscribe_url=str(request.app.url_path_for("subscribe_stream", stream_id=session.stream_id)),
    )


async def _sse_frames(session: StreamSession, listener: QueueListener) -> AsyncIterator[str]:
    finished = False
    try:
        async for frame in listener.iter_sse():
            yield frame
        finished = True
    finally:
        session.detach(listener, reason=None if finished else "client disconnected")


@router.get("/{stream_id}/events")
async def subscribe_stream(
    stream_id: str,
    request: Request,
    broker: StreamBroker = Depends(get_stream_broker),
) -> StreamingResponse:
    """Attach to a stream; events start with ``connected`` and end with ``complete`` or ``error``."""

    try:
        session, listener = broker.subscribe(stream_id)
    except StreamNotFoundError as exc:
        raise_not_found(message=str(exc), details={"stream_id": stream_id})
    except StreamClosedError as exc:
        job_id = broker.get(stream_id).job.job_id
        raise_service_error(
            code="CONFLICT",
            message=str(exc),
            details={"job_id": job_id, "status_url": _status_url(request, job_id)},
        )
    return StreamingResponse(
        _sse_frames(session, listener),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


@router.post("/{stream_id}/failover", response_model=FailoverResponse)
async def fail_over_stream(
    stream_id: str,
    request: Request,
    body: FailoverRequest | None = None,
    coordinator: RecoveryCoordinator = Depends(get_recovery_coordinator),
) -> FailoverResponse:
    """Switch a stream's job to batch delivery and return where drafting resumes."""

    reason = body.reason if body is not None else FailoverRequest().reason
    try:
        outcome = await coordinator.fail_over(stream_id, reason=reason)
    except StreamNotFoundError as exc:
        raise_not_found(message=str(exc), details={"stream_id": stream_id})
    return FailoverResponse(
        stream_id=outcome.stream_id,
        job_id=outcome.job_id,
        resume_index=outcome.resume_index,
        failed_over=outcome.failed_over,
        status_url=_status_url(request, outcome.job_id),
    )

"""Batch generation routes: start, poll and cancel jobs."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status

from ..http import default_error_responses, raise_not_found, raise_validation_error
from ..jobs import JobManager
from ..models.jobs import JobSnapshot
from ..models.requests import GenerationRequest, GenerationStarted
from ..outline_synthesizer import OutlineError
from ..registry import JobNotFoundError
from .dependencies import get_job_manager

LOGGER = logging.getLogger(__name__)

__all__ = ["router"]


router = APIRouter(
    prefix="/generation",
    tags=["generation"],
    responses=default_error_responses(),
)


@router.post("", response_model=GenerationStarted, status_code=status.HTTP_202_ACCEPTED)
async def start_generation(
    request_model: GenerationRequest,
    manager: JobManager = Depends(get_job_manager),
) -> GenerationStarted:
    try:
        job_id = manager.start(request_model.story, request_model.outline)
    except OutlineError as exc:
        raise_validation_error(message=str(exc), details=exc.details)
    return GenerationStarted(job_id=job_id, status=manager.status(job_id).status)


@router.get("/{job_id}", response_model=JobSnapshot)
async def get_generation_status(
    job_id: str,
    manager: JobManager = Depends(get_job_manager),
) -> JobSnapshot:
    """Return the latest snapshot of a job."""

    try:
        return manager.status(job_id)
    except JobNotFoundError as exc:
        raise_not_found(message=str(exc), details={"job_id": job_id})


@router.delete("/{job_id}", response_model=JobSnapshot)
async def cancel_generation(
    job_id: str,
    manager: JobManager = Depends(get_job_manager),
) -> JobSnapshot:
    """Cancel a job; cancelling a finished job returns its final snapshot."""

    try:
        return manager.cancel(job_id)
    except JobNotFoundError as exc:
        raise_not_found(message=str(exc), details={"job_id": job_id})

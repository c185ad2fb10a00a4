"""Outline-only API route."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends

from ..config import ServiceSettings
from ..gateway import GenerationFailed
from ..http import default_error_responses, raise_service_error
from ..jobs import classify_failure
from ..models.requests import OutlineRequest, OutlineResponse
from ..outline_synthesizer import OutlineError, OutlineSynthesizer
from .dependencies import get_outline_synthesizer, get_settings

LOGGER = logging.getLogger(__name__)

__all__ = ["router"]


router = APIRouter(
    prefix="/outline",
    tags=["outline"],
    responses=default_error_responses(),
)


@router.post("", response_model=OutlineResponse)
async def create_outline(
    request_model: OutlineRequest,
    synthesizer: OutlineSynthesizer = Depends(get_outline_synthesizer),
    settings: ServiceSettings = Depends(get_settings),
) -> OutlineResponse:
    """Synthesize an outline without starting chapter drafting."""

    spec = request_model.story
    try:
        async with asyncio.timeout(settings.outline_timeout_seconds):
            entries = await synthesizer.create_outline(spec)
    except TimeoutError:
        LOGGER.warning("Outline request timed out for %s", spec.title)
        raise_service_error(
            code="TIMEOUT",
            message="Outline synthesis timed out.",
            details={"timeout_seconds": settings.outline_timeout_seconds},
        )
    except OutlineError as exc:
        raise_service_error(code="OUTLINE_INVALID", message=str(exc), details=exc.details)
    except GenerationFailed as exc:
        error = classify_failure(exc)
        raise_service_error(
            code=error.code,
            message=error.message,
            details={"operation": error.operation, "attempts": exc.attempts},
        )
    return OutlineResponse(outline=entries)

"""API v1 aggregate router."""

from __future__ import annotations

from fastapi import APIRouter

from .generation import router as generation_router
from .outline import router as outline_router
from .streams import router as streams_router

router = APIRouter(prefix="/api/v1")
router.include_router(outline_router)
router.include_router(generation_router)
router.include_router(streams_router)

__all__ = ["router"]

"""Router package exports."""

from __future__ import annotations

from .api_v1 import router as api_router
from .generation import router as generation_router
from .outline import router as outline_router
from .streams import router as streams_router

__all__ = [
    "api_router",
    "generation_router",
    "outline_router",
    "streams_router",
]

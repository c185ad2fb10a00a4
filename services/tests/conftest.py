"""Pytest configuration for the services test suite."""

from __future__ import annotations

import sys
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient


def _ensure_src_on_path() -> None:
    """Add the services src directory and this directory to ``sys.path``."""

    tests_dir = Path(__file__).resolve().parent
    for candidate in (tests_dir.parent / "src", tests_dir):
        path = str(candidate)
        if candidate.is_dir() and path not in sys.path:
            sys.path.insert(0, path)


_ensure_src_on_path()

from novelsmith.services import metrics  # noqa: E402
from novelsmith.services.config import ServiceSettings  # noqa: E402
from novelsmith.services.settings import Settings  # noqa: E402
from support import ScriptedTransport, fast_settings  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_metrics() -> Iterator[None]:
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture()
def scripted_transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture()
def service_settings() -> ServiceSettings:
    return fast_settings()


@pytest.fixture()
def service_app(
    service_settings: ServiceSettings, scripted_transport: ScriptedTransport
) -> Iterator[FastAPI]:
    """Provide the FastAPI application wired to a scripted completion transport."""

    from novelsmith.services.app import create_app

    endpoint = Settings(openai_api_key="sk-test", completion_base_url="http://llm.invalid/v1")
    app = create_app(service_settings, endpoint=endpoint, transport=scripted_transport)
    yield app
    app.dependency_overrides.clear()


@pytest.fixture()
def test_client(service_app: FastAPI) -> Iterator[TestClient]:
    """Yield a test client bound to the shared FastAPI application."""

    with TestClient(service_app) as client:
        yield client


@pytest.fixture()
async def async_client(service_app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    """Provide an HTTPX async client bound to the FastAPI application."""

    transport = httpx.ASGITransport(app=service_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"

"""Tests for the Novelsmith FastAPI application."""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any
from uuid import UUID

import httpx
import pytest
from fastapi.testclient import TestClient

from novelsmith.services.app import SERVICE_VERSION
from novelsmith.services.gateway import AuthError

from support import ScriptedTransport, make_spec, outline_json

TRACE_HEADER = "x-trace-id"
API_PREFIX = "/api/v1"
TERMINAL_STATUSES = {"completed", "failed", "cancelled"}


def _assert_trace_header(response: Any) -> str:
    """Ensure the response includes a valid trace identifier header."""

    trace_id = response.headers.get(TRACE_HEADER)
    assert trace_id is not None
    UUID(trace_id)
    return trace_id


def _read_error(response: Any) -> dict[str, Any]:
    """Return the structured error payload with validated trace metadata."""

    payload = response.json()
    trace_id = _assert_trace_header(response)
    assert payload["trace_id"] == trace_id
    return payload


def _story(**overrides: Any) -> dict[str, Any]:
    return make_spec(**overrides).model_dump(mode="json")


def _poll(client: TestClient, job_id: str, *, timeout: float = 5.0) -> dict[str, Any]:
    deadline = time.monotonic() + timeout
    while True:
        response = client.get(f"{API_PREFIX}/generation/{job_id}")
        assert response.status_code == 200
        body = response.json()
        if body["status"] in TERMINAL_STATUSES or time.monotonic() > deadline:
            return body
        time.sleep(0.02)


def _parse_sse(body: str) -> list[tuple[str, dict[str, Any]]]:
    events: list[tuple[str, dict[str, Any]]] = []
    for frame in body.split("\n\n"):
        if not frame.strip():
            continue
        lines = dict(line.split(": ", 1) for line in frame.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


def test_service_index_reports_manifest(test_client: TestClient) -> None:
    """Root endpoint returns a manifest to aid manual verification."""

    response = test_client.get("/")
    assert response.status_code == 200
    assert response.json() == {
        "service": "novelsmith",
        "version": SERVICE_VERSION,
        "api_base": "/api/v1",
    }
    _assert_trace_header(response)


def test_supplied_trace_id_is_echoed(test_client: TestClient) -> None:
    trace_id = "1b4e28ba-2fa1-41d2-883f-0016d3cca427"

    response = test_client.get(f"{API_PREFIX}/generation/job-missing", headers={TRACE_HEADER: trace_id})

    assert response.headers[TRACE_HEADER] == trace_id
    assert response.json()["trace_id"] == trace_id


def test_health_reports_configuration_and_sweeper(test_client: TestClient) -> None:
    response = test_client.get(f"{API_PREFIX}/healthz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["version"] == SERVICE_VERSION
    assert payload["model_configured"] is True
    assert payload["jobs_tracked"] == 0
    assert payload["streams_tracked"] == 0
    assert payload["retention_sweeper"] == "running"


def test_metrics_endpoint_uses_prometheus_format(test_client: TestClient) -> None:
    test_client.get(f"{API_PREFIX}/healthz")

    response = test_client.get(f"{API_PREFIX}/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"] == "text/plain; version=0.0.4"
    assert 'novelsmith_requests_total{method="get",status="200"}' in response.text
    assert f'novelsmith_service_info{{version="{SERVICE_VERSION}"}} 1' in response.text


def test_outline_route_returns_entries(test_client: TestClient) -> None:
    response = test_client.post(f"{API_PREFIX}/outline", json={"story": _story(chapters=4)})

    assert response.status_code == 200
    outline = response.json()["outline"]
    assert [entry["index"] for entry in outline] == [1, 2, 3, 4]
    assert all(entry["title"] and entry["summary"] for entry in outline)


def test_outline_route_reports_invalid_outline(
    test_client: TestClient, scripted_transport: ScriptedTransport
) -> None:
    scripted_transport.enqueue(outline_json(2))

    response = test_client.post(f"{API_PREFIX}/outline", json={"story": _story(chapters=3)})

    assert response.status_code == 502
    payload = _read_error(response)
    assert payload["code"] == "OUTLINE_INVALID"
    assert payload["details"] == {"expected": 3, "actual": 2}


def test_outline_route_reports_rejected_credentials(
    test_client: TestClient, scripted_transport: ScriptedTransport
) -> None:
    scripted_transport.enqueue(AuthError("bad key", status_code=401))

    response = test_client.post(f"{API_PREFIX}/outline", json={"story": _story()})

    assert response.status_code == 502
    payload = _read_error(response)
    assert payload["code"] == "MODEL_AUTH"
    assert payload["details"]["operation"] == "outline"


def test_invalid_story_is_rejected_with_validation_envelope(test_client: TestClient) -> None:
    story = _story()
    story["chapters"] = 0

    response = test_client.post(f"{API_PREFIX}/generation", json={"story": story})

    assert response.status_code == 400
    payload = _read_error(response)
    assert payload["code"] == "VALIDATION"
    assert payload["details"]["errors"]


def test_generation_runs_to_completion_and_is_pollable(test_client: TestClient) -> None:
    response = test_client.post(f"{API_PREFIX}/generation", json={"story": _story(chapters=3)})

    assert response.status_code == 202
    started = response.json()
    assert started["status"] == "initialized"
    assert started["job_id"].startswith("job-")

    final = _poll(test_client, started["job_id"])

    assert final["status"] == "completed"
    assert final["progress"] == 100
    assert final["chapters_completed"] == 3
    assert final["delivery"] == "batch"
    assert final["result"]["total_words"] == 1500
    assert [chapter["index"] for chapter in final["result"]["chapters"]] == [1, 2, 3]
    assert final["logs"]


def test_generation_with_supplied_outline(
    test_client: TestClient, scripted_transport: ScriptedTransport
) -> None:
    outline = [
        {"index": 1, "title": "Seed", "summary": "It begins."},
        {"index": 2, "title": "Bloom", "summary": "It ends."},
    ]

    response = test_client.post(
        f"{API_PREFIX}/generation", json={"story": _story(chapters=2), "outline": outline}
    )
    final = _poll(test_client, response.json()["job_id"])

    assert final["status"] == "completed"
    assert [chapter["title"] for chapter in final["result"]["chapters"]] == ["Seed", "Bloom"]
    assert len(scripted_transport.calls) == 2


def test_outline_with_wrong_length_is_rejected(test_client: TestClient) -> None:
    outline = [{"index": 1, "title": "Seed", "summary": "It begins."}]

    response = test_client.post(
        f"{API_PREFIX}/generation", json={"story": _story(chapters=2), "outline": outline}
    )

    assert response.status_code == 400
    assert _read_error(response)["code"] == "VALIDATION"


def test_cancel_generation_is_idempotent(
    test_client: TestClient, scripted_transport: ScriptedTransport
) -> None:
    scripted_transport.delay = 0.2
    job_id = test_client.post(f"{API_PREFIX}/generation", json={"story": _story()}).json()["job_id"]

    first = test_client.delete(f"{API_PREFIX}/generation/{job_id}")
    second = test_client.delete(f"{API_PREFIX}/generation/{job_id}")

    assert first.status_code == 200
    assert first.json()["status"] == "cancelled"
    assert second.json()["status"] == "cancelled"
    assert _poll(test_client, job_id)["status"] == "cancelled"


def test_unknown_job_returns_not_found_envelope(test_client: TestClient) -> None:
    for response in (
        test_client.get(f"{API_PREFIX}/generation/job-missing"),
        test_client.delete(f"{API_PREFIX}/generation/job-missing"),
    ):
        assert response.status_code == 404
        payload = _read_error(response)
        assert payload["code"] == "NOT_FOUND"
        assert payload["details"] == {"job_id": "job-missing"}


def test_stream_delivers_events_until_complete(
    test_client: TestClient, scripted_transport: ScriptedTransport
) -> None:
    scripted_transport.delay = 0.1
    response = test_client.post(f"{API_PREFIX}/streams", json={"story": _story(chapters=2)})

    assert response.status_code == 202
    started = response.json()
    assert started["subscribe_url"] == f"{API_PREFIX}/streams/{started['stream_id']}/events"

    events_response = test_client.get(started["subscribe_url"])

    assert events_response.status_code == 200
    assert events_response.headers["content-type"].startswith("text/event-stream")
    events = _parse_sse(events_response.text)
    names = [name for name, _ in events]
    assert names[0] == "connected"
    assert names[-1] == "complete"
    assert events[-1][1]["result"]["total_chapters"] == 2
    assert all(data["job_id"] == started["job_id"] for _, data in events)
    completed = [data["chapter"] for name, data in events if name == "chapter_complete"]
    assert completed == [1, 2]


def test_subscribing_to_finished_stream_points_at_polling(test_client: TestClient) -> None:
    started = test_client.post(f"{API_PREFIX}/streams", json={"story": _story(chapters=1)}).json()
    assert _poll(test_client, started["job_id"])["status"] == "completed"

    response = test_client.get(started["subscribe_url"])

    assert response.status_code == 409
    payload = _read_error(response)
    assert payload["code"] == "CONFLICT"
    assert payload["details"]["status_url"] == f"{API_PREFIX}/generation/{started['job_id']}"


def test_failover_switches_stream_to_batch(
    test_client: TestClient, scripted_transport: ScriptedTransport
) -> None:
    scripted_transport.delay = 0.05
    started = test_client.post(f"{API_PREFIX}/streams", json={"story": _story(chapters=3)}).json()

    response = test_client.post(
        f"{API_PREFIX}/streams/{started['stream_id']}/failover", json={"reason": "tab closed"}
    )

    assert response.status_code == 200
    outcome = response.json()
    assert outcome["failed_over"] is True
    assert outcome["job_id"] == started["job_id"]
    assert outcome["status_url"] == f"{API_PREFIX}/generation/{started['job_id']}"

    final = _poll(test_client, started["job_id"])
    assert final["status"] == "completed"
    assert final["delivery"] == "batch"
    assert final["chapters_completed"] == 3

    repeat = test_client.post(f"{API_PREFIX}/streams/{started['stream_id']}/failover")
    assert repeat.json()["failed_over"] is False


def test_unknown_stream_returns_not_found(test_client: TestClient) -> None:
    for response in (
        test_client.get(f"{API_PREFIX}/streams/stream-missing/events"),
        test_client.post(f"{API_PREFIX}/streams/stream-missing/failover"),
    ):
        assert response.status_code == 404
        assert _read_error(response)["details"] == {"stream_id": "stream-missing"}


@pytest.mark.anyio
async def test_async_client_polls_generation(async_client: httpx.AsyncClient) -> None:
    response = await async_client.post(f"{API_PREFIX}/generation", json={"story": _story(chapters=2)})
    assert response.status_code == 202
    job_id = response.json()["job_id"]

    body: dict[str, Any] = {}
    for _ in range(200):
        body = (await async_client.get(f"{API_PREFIX}/generation/{job_id}")).json()
        if body["status"] in TERMINAL_STATUSES:
            break
        await asyncio.sleep(0.01)

    assert body["status"] == "completed"
    assert body["result"]["total_chapters"] == 2

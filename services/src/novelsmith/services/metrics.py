"""Lightweight Prometheus-style metrics utilities for the service."""

from __future__ import annotations

from collections import Counter
from threading import Lock
from typing import Iterable

_REQUESTS: Counter[str] = Counter()
_JOBS: Counter[str] = Counter()
_LOCK = Lock()


def record_request(method: str, status_code: int) -> None:
    """Track an HTTP request labelled by method and status code."""

    labels = f'method="{method.lower()}",status="{status_code}"'
    sample = f"novelsmith_requests_total{{{labels}}}"
    with _LOCK:
        _REQUESTS[sample] += 1


def record_job(status: str, *, delivery: str) -> None:
    """Track a job reaching a terminal status."""

    sample = f'novelsmith_jobs_total{{status="{status}",delivery="{delivery}"}}'
    with _LOCK:
        _JOBS[sample] += 1


def reset() -> None:
    with _LOCK:
        _REQUESTS.clear()
        _JOBS.clear()


def _snapshot(counter: Counter[str]) -> Iterable[tuple[str, int]]:
    """Yield a snapshot of recorded counters in sorted order."""

    with _LOCK:
        return sorted(counter.items())


def render(service_version: str) -> str:
    """Render metrics using the Prometheus text exposition format."""

    lines = [
        "# HELP novelsmith_requests_total Count of HTTP requests processed by the Novelsmith service",
        "# TYPE novelsmith_requests_total counter",
    ]
    requests = list(_snapshot(_REQUESTS))
    for sample, value in requests:
        lines.append(f"{sample} {value}")
    if not requests:
        lines.append('novelsmith_requests_total{method="none",status="0"} 0')

    lines.extend(
        [
            "# HELP novelsmith_jobs_total Count of generation jobs by terminal status",
            "# TYPE novelsmith_jobs_total counter",
        ]
    )
    for sample, value in _snapshot(_JOBS):
        lines.append(f"{sample} {value}")

    lines.extend(
        [
            "# HELP novelsmith_service_info Static service metadata",
            "# TYPE novelsmith_service_info gauge",
            f'novelsmith_service_info{{version="{service_version}"}} 1',
        ]
    )
    return "\n".join(lines) + "\n"


__all__ = ["record_job", "record_request", "render", "reset"]

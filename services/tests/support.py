"""Shared builders and fakes for the services test suite."""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Callable
from typing import Any

from novelsmith.services.chapter_drafter import ChapterDrafter, QualityGate
from novelsmith.services.config import ServiceSettings
from novelsmith.services.gateway import CompletionGateway, CompletionOptions, GatewayPolicy
from novelsmith.services.jobs import JobManager
from novelsmith.services.models.story import StorySpec
from novelsmith.services.outline_synthesizer import OutlineSynthesizer
from novelsmith.services.pipeline import GenerationPipeline
from novelsmith.services.recovery import RecoveryCoordinator
from novelsmith.services.registry import JobRegistry
from novelsmith.services.streams import StreamBroker, StreamRegistry

_CHAPTER_COUNT_RE = re.compile(r"Create exactly (\d+) chapter outlines")
_CHAPTER_INDEX_RE = re.compile(r"writing Chapter (\d+) of")

Responder = Callable[[str, CompletionOptions], str]


def words(count: int, token: str = "word") -> str:
    """Return prose of exactly ``count`` whitespace-separated words."""

    return " ".join(f"{token}{index}" for index in range(count))


def outline_json(count: int) -> str:
    entries = [
        {"title": f"Chapter Title {index}", "summary": f"Events of chapter {index} unfold."}
        for index in range(1, count + 1)
    ]
    return json.dumps(entries)


def is_outline_prompt(prompt: str) -> bool:
    return _CHAPTER_COUNT_RE.search(prompt) is not None


def chapter_index(prompt: str) -> int:
    match = _CHAPTER_INDEX_RE.search(prompt)
    assert match is not None, "not a chapter prompt"
    return int(match.group(1))


def novel_responder(words_per_chapter: int = 500) -> Responder:
    """Answer outline prompts with a valid outline and chapter prompts with prose."""

    def respond(prompt: str, options: CompletionOptions) -> str:
        match = _CHAPTER_COUNT_RE.search(prompt)
        if match is not None:
            return outline_json(int(match.group(1)))
        index = chapter_index(prompt)
        return words(words_per_chapter, token=f"c{index}w")

    return respond


class ScriptedTransport:
    """Completion transport that replays queued outcomes, then falls back to a responder."""

    def __init__(self, responder: Responder | None = None, *, delay: float = 0.0) -> None:
        self.responder = responder or novel_responder()
        self.delay = delay
        self.queue: list[str | BaseException] = []
        self.calls: list[tuple[str, CompletionOptions]] = []

    def enqueue(self, *outcomes: str | BaseException) -> "ScriptedTransport":
        self.queue.extend(outcomes)
        return self

    async def complete(self, prompt: str, options: CompletionOptions) -> str:
        self.calls.append((prompt, options))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.queue:
            outcome = self.queue.pop(0)
        else:
            outcome = self.responder(prompt, options)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    @property
    def chapter_calls(self) -> list[tuple[str, CompletionOptions]]:
        return [call for call in self.calls if not is_outline_prompt(call[0])]


def make_spec(**overrides: Any) -> StorySpec:
    data: dict[str, Any] = {
        "title": "The Glass Orchard",
        "genre": "fantasy",
        "subgenre": "epic",
        "synopsis": "A gardener discovers the orchard grows memories instead of fruit.",
        "chapters": 3,
        "target_chapter_length": 500,
        "chapter_variance": 100,
    }
    data.update(overrides)
    return StorySpec(**data)


def fast_settings(**overrides: Any) -> ServiceSettings:
    """Service settings with every delay removed."""

    data: dict[str, Any] = {
        "inter_chapter_delay_seconds": 0.0,
        "completion_backoff_seconds": 0.0,
        "completion_backoff_max_seconds": 0.0,
    }
    data.update(overrides)
    return ServiceSettings(**data)


class Stack:
    """The orchestration components wired together the way the app wires them."""

    def __init__(self, transport: ScriptedTransport, settings: ServiceSettings | None = None) -> None:
        self.transport = transport
        self.settings = settings or fast_settings()
        self.gateway = CompletionGateway(
            transport, policy=GatewayPolicy.from_service_settings(self.settings)
        )
        self.synthesizer = OutlineSynthesizer(self.gateway)
        self.drafter = ChapterDrafter(
            self.gateway,
            quality_gate=QualityGate(max_attempts=self.settings.chapter_max_attempts),
        )
        self.pipeline = GenerationPipeline(
            self.synthesizer,
            self.drafter,
            outline_step_attempts=self.settings.outline_step_attempts,
            inter_chapter_delay_seconds=self.settings.inter_chapter_delay_seconds,
        )
        self.jobs = JobRegistry(retention_seconds=self.settings.job_retention_seconds)
        self.manager = JobManager(self.jobs, self.pipeline, settings=self.settings)
        self.streams = StreamRegistry(retention_seconds=self.settings.job_retention_seconds)
        self.broker = StreamBroker(self.streams, self.manager, settings=self.settings)
        self.recovery = RecoveryCoordinator(
            self.manager,
            self.broker,
            stall_timeout=self.settings.stall_timeout_seconds,
        )

    async def close(self) -> None:
        await self.recovery.shutdown()
        self.broker.shutdown()
        await self.manager.shutdown()

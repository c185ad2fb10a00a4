"""Chapter drafting with a word-count quality gate and bounded re-drafts."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Sequence

from .events import ProgressReporter
from .gateway import CompletionGateway, CompletionOptions
from .models.events import StreamEventType
from .models.story import Chapter, OutlineEntry, StorySpec, count_words
from .prompts import RetryHint, build_chapter_prompt, chapter_length_target
from .resilience import bounded_retry

LOGGER = logging.getLogger(__name__)

FIRST_DRAFT_TEMPERATURE = 0.8
RETRY_TEMPERATURE = 0.7
TOKENS_PER_WORD = 1.3
DEFAULT_MAX_OUTPUT_TOKENS = 4000


@dataclass(frozen=True)
class QualityGate:
    """Word-count gate; ``max_attempts`` counts the first draft plus re-drafts.

    The default of 2 allows a single re-draft, so a chapter that stays short
    is accepted after two passes. A cap of "2 retries" (three drafts in all)
    is ``max_attempts=3``, set with ``NOVELSMITH_CHAPTER_MAX_ATTEMPTS=3``.
    """

    max_attempts: int = 2

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be at least 1")

    def accepts(self, draft: "Draft") -> bool:
        return draft.word_count >= draft.minimum_words


@dataclass(frozen=True)
class AttemptContext:
    attempt: int = 1
    previous_word_count: int | None = None

    @property
    def is_retry(self) -> bool:
        return self.attempt > 1


@dataclass(frozen=True)
class Draft:
    """One drafting attempt, discarded unless the gate (or the cap) accepts it."""

    content: str
    word_count: int
    minimum_words: int
    attempt: int


def output_token_budget(maximum_words: int, *, cap: int = DEFAULT_MAX_OUTPUT_TOKENS) -> int:
    return min(cap, math.ceil(maximum_words * TOKENS_PER_WORD))


class ChapterDrafter:
    """Draft one outline entry into an accepted :class:`Chapter`."""

    def __init__(
        self,
        gateway: CompletionGateway,
        *,
        quality_gate: QualityGate | None = None,
        max_output_tokens_cap: int = DEFAULT_MAX_OUTPUT_TOKENS,
        model: str | None = None,
    ) -> None:
        self._gateway = gateway
        self._gate = quality_gate or QualityGate()
        self._token_cap = max_output_tokens_cap
        self._model = model

    @property
    def quality_gate(self) -> QualityGate:
        return self._gate

    async def draft_attempt(
        self,
        spec: StorySpec,
        entry: OutlineEntry,
        prior_chapters: Sequence[Chapter],
        context: AttemptContext,
    ) -> Draft:
        """Run a single drafting pass against the bounds for ``context``."""

        bounds = chapter_length_target(spec, is_retry=context.is_retry)
        hint: RetryHint | None = None
        if context.is_retry and context.previous_word_count is not None:
            hint = RetryHint(
                previous_word_count=context.previous_word_count,
                minimum_words=bounds.minimum,
            )
        prompt = build_chapter_prompt(spec, entry, prior_chapters, hint)
        options = CompletionOptions(
            max_output_tokens=output_token_budget(bounds.maximum, cap=self._token_cap),
            temperature=RETRY_TEMPERATURE if context.is_retry else FIRST_DRAFT_TEMPERATURE,
            model=self._model,
        )
        text = await self._gateway.request(prompt, options, operation=f"chapter-{entry.index}")
        content = text.strip()
        draft = Draft(
            content=content,
            word_count=count_words(content),
            minimum_words=bounds.minimum,
            attempt=context.attempt,
        )
        LOGGER.info(
            "chapter.attempt",
            extra={
                "extra_payload": {
                    "chapter": entry.index,
                    "attempt": context.attempt,
                    "word_count": draft.word_count,
                    "minimum_words": bounds.minimum,
                    "target": bounds.target,
                }
            },
        )
        return draft

    async def draft_chapter(
        self,
        spec: StorySpec,
        entry: OutlineEntry,
        prior_chapters: Sequence[Chapter],
        *,
        reporter: ProgressReporter | None = None,
    ) -> Chapter:
        """Draft ``entry``, re-drafting short attempts until the cap is reached.

        A draft that is still short after the last allowed attempt is accepted
        with ``meets_target=False``. ``GenerationFailed`` from the gateway
        propagates unchanged.
        """

        drafts: list[Draft] = []

        async def attempt(number: int) -> Draft:
            previous = drafts[-1].word_count if drafts else None
            context = AttemptContext(attempt=number, previous_word_count=previous)
            if reporter is not None:
                if context.is_retry:
                    message = (
                        f"Re-drafting Chapter {entry.index}: {entry.title} "
                        f"(previous attempt {previous} words)"
                    )
                else:
                    message = f"Writing Chapter {entry.index}: {entry.title}"
                reporter.report(
                    StreamEventType.CHAPTER_WRITING,
                    message,
                    chapter=entry.index,
                    attempt=number,
                )
            draft = await self.draft_attempt(spec, entry, prior_chapters, context)
            drafts.append(draft)
            if reporter is not None and not self._gate.accepts(draft) and number < self._gate.max_attempts:
                reporter.report(
                    StreamEventType.PROCESS_UPDATE,
                    f"Chapter {entry.index} came in at {draft.word_count} words, "
                    f"below the minimum of {draft.minimum_words}; retrying",
                    level="warning",
                    chapter=entry.index,
                    word_count=draft.word_count,
                )
            return draft

        outcome = await bounded_retry(
            attempt,
            max_attempts=self._gate.max_attempts,
            accept=self._gate.accepts,
            label=f"chapter-{entry.index}",
        )
        draft = outcome.value
        meets_target = self._gate.accepts(draft)
        if not meets_target:
            LOGGER.warning(
                "chapter.short_accepted",
                extra={
                    "extra_payload": {
                        "chapter": entry.index,
                        "word_count": draft.word_count,
                        "minimum_words": draft.minimum_words,
                        "attempts": outcome.attempts,
                    }
                },
            )
            if reporter is not None:
                reporter.report(
                    StreamEventType.PROCESS_UPDATE,
                    f"Chapter {entry.index} accepted below target "
                    f"({draft.word_count} of {draft.minimum_words} words)",
                    level="warning",
                    chapter=entry.index,
                    word_count=draft.word_count,
                )

        return Chapter(
            index=entry.index,
            title=entry.title,
            summary=entry.summary,
            content=draft.content,
            word_count=draft.word_count,
            meets_target=meets_target,
            retry_count=outcome.attempts - 1,
        )


__all__ = [
    "AttemptContext",
    "ChapterDrafter",
    "Draft",
    "QualityGate",
    "output_token_budget",
]

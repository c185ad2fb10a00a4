"""Prompt construction for outline synthesis and chapter drafting.

Every builder here is pure: the same inputs always produce the same prompt
text, and nothing touches the network or the job state.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from .models.story import Chapter, OutlineEntry, StorySpec

RETRY_MINIMUM_RATIO = 0.90
RECENT_CHAPTERS_IN_FULL = 2
SUMMARY_FALLBACK_CHARS = 300

_EXPANSION_STRATEGIES = (
    "Expand scenes with more concrete detail and dialogue.",
    "Add character development and internal thoughts.",
    "Include richer description and world-building.",
    "Develop every story beat from the outline completely.",
)


@dataclass(frozen=True)
class LengthTarget:
    """Word-count bounds for one drafting attempt."""

    target: int
    minimum: int
    maximum: int


@dataclass(frozen=True)
class RetryHint:
    """Shortfall of the previous attempt, carried into the re-draft prompt."""

    previous_word_count: int
    minimum_words: int

    @property
    def shortfall(self) -> int:
        return max(0, self.minimum_words - self.previous_word_count)


def chapter_length_target(spec: StorySpec, *, is_retry: bool = False) -> LengthTarget:
    """Return the quality-gate bounds for a chapter of ``spec``.

    A first attempt must reach ``target - variance``; a re-draft is held to 90%
    of the target.
    """

    target = spec.target_chapter_length
    variance = spec.variance
    if is_retry:
        minimum = math.ceil(target * RETRY_MINIMUM_RATIO)
    else:
        minimum = max(0, target - variance)
    return LengthTarget(target=target, minimum=minimum, maximum=target + variance)


def _genre_label(spec: StorySpec) -> str:
    if spec.subgenre:
        return f"{spec.genre} ({spec.subgenre})"
    return spec.genre


def _genre_section(spec: StorySpec) -> str:
    if not spec.genre_instructions.strip():
        return ""
    return f"GENRE GUIDELINES:\n{spec.genre_instructions.strip()}\n\n"


def build_outline_prompt(spec: StorySpec) -> str:
    """Ask for a JSON array of exactly ``spec.chapters`` title/summary objects."""

    return (
        f'You are planning the {spec.fiction_length} "{spec.title}".\n\n'
        "STORY DETAILS:\n"
        f"- Genre: {_genre_label(spec)}\n"
        f"- Total word count: {spec.total_words:,}\n"
        f"- Number of chapters: {spec.chapters}\n"
        f"- Target chapter length: {spec.target_chapter_length} words each\n"
        f"- Synopsis: {spec.synopsis.strip()}\n\n"
        f"{_genre_section(spec)}"
        "REQUIREMENTS:\n"
        f"1. Create exactly {spec.chapters} chapter outlines.\n"
        f"2. Each chapter must hold enough events and scenes to fill {spec.target_chapter_length} words of prose.\n"
        f"3. Pace the story for a {spec.fiction_length} and build toward a satisfying conclusion.\n"
        "4. Give each chapter clear objectives, conflict and emotional beats.\n\n"
        "OUTPUT FORMAT:\n"
        "Respond with ONLY a JSON array in exactly this shape and no other text:\n"
        "[\n"
        '  {"title": "Chapter Title", "summary": "Two or three sentences describing what happens."}\n'
        "]\n"
        f"The array must contain exactly {spec.chapters} objects, in chapter order."
    )


def _prior_context(prior_chapters: Sequence[Chapter]) -> str:
    if not prior_chapters:
        return ""
    older = prior_chapters[:-RECENT_CHAPTERS_IN_FULL]
    recent = prior_chapters[-RECENT_CHAPTERS_IN_FULL:]

    sections: list[str] = []
    if older:
        summaries = []
        for chapter in older:
            summary = chapter.summary.strip() or chapter.content[:SUMMARY_FALLBACK_CHARS] + "..."
            summaries.append(f"CHAPTER {chapter.index}: {chapter.title}\nSummary: {summary}")
        sections.append("EARLIER CHAPTERS (SUMMARY):\n" + "\n\n".join(summaries))
    full_text = "\n---\n\n".join(
        f"CHAPTER {chapter.index}: {chapter.title}\n{chapter.content}" for chapter in recent
    )
    sections.append("RECENT CHAPTERS (FULL TEXT):\n" + full_text)
    return "STORY SO FAR:\n" + "\n\n---\n\n".join(sections) + "\n\n"


def _retry_section(hint: RetryHint, bounds: LengthTarget) -> str:
    strategies = "\n".join(f"- {line}" for line in _EXPANSION_STRATEGIES)
    return (
        "\n\nRETRY NOTICE: The previous attempt produced only "
        f"{hint.previous_word_count} words, {hint.shortfall} short of the minimum.\n"
        f"This chapter MUST contain at least {hint.minimum_words} words. "
        f"Aim for {bounds.target} words.\n"
        f"{strategies}"
    )


def build_chapter_prompt(
    spec: StorySpec,
    entry: OutlineEntry,
    prior_chapters: Sequence[Chapter],
    retry_hint: RetryHint | None = None,
) -> str:
    """Build the drafting prompt for ``entry``.

    The two most recent prior chapters are embedded in full; earlier ones only
    by summary so the request stays bounded as the manuscript grows.
    """

    bounds = chapter_length_target(spec, is_retry=retry_hint is not None)
    retry = _retry_section(retry_hint, bounds) if retry_hint is not None else ""
    return (
        f'You are a novelist writing Chapter {entry.index} of the {spec.fiction_length} "{spec.title}".\n\n'
        "STORY OVERVIEW:\n"
        f"- Genre: {_genre_label(spec)}\n"
        f"- Synopsis: {spec.synopsis.strip()}\n\n"
        f"{_genre_section(spec)}"
        "CHAPTER REQUIREMENTS:\n"
        f"- Title: {entry.title}\n"
        f"- Story content to include: {entry.summary}\n"
        f"- Word count target: {bounds.target} words "
        f"(minimum {bounds.minimum}, maximum {bounds.maximum})\n"
        f"- This is chapter {entry.index} of {spec.chapters}.{retry}\n\n"
        f"{_prior_context(prior_chapters)}"
        "WRITING INSTRUCTIONS:\n"
        f"1. Expand the outline into a complete chapter of about {bounds.target} words.\n"
        "2. Stay consistent with the previous chapters.\n"
        "3. Show, don't tell: use vivid scenes and dialogue.\n"
        f"4. Follow the conventions of {spec.genre}.\n"
        "5. End with tension or resolution appropriate to the chapter's position.\n\n"
        "Write the chapter prose only, without a chapter heading or number."
    )


__all__ = [
    "LengthTarget",
    "RetryHint",
    "build_chapter_prompt",
    "build_outline_prompt",
    "chapter_length_target",
]

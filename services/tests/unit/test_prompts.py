"""Prompt builders are pure functions of the story and prior chapters."""

from __future__ import annotations

from novelsmith.services.models.story import Chapter, OutlineEntry
from novelsmith.services.prompts import (
    RetryHint,
    build_chapter_prompt,
    build_outline_prompt,
    chapter_length_target,
)

from support import make_spec, words


def _chapter(index: int, *, summary: str = "", content: str | None = None) -> Chapter:
    text = content if content is not None else words(50, token=f"body{index}-")
    return Chapter(
        index=index,
        title=f"Title {index}",
        summary=summary,
        content=text,
        word_count=len(text.split()),
        meets_target=True,
    )


def test_length_target_uses_variance_then_ninety_percent_on_retry() -> None:
    spec = make_spec(target_chapter_length=2000, chapter_variance=300)

    first = chapter_length_target(spec)
    retry = chapter_length_target(spec, is_retry=True)

    assert (first.target, first.minimum, first.maximum) == (2000, 1700, 2300)
    assert (retry.target, retry.minimum, retry.maximum) == (2000, 1800, 2300)


def test_length_target_defaults_variance_to_fifteen_percent() -> None:
    spec = make_spec(target_chapter_length=1000, chapter_variance=None)

    assert spec.variance == 150
    assert chapter_length_target(spec).minimum == 850


def test_outline_prompt_requests_exact_chapter_count_as_json() -> None:
    spec = make_spec(chapters=7, genre_instructions="Keep magic costly.")

    prompt = build_outline_prompt(spec)

    assert "Create exactly 7 chapter outlines" in prompt
    assert "JSON array" in prompt
    assert spec.synopsis in prompt
    assert "Keep magic costly." in prompt
    assert prompt == build_outline_prompt(spec)


def test_chapter_prompt_embeds_two_recent_chapters_and_summarises_older_ones() -> None:
    spec = make_spec(chapters=5)
    entry = OutlineEntry(index=5, title="Harvest", summary="The orchard is burned.")
    long_opening = "x" * 400
    prior = [
        _chapter(1, summary="Mara finds the orchard."),
        _chapter(2, content=long_opening),
        _chapter(3),
        _chapter(4),
    ]

    prompt = build_chapter_prompt(spec, entry, prior)

    assert prompt.startswith('You are a novelist writing Chapter 5 of the novel "The Glass Orchard"')
    assert "Summary: Mara finds the orchard." in prompt
    assert f"Summary: {'x' * 300}..." in prompt
    assert long_opening not in prompt
    assert prior[2].content in prompt
    assert prior[3].content in prompt
    assert prior[0].content not in prompt
    assert "Word count target: 500 words (minimum 400, maximum 600)" in prompt
    assert "RETRY NOTICE" not in prompt


def test_chapter_prompt_for_first_chapter_has_no_prior_context() -> None:
    spec = make_spec()
    entry = OutlineEntry(index=1, title="Seed", summary="It begins.")

    prompt = build_chapter_prompt(spec, entry, [])

    assert "STORY SO FAR" not in prompt
    assert "Story content to include: It begins." in prompt


def test_retry_prompt_states_previous_shortfall() -> None:
    spec = make_spec(target_chapter_length=2000, chapter_variance=300)
    entry = OutlineEntry(index=1, title="Seed", summary="It begins.")

    prompt = build_chapter_prompt(
        spec, entry, [], RetryHint(previous_word_count=1200, minimum_words=1800)
    )

    assert "RETRY NOTICE: The previous attempt produced only 1200 words, 600 short" in prompt
    assert "at least 1800 words" in prompt
    assert "(minimum 1800, maximum 2300)" in prompt

"""Pydantic models describing the story request and its drafted artifacts."""

from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_VARIANCE_RATIO = 0.15


class StorySpec(BaseModel):
    """Immutable description of the novel a caller wants generated."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    title: str = Field(min_length=1)
    genre: str = Field(min_length=1)
    subgenre: str | None = None
    synopsis: str = Field(min_length=1)
    chapters: int = Field(ge=1)
    target_chapter_length: int = Field(ge=1)
    target_word_count: int | None = Field(default=None, ge=1)
    chapter_variance: int | None = Field(default=None, ge=0)
    genre_instructions: str = ""
    fiction_length: str = "novel"

    @model_validator(mode="after")
    def _reject_blank_text(self) -> "StorySpec":
        if not self.title.strip():
            msg = "Story title must not be blank."
            raise ValueError(msg)
        if not self.synopsis.strip():
            msg = "Story synopsis must not be blank."
            raise ValueError(msg)
        return self

    @property
    def total_words(self) -> int:
        """Target length of the whole manuscript."""

        if self.target_word_count is not None:
            return self.target_word_count
        return self.chapters * self.target_chapter_length

    @property
    def variance(self) -> int:
        """Allowed chapter-length variance, defaulting to 15% of the target."""

        if self.chapter_variance is not None:
            return self.chapter_variance
        return math.floor(self.target_chapter_length * DEFAULT_VARIANCE_RATIO)


class OutlineEntry(BaseModel):
    """Title and summary for a single chapter."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=1)
    title: str = Field(min_length=1)
    summary: str = Field(min_length=1)


class Chapter(BaseModel):
    """An accepted chapter. Never mutated once appended to a job."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=1)
    title: str
    summary: str = ""
    content: str
    word_count: int = Field(ge=0)
    meets_target: bool
    retry_count: int = Field(default=0, ge=0)


def count_words(text: str) -> int:
    """Measure prose length by whitespace tokenisation."""

    return len(text.split())


__all__ = ["Chapter", "OutlineEntry", "StorySpec", "count_words"]

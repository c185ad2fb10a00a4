"""Outline synthesis: one completion turned into validated chapter entries."""

from __future__ import annotations

import json
import logging
from typing import Any, Sequence

from .gateway import CompletionGateway, CompletionOptions
from .models.story import OutlineEntry, StorySpec
from .prompts import build_outline_prompt

LOGGER = logging.getLogger(__name__)

OUTLINE_TEMPERATURE = 0.3
OUTLINE_MAX_OUTPUT_TOKENS = 4000


class OutlineError(RuntimeError):
    """Raised when the outline response cannot be turned into valid entries."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class OutlineParseError(OutlineError):
    """The response held no usable JSON array of title/summary objects."""


class OutlineCountMismatch(OutlineError):
    """The response held the wrong number of chapters."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Expected {expected} chapters, got {actual}.",
            details={"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual


def _first_json_array(text: str) -> list[Any] | None:
    decoder = json.JSONDecoder()
    position = text.find("[")
    while position != -1:
        try:
            value, _ = decoder.raw_decode(text, position)
        except json.JSONDecodeError:
            position = text.find("[", position + 1)
            continue
        if isinstance(value, list):
            return value
        position = text.find("[", position + 1)
    return None


def parse_outline(text: str, *, expected: int) -> list[OutlineEntry]:
    """Parse a completion body into exactly ``expected`` outline entries.

    The whole body is tried as JSON first; when that fails or yields something
    other than an array, the first well-formed array embedded in the text is
    used, so `{"chapters": [...]}` is accepted too.
    """

    try:
        payload: Any = json.loads(text)
    except json.JSONDecodeError:
        payload = _first_json_array(text)
        if payload is None:
            raise OutlineParseError(
                "Could not find a JSON array in the outline response.",
                details={"response_preview": text[:200]},
            ) from None

    if not isinstance(payload, list):
        embedded = _first_json_array(text)
        if embedded is None:
            raise OutlineParseError(
                "Outline response was not a JSON array.",
                details={"type": type(payload).__name__},
            )
        payload = embedded
    if len(payload) != expected:
        raise OutlineCountMismatch(expected, len(payload))

    entries: list[OutlineEntry] = []
    for index, item in enumerate(payload, start=1):
        if not isinstance(item, dict):
            raise OutlineParseError(
                "Outline entry is not an object.", details={"index": index}
            )
        title = str(item.get("title") or "").strip()
        summary = str(item.get("summary") or "").strip()
        if not title or not summary:
            raise OutlineParseError(
                "Outline entry is missing a title or summary.",
                details={"index": index},
            )
        entries.append(OutlineEntry(index=index, title=title, summary=summary))
    return entries


def validate_outline(entries: Sequence[OutlineEntry], *, expected: int) -> list[OutlineEntry]:
    """Check a caller-supplied outline: exact count, indices contiguous from 1."""

    if len(entries) != expected:
        raise OutlineCountMismatch(expected, len(entries))
    for position, entry in enumerate(entries, start=1):
        if entry.index != position:
            raise OutlineParseError(
                "Outline indices must be contiguous and start at 1.",
                details={"position": position, "index": entry.index},
            )
    return list(entries)


class OutlineSynthesizer:
    """Produce the ordered chapter plan for a story."""

    def __init__(self, gateway: CompletionGateway, *, model: str | None = None) -> None:
        self._gateway = gateway
        self._model = model

    async def create_outline(self, spec: StorySpec) -> list[OutlineEntry]:
        """Request and validate an outline; no retry happens at this layer."""

        prompt = build_outline_prompt(spec)
        options = CompletionOptions(
            max_output_tokens=OUTLINE_MAX_OUTPUT_TOKENS,
            temperature=OUTLINE_TEMPERATURE,
            model=self._model,
        )
        text = await self._gateway.request(prompt, options, operation="outline")
        try:
            entries = parse_outline(text, expected=spec.chapters)
        except OutlineError as exc:
            LOGGER.warning(
                "outline.invalid",
                extra={
                    "extra_payload": {
                        "title": spec.title,
                        "error": str(exc),
                        **exc.details,
                    }
                },
            )
            raise
        LOGGER.info(
            "outline.created",
            extra={"extra_payload": {"title": spec.title, "chapters": len(entries)}},
        )
        return entries


__all__ = [
    "OutlineCountMismatch",
    "OutlineError",
    "OutlineParseError",
    "OutlineSynthesizer",
    "parse_outline",
    "validate_outline",
]

"""In-memory registries for jobs and stream sessions with a retention window."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Callable, Generic, Protocol, TypeVar

from .models.jobs import GenerationJob

LOGGER = logging.getLogger(__name__)


class Retainable(Protocol):
    @property
    def finished_at(self) -> float | None:
        ...


T = TypeVar("T", bound=Retainable)


class RegistryLookupError(KeyError):
    """Raised when an identifier is unknown or already swept."""

    kind = "record"

    def __init__(self, identifier: str) -> None:
        super().__init__(identifier)
        self.identifier = identifier

    def __str__(self) -> str:
        return f"Unknown {self.kind} '{self.identifier}'."


class JobNotFoundError(RegistryLookupError):
    kind = "job"


class StreamNotFoundError(RegistryLookupError):
    kind = "stream"


class Registry(Generic[T]):
    """Owned identifier map: create, get, replace, delete and sweep.

    Records become eligible for sweeping ``retention_seconds`` after their
    ``finished_at`` timestamp. All mutations hold the registry lock, so the
    background sweeper can run alongside the event loop.
    """

    prefix = "rec"
    not_found: type[RegistryLookupError] = RegistryLookupError

    def __init__(
        self,
        *,
        retention_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if retention_seconds < 0:
            raise ValueError("retention_seconds may not be negative.")
        self._items: dict[str, T] = {}
        self._lock = threading.Lock()
        self._retention = retention_seconds
        self._clock = clock

    def new_id(self) -> str:
        return f"{self.prefix}-{uuid.uuid4().hex[:12]}"

    def create(self, factory: Callable[[str], T]) -> T:
        """Allocate an identifier, build the record with it, and store it."""

        with self._lock:
            identifier = self.new_id()
            while identifier in self._items:
                identifier = self.new_id()
            item = factory(identifier)
            self._items[identifier] = item
        return item

    def get(self, identifier: str) -> T:
        with self._lock:
            try:
                return self._items[identifier]
            except KeyError:
                raise self.not_found(identifier) from None

    def find(self, identifier: str) -> T | None:
        with self._lock:
            return self._items.get(identifier)

    def replace(self, identifier: str, item: T) -> None:
        with self._lock:
            if identifier not in self._items:
                raise self.not_found(identifier)
            self._items[identifier] = item

    def delete(self, identifier: str) -> bool:
        with self._lock:
            return self._items.pop(identifier, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, identifier: object) -> bool:
        with self._lock:
            return identifier in self._items

    def values(self) -> list[T]:
        with self._lock:
            return list(self._items.values())

    def collect_expired(self, *, now: float | None = None) -> list[str]:
        """Remove records finished longer ago than the retention window."""

        reference = self._clock() if now is None else now
        with self._lock:
            expired = [
                identifier
                for identifier, item in self._items.items()
                if item.finished_at is not None and reference - item.finished_at >= self._retention
            ]
            for identifier in expired:
                del self._items[identifier]
        if expired:
            LOGGER.info(
                "registry.swept",
                extra={"extra_payload": {"registry": self.prefix, "removed": len(expired)}},
            )
        return expired


class JobRegistry(Registry[GenerationJob]):
    prefix = "job"
    not_found = JobNotFoundError


__all__ = [
    "JobNotFoundError",
    "JobRegistry",
    "Registry",
    "RegistryLookupError",
    "StreamNotFoundError",
]

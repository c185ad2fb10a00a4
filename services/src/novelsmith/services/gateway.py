"""Completion gateway: one request/response contract over an LLM endpoint."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from .resilience import (
    BackoffStrategy,
    ExponentialBackoff,
    FixedBackoff,
    LinearBackoff,
    RetryExhausted,
    bounded_retry,
)
from .settings import Settings

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class CompletionOptions:
    """Sampling parameters for a single completion request."""

    max_output_tokens: int
    temperature: float
    model: str | None = None

    def __post_init__(self) -> None:
        if self.max_output_tokens <= 0:
            raise ValueError("max_output_tokens must be greater than zero.")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError("temperature must be between 0 and 2.")


class CompletionError(RuntimeError):
    """Base class for failures reported by a completion transport."""

    retryable: bool = True

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthError(CompletionError):
    """The endpoint rejected our credentials (401/403)."""

    retryable = False


class CompletionValidationError(CompletionError):
    """The endpoint rejected the request itself (any other 4xx)."""

    retryable = False


class RateLimitedError(CompletionError):
    """The endpoint asked us to slow down (429)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = 429,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class ServerError(CompletionError):
    """The endpoint failed (5xx)."""


class UpstreamTimeoutError(ServerError):
    """The per-request hard timeout elapsed."""


class UnknownCompletionError(CompletionError):
    """Transport failure or a response we could not interpret."""


class GenerationFailed(RuntimeError):
    """Raised when a completion could not be obtained within the attempt budget."""

    def __init__(self, operation: str, last_error: BaseException, attempts: int) -> None:
        super().__init__(f"{operation} failed after {attempts} attempt(s): {last_error}")
        self.operation = operation
        self.last_error = last_error
        self.attempts = attempts

    @property
    def fatal(self) -> bool:
        return isinstance(self.last_error, CompletionError) and not self.last_error.retryable


class CompletionTransport(Protocol):
    """Anything that can turn a prompt into generated text."""

    async def complete(self, prompt: str, options: CompletionOptions) -> str:
        ...


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class OpenAICompatibleTransport:
    """Chat-completions transport over ``httpx``."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None,
        default_model: str,
        timeout_seconds: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._default_model = default_model
        self._timeout = timeout_seconds
        self._client = client
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: Settings, *, model: str | None = None) -> "OpenAICompatibleTransport":
        return cls(
            base_url=settings.completion_base_url,
            api_key=settings.openai_api_key,
            default_model=model or settings.chapter_model,
            timeout_seconds=settings.request_timeout_seconds,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def complete(self, prompt: str, options: CompletionOptions) -> str:
        body: dict[str, Any] = {
            "model": options.model or self._default_model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": options.max_output_tokens,
            "temperature": options.temperature,
        }
        try:
            response = await self._get_client().post(
                f"{self._base_url}/chat/completions",
                json=body,
                headers=self._headers(),
            )
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError(f"Completion request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise UnknownCompletionError(f"Completion transport failed: {exc}") from exc

        self._raise_for_status(response)

        try:
            payload = response.json()
            content = payload["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise UnknownCompletionError(
                "Completion response did not contain choices[0].message.content.",
                status_code=response.status_code,
            ) from exc
        if not isinstance(content, str):
            raise UnknownCompletionError(
                "Completion content was not text.", status_code=response.status_code
            )
        return content

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        code = response.status_code
        if code < 400:
            return
        detail = response.text[:200]
        if code in (401, 403):
            raise AuthError(f"Completion endpoint rejected credentials ({code}).", status_code=code)
        if code == 429:
            raise RateLimitedError(
                "Completion endpoint rate limited the request.",
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
            )
        if code >= 500:
            raise ServerError(f"Completion endpoint error ({code}): {detail}", status_code=code)
        raise CompletionValidationError(
            f"Completion endpoint rejected the request ({code}): {detail}", status_code=code
        )


@dataclass(frozen=True)
class GatewayPolicy:
    """Retry budget and backoff strategies per error class."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    timeout_seconds: float = 120.0
    rate_limit_backoff: BackoffStrategy = LinearBackoff(step=2.0, max_interval=30.0)
    server_backoff: BackoffStrategy = ExponentialBackoff(multiplier=1.0, min_interval=1.0, max_interval=30.0)
    unknown_backoff: BackoffStrategy = FixedBackoff(interval=2.0)
    max_backoff_seconds: float = 30.0

    @classmethod
    def from_service_settings(cls, settings: Any) -> "GatewayPolicy":
        base = settings.completion_backoff_seconds
        cap = settings.completion_backoff_max_seconds
        return cls(
            max_attempts=settings.completion_max_attempts,
            timeout_seconds=settings.completion_timeout_seconds,
            rate_limit_backoff=LinearBackoff(step=base, max_interval=cap),
            server_backoff=ExponentialBackoff(multiplier=base, min_interval=base, max_interval=cap),
            unknown_backoff=FixedBackoff(interval=base),
            max_backoff_seconds=cap,
        )

    def delay_for(self, error: BaseException, attempt: int) -> float | None:
        """Return the delay before retrying ``error``, or ``None`` when it is fatal."""

        if isinstance(error, CompletionError) and not error.retryable:
            return None
        if isinstance(error, RateLimitedError):
            delay = self.rate_limit_backoff.compute(attempt)
            if error.retry_after is not None:
                delay = max(delay, error.retry_after)
        elif isinstance(error, ServerError):
            delay = self.server_backoff.compute(attempt)
        elif isinstance(error, UnknownCompletionError):
            delay = self.unknown_backoff.compute(attempt)
        else:
            return None
        return min(self.max_backoff_seconds, delay)


class CompletionGateway:
    """Issue completion requests with bounded, classified retries."""

    def __init__(self, transport: CompletionTransport, *, policy: GatewayPolicy | None = None) -> None:
        self._transport = transport
        self._policy = policy or GatewayPolicy()
        if self._policy.max_attempts <= 0:
            raise ValueError("policy.max_attempts must be at least 1")

    @property
    def policy(self) -> GatewayPolicy:
        return self._policy

    async def request(
        self,
        prompt: str,
        options: CompletionOptions,
        *,
        operation: str = "completion",
    ) -> str:
        """Return generated text or raise :class:`GenerationFailed`."""

        attempts_made = 0

        async def attempt_once(attempt: int) -> str:
            nonlocal attempts_made
            attempts_made = attempt
            try:
                async with asyncio.timeout(self._policy.timeout_seconds):
                    text = await self._transport.complete(prompt, options)
            except TimeoutError as exc:
                error = UpstreamTimeoutError(
                    f"Completion exceeded {self._policy.timeout_seconds}s hard timeout."
                )
                self._log_attempt(operation, attempt, outcome="timeout", error=error)
                raise error from exc
            except CompletionError as exc:
                self._log_attempt(operation, attempt, outcome=type(exc).__name__, error=exc)
                raise
            except Exception as exc:
                # Anything else a transport raises is an unclassified failure.
                error = UnknownCompletionError(f"Completion transport failed: {exc!r}")
                self._log_attempt(operation, attempt, outcome=type(exc).__name__, error=error)
                raise error from exc
            self._log_attempt(operation, attempt, outcome="success")
            return text

        try:
            outcome = await bounded_retry(
                attempt_once,
                max_attempts=self._policy.max_attempts,
                classify=self._policy.delay_for,
                label=operation,
            )
        except RetryExhausted as exc:
            raise GenerationFailed(operation, exc.last_error, exc.attempts) from exc.last_error
        except CompletionError as exc:
            raise GenerationFailed(operation, exc, attempts_made) from exc
        return outcome.value

    def _log_attempt(
        self,
        operation: str,
        attempt: int,
        *,
        outcome: str,
        error: BaseException | None = None,
    ) -> None:
        payload: dict[str, Any] = {
            "operation": operation,
            "attempt": attempt,
            "max_attempts": self._policy.max_attempts,
            "outcome": outcome,
        }
        if error is not None:
            payload["error"] = str(error)
            LOGGER.warning("completion.attempt", extra={"extra_payload": payload})
        else:
            LOGGER.info("completion.attempt", extra={"extra_payload": payload})


__all__ = [
    "AuthError",
    "CompletionError",
    "CompletionGateway",
    "CompletionOptions",
    "CompletionTransport",
    "CompletionValidationError",
    "GatewayPolicy",
    "GenerationFailed",
    "OpenAICompatibleTransport",
    "RateLimitedError",
    "ServerError",
    "UnknownCompletionError",
    "UpstreamTimeoutError",
]

"""FastAPI application factory for the Novelsmith services."""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Final

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .chapter_drafter import ChapterDrafter, QualityGate
from .config import ServiceSettings
from .gateway import CompletionGateway, CompletionTransport, GatewayPolicy, OpenAICompatibleTransport
from .http import (
    TRACE_ID_HEADER,
    default_error_responses,
    ensure_trace_id,
    get_trace_context,
    http_exception_to_response,
    internal_error_response,
    request_validation_response,
    resolve_trace_id,
    service_error_response,
)
from .jobs import JobManager
from .metrics import record_request
from .outline_synthesizer import OutlineSynthesizer
from .pipeline import GenerationPipeline
from .recovery import RecoveryCoordinator
from .registry import JobRegistry
from .routers import api_router
from .routers.health import router as health_router
from .scheduler import RetentionSweeper
from .service_errors import ServiceError
from .settings import Settings, get_settings
from .streams import StreamBroker, StreamRegistry

LOGGER = logging.getLogger(__name__)

SERVICE_VERSION: Final[str] = "0.3.0"


class TraceMiddleware:
    """ASGI middleware that applies trace IDs and unified error handling."""

    def __init__(self, app: ASGIApp, *, trace_context: ContextVar[str]) -> None:
        self.app = app
        self._trace_context = trace_context

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        trace_id = resolve_trace_id(request.headers.get(TRACE_ID_HEADER))
        token = self._trace_context.set(trace_id)
        scope.setdefault("state", {})
        scope["state"]["trace_id"] = trace_id  # type: ignore[index]

        status_holder: dict[str, int | None] = {"status": None}

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers.setdefault(TRACE_ID_HEADER, trace_id)
                status_holder["status"] = message.get("status")
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except HTTPException as exc:
            response = http_exception_to_response(exc, trace_id)
            status_holder["status"] = exc.status_code
            await response(scope, receive, send)
        except RequestValidationError as exc:
            response = request_validation_response(exc, trace_id)
            status_holder["status"] = status.HTTP_400_BAD_REQUEST
            await response(scope, receive, send)
        except ServiceError as exc:
            response = service_error_response(exc, trace_id)
            status_holder["status"] = exc.status_code
            LOGGER.info(
                "request.service_error",
                extra={
                    "extra_payload": {
                        "code": exc.code,
                        "method": request.method,
                        "path": str(request.url.path),
                        "trace_id": trace_id,
                    }
                },
            )
            await response(scope, receive, send)
        except Exception as exc:  # pragma: no cover - last-resort envelope
            LOGGER.exception(
                "Unhandled error processing %s %s",
                request.method,
                request.url.path,
                exc_info=exc,
            )
            response = internal_error_response(trace_id)
            status_holder["status"] = status.HTTP_500_INTERNAL_SERVER_ERROR
            await response(scope, receive, send)
        finally:
            self._trace_context.reset(token)
            status_code = status_holder["status"] or status.HTTP_500_INTERNAL_SERVER_ERROR
            record_request(request.method, status_code)


def create_app(
    settings: ServiceSettings | None = None,
    *,
    endpoint: Settings | None = None,
    transport: CompletionTransport | None = None,
) -> FastAPI:
    """Construct the FastAPI application.

    ``transport`` replaces the HTTP completion transport, which lets callers
    run the whole stack against a local model server or a scripted fake.
    """

    service_settings = settings or ServiceSettings.from_environment()
    endpoint_settings = endpoint or get_settings()
    completion_transport = transport or OpenAICompatibleTransport.from_settings(endpoint_settings)

    application = FastAPI(
        title="Novelsmith Services",
        version=SERVICE_VERSION,
        responses=default_error_responses(),
    )
    application.state.settings = service_settings
    application.state.endpoint_settings = endpoint_settings
    application.state.service_version = SERVICE_VERSION

    gateway = CompletionGateway(
        completion_transport,
        policy=GatewayPolicy.from_service_settings(service_settings),
    )
    synthesizer = OutlineSynthesizer(gateway, model=endpoint_settings.outline_model)
    drafter = ChapterDrafter(
        gateway,
        quality_gate=QualityGate(max_attempts=service_settings.chapter_max_attempts),
        max_output_tokens_cap=service_settings.max_output_tokens_cap,
        model=endpoint_settings.chapter_model,
    )
    pipeline = GenerationPipeline(
        synthesizer,
        drafter,
        outline_step_attempts=service_settings.outline_step_attempts,
        inter_chapter_delay_seconds=service_settings.inter_chapter_delay_seconds,
    )
    job_registry = JobRegistry(retention_seconds=service_settings.job_retention_seconds)
    stream_registry = StreamRegistry(retention_seconds=service_settings.job_retention_seconds)
    manager = JobManager(job_registry, pipeline, settings=service_settings)
    broker = StreamBroker(stream_registry, manager, settings=service_settings)
    coordinator = RecoveryCoordinator(
        manager,
        broker,
        stall_timeout=service_settings.stall_timeout_seconds,
    )

    application.state.gateway = gateway
    application.state.outline_synthesizer = synthesizer
    application.state.job_manager = manager
    application.state.stream_broker = broker
    application.state.recovery_coordinator = coordinator

    sweeper = RetentionSweeper(service_settings, [job_registry, stream_registry])
    application.state.retention_sweeper = sweeper

    async def _start_sweeper() -> None:
        sweeper.start()

    async def _stop_generation() -> None:
        await coordinator.shutdown()
        broker.shutdown()
        await manager.shutdown()
        sweeper.shutdown()
        closer = getattr(completion_transport, "aclose", None)
        if closer is not None:
            await closer()

    application.add_event_handler("startup", _start_sweeper)
    application.add_event_handler("shutdown", _stop_generation)

    async def http_exception_handler(_: Request, exc: Exception) -> Response:
        trace_id = ensure_trace_id()
        if isinstance(exc, HTTPException):
            return http_exception_to_response(exc, trace_id)
        return internal_error_response(trace_id)

    async def validation_exception_handler(_: Request, exc: Exception) -> Response:
        trace_id = ensure_trace_id()
        if isinstance(exc, RequestValidationError):
            return request_validation_response(exc, trace_id)
        return internal_error_response(trace_id)

    async def service_error_handler(_: Request, exc: Exception) -> Response:
        trace_id = ensure_trace_id()
        if isinstance(exc, ServiceError):
            return service_error_response(exc, trace_id)
        return internal_error_response(trace_id)

    application.add_exception_handler(HTTPException, http_exception_handler)
    application.add_exception_handler(RequestValidationError, validation_exception_handler)
    application.add_exception_handler(ServiceError, service_error_handler)

    application.add_middleware(
        TraceMiddleware,
        trace_context=get_trace_context(),
    )

    application.include_router(health_router)
    application.include_router(api_router)

    @application.get("/", include_in_schema=False)
    async def service_index(request: Request) -> dict[str, str]:
        """Return a lightweight service manifest for manual probes."""

        version = getattr(request.app.state, "service_version", SERVICE_VERSION)
        return {
            "service": "novelsmith",
            "version": version,
            "api_base": "/api/v1",
        }

    return application


def __getattr__(name: str) -> FastAPI:
    # Built lazily so importing this module never reads the environment.
    if name == "app":
        application = create_app()
        globals()["app"] = application
        return application
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["SERVICE_VERSION", "TraceMiddleware", "app", "create_app"]

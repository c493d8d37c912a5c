from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from devrelay.routers import health, stream, tasks
from devrelay.services.executors import ActionExecutor, OpenRouterExecutor
from devrelay.services.readiness import (
    CompositeReadiness,
    ExecutorReadiness,
    ReadinessGate,
    WorkspaceReadiness,
)
from devrelay.services.relay_config import RelaySettings, load_settings
from devrelay.services.relay_errors import RelayError
from devrelay.services.stream_hub import StreamHub
from devrelay.services.task_relay import TaskRelay

logger = logging.getLogger("devrelay.api")
_root_logger = logging.getLogger("devrelay")
if not _root_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    _root_logger.addHandler(handler)
_root_logger.propagate = False
_root_logger.setLevel(os.getenv("RELAY_LOG_LEVEL", "INFO").strip().upper() or "INFO")

# Status polling is frequent; keep it out of the request log.
_QUIET_SUFFIX = "/status"


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name, "1" if default else "").strip().lower()
    return raw in {"1", "true", "yes", "on"}


def _slow_request_ms_threshold() -> float:
    raw = os.getenv("API_SLOW_REQUEST_MS", "1500").strip()
    try:
        return max(25.0, float(raw))
    except ValueError:
        return 1500.0


def _client_identity(request: Request) -> str:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",", 1)[0].strip()
    remote = request.client.host if request.client and request.client.host else ""
    if remote:
        return remote
    return "unknown"


def _correlation_id(request: Request) -> str:
    for key in ("x-request-id", "x-correlation-id"):
        value = request.headers.get(key)
        if value:
            return value
    return "none"


def _apply_runtime_response_headers(response: Response, request: Request, elapsed_ms: float) -> None:
    response.headers["x-devrelay-runtime-ms"] = f"{max(0.1, float(elapsed_ms)):.4f}"
    correlation_id = _correlation_id(request)
    if correlation_id != "none":
        response.headers["x-devrelay-request-id"] = correlation_id


def default_readiness(settings: RelaySettings) -> ReadinessGate:
    gates: list[ReadinessGate] = [WorkspaceReadiness(settings.workspace_dirs)]
    if settings.require_executor_key:
        gates.append(ExecutorReadiness("OPENROUTER_API_KEY"))
    return CompositeReadiness(gates)


def create_app(
    settings: Optional[RelaySettings] = None,
    *,
    readiness: Optional[ReadinessGate] = None,
    plain_executor: Optional[ActionExecutor] = None,
    multimodal_executor: Optional[ActionExecutor] = None,
) -> FastAPI:
    """Build an isolated relay: its own task queue, dispatcher and stream hub."""
    settings = settings or load_settings()
    if plain_executor is None:
        plain_executor = OpenRouterExecutor(
            settings.openrouter_model,
            timeout_s=settings.openrouter_timeout_seconds,
        )
        if multimodal_executor is None:
            multimodal_executor = OpenRouterExecutor(
                settings.openrouter_vision_model,
                timeout_s=settings.openrouter_timeout_seconds,
                multimodal=True,
            )

    task_relay = TaskRelay(
        readiness or default_readiness(settings),
        plain_executor,
        multimodal_executor,
        cooldown_seconds=settings.cooldown_seconds,
        timeout_seconds=settings.executor_timeout_seconds,
        max_queue_length=settings.max_queue_length,
        task_retention=settings.task_retention,
    )
    stream_hub = StreamHub(capacity=settings.stream_buffer_lines, outbox_frames=settings.stream_outbox_frames)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await task_relay.start()
        try:
            yield
        finally:
            await task_relay.stop()
            await stream_hub.shutdown()

    app = FastAPI(title="devrelay", version=health.HEALTH_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.task_relay = task_relay
    app.state.stream_hub = stream_hub

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RelayError)
    async def _relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        status_code = 500
        response = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            if response is not None:
                _apply_runtime_response_headers(response, request, elapsed_ms)
            path = request.url.path
            if elapsed_ms >= _slow_request_ms_threshold() or status_code >= 500:
                logger.warning(
                    "slow_api_request method=%s path=%s status=%s elapsed_ms=%.2f client=%s correlation=%s",
                    request.method,
                    path,
                    status_code,
                    elapsed_ms,
                    _client_identity(request),
                    _correlation_id(request),
                )
            elif _env_flag("API_LOG_ALL_REQUESTS", True) and not path.endswith(_QUIET_SUFFIX):
                logger.info(
                    "api_request method=%s path=%s status=%s elapsed_ms=%.2f",
                    request.method,
                    path,
                    status_code,
                    elapsed_ms,
                )

    @app.get("/", include_in_schema=False)
    async def root():
        """Redirect to API documentation."""
        return RedirectResponse(url="/docs")

    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(health.router, tags=["health"])
    app.include_router(stream.router, tags=["stream"])
    # Backward compatibility for legacy clients; hidden from OpenAPI.
    app.include_router(tasks.legacy_router, include_in_schema=False)
    return app


app = create_app()

"""Health, readiness and version endpoints."""

from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

router = APIRouter()

HEALTH_VERSION = "1.0.0"
SERVICE_STARTED_AT = datetime.now(timezone.utc)


def _iso_utc(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _uptime_seconds(now: datetime) -> int:
    return max(0, int((now - SERVICE_STARTED_AT).total_seconds()))


def _uptime_human(seconds: int) -> str:
    days, remainder = divmod(seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, secs = divmod(remainder, 60)
    if days > 0:
        return f"{days}d {hours}h {minutes}m {secs}s"
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


class HealthResponse(BaseModel):
    """GET /health response."""

    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)
    status: Annotated[str, Field(description="'ok' when the readiness gate passes, else 'degraded'")]
    version: Annotated[str, Field(description="Semver MAJOR.MINOR.PATCH")]
    timestamp: Annotated[str, Field(description="ISO8601 UTC")]
    started_at: Annotated[str, Field(description="ISO8601 UTC when service process started")]
    uptime_seconds: Annotated[int, Field(description="Seconds service has been up")]
    uptime_human: Annotated[str, Field(description="Human readable uptime")]
    readiness: Annotated[dict[str, Any], Field(description="Readiness gate report with remediation hints")]
    dispatcher: Annotated[dict[str, Any], Field(description="Dispatcher state (processing, current task)")]
    stream: Annotated[dict[str, int], Field(description="Tracked sessions and connected stream clients")]


@router.get("/version")
async def version():
    """Return API version (lightweight, for dashboards)."""
    return {"version": HEALTH_VERSION}


@router.get("/ready")
async def ready(request: Request):
    """Readiness check. 200 when submissions would be accepted, else 503 with remediation."""
    report = request.app.state.task_relay.check_readiness()
    if not report.ready:
        return JSONResponse(status_code=503, content=report.as_error().to_payload())
    now = datetime.now(timezone.utc)
    return {"status": "ready", "version": HEALTH_VERSION, "timestamp": _iso_utc(now)}


@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    """Return service health; always 200, degraded when the readiness gate fails."""
    relay = request.app.state.task_relay
    report = relay.check_readiness()
    now = datetime.now(timezone.utc)
    up = _uptime_seconds(now)
    return HealthResponse(
        status="ok" if report.ready else "degraded",
        version=HEALTH_VERSION,
        timestamp=_iso_utc(now),
        started_at=_iso_utc(SERVICE_STARTED_AT),
        uptime_seconds=up,
        uptime_human=_uptime_human(up),
        readiness=report.to_dict(),
        dispatcher=relay.dispatcher.state(),
        stream=request.app.state.stream_hub.status(),
    )

"""Task queue API routes: submit, poll, inspect."""

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from devrelay.models.error import RelayErrorBody
from devrelay.models.task import QueueStatus, TaskAccepted, TaskCreate, TaskSnapshot
from devrelay.routers.health import HEALTH_VERSION
from devrelay.services.task_relay import TaskRelay

logger = logging.getLogger(__name__)

router = APIRouter()
legacy_router = APIRouter()


def _relay(request: Request) -> TaskRelay:
    return request.app.state.task_relay


@router.post(
    "/tasks",
    status_code=202,
    response_model=TaskAccepted,
    responses={
        400: {"model": RelayErrorBody, "description": "Missing or blank prompt"},
        429: {"model": RelayErrorBody, "description": "Task queue is full"},
        503: {"model": RelayErrorBody, "description": "Readiness gate failed; includes action_required"},
    },
)
async def submit_task(data: TaskCreate, request: Request) -> TaskAccepted:
    """Queue an action request. Execution happens asynchronously; poll the status endpoint."""
    return TaskAccepted(**_relay(request).submit(data))


@router.get(
    "/tasks/{task_id}/status",
    response_model=TaskSnapshot,
    responses={404: {"model": RelayErrorBody, "description": "Unknown task id (stop_polling: true)"}},
)
async def task_status(task_id: str, request: Request) -> TaskSnapshot:
    return TaskSnapshot(**_relay(request).get_status(task_id))


@router.get("/queue", response_model=QueueStatus)
async def queue_status(request: Request) -> QueueStatus:
    """Aggregate queue state. Read-only."""
    return QueueStatus(**_relay(request).get_queue_status())


@router.post("/test")
async def echo_test(request: Request) -> dict:
    """Connectivity check: echo the request back without queueing anything."""
    body = (await request.body()).decode("utf-8", errors="replace")
    try:
        payload = json.loads(body) if body else None
    except ValueError:
        payload = {"raw": body}
    logger.info("echo_test_received bytes=%s", len(body))
    return {
        "success": True,
        "message": "Connection active - relay server is working!",
        "received": {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "method": request.method,
            "url": str(request.url),
            "headers": dict(request.headers),
            "payload": payload,
        },
        "server": {"status": "active", "version": HEALTH_VERSION},
    }


# Older clients post to /webhook and poll /webhook/{id}/status.
legacy_router.add_api_route(
    "/webhook",
    submit_task,
    methods=["POST"],
    status_code=202,
    response_model=TaskAccepted,
)
legacy_router.add_api_route(
    "/webhook/{task_id}/status",
    task_status,
    methods=["GET"],
    response_model=TaskSnapshot,
)

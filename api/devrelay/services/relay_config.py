"""Relay configuration: environment-driven settings for the queue, executors and stream."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

DEFAULT_COOLDOWN_SECONDS = 2.0
DEFAULT_EXECUTOR_TIMEOUT_SECONDS = 600.0
DEFAULT_MAX_QUEUE_LENGTH = 100
DEFAULT_STREAM_BUFFER_LINES = 100
DEFAULT_STREAM_OUTBOX_FRAMES = 1000


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        return default
    return max(0, value)


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = float(str(raw).strip())
    except ValueError:
        return default
    return max(0.0, value)


def _workspace_dirs() -> list[Path]:
    raw = os.environ.get("RELAY_WORKSPACE_DIRS", "").strip()
    if not raw:
        return [Path.cwd()]
    return [Path(part).expanduser() for part in raw.split(os.pathsep) if part.strip()]


class RelaySettings(BaseModel):
    cooldown_seconds: float = Field(default=DEFAULT_COOLDOWN_SECONDS, ge=0.0)
    # None disables the per-call timeout.
    executor_timeout_seconds: Optional[float] = Field(default=DEFAULT_EXECUTOR_TIMEOUT_SECONDS, gt=0.0)
    # 0 means unbounded.
    max_queue_length: int = Field(default=DEFAULT_MAX_QUEUE_LENGTH, ge=0)
    # 0 keeps every task until restart.
    task_retention: int = Field(default=0, ge=0)
    stream_buffer_lines: int = Field(default=DEFAULT_STREAM_BUFFER_LINES, ge=1)
    # Pending frames per WebSocket client before it is dropped.
    stream_outbox_frames: int = Field(default=DEFAULT_STREAM_OUTBOX_FRAMES, ge=1)
    workspace_dirs: list[Path] = Field(default_factory=list)
    require_executor_key: bool = True
    openrouter_model: str = "openrouter/free"
    openrouter_vision_model: str = "openrouter/free"
    openrouter_timeout_seconds: float = Field(default=45.0, gt=0.0)
    allowed_origins: list[str] = Field(default_factory=lambda: ["*"])


def load_settings() -> RelaySettings:
    """Build settings from the process environment."""
    timeout = _float_env("RELAY_EXECUTOR_TIMEOUT_SECONDS", DEFAULT_EXECUTOR_TIMEOUT_SECONDS)
    origins = os.getenv("ALLOWED_ORIGINS", "*")
    model = (os.getenv("OPENROUTER_MODEL") or "openrouter/free").strip() or "openrouter/free"
    return RelaySettings(
        cooldown_seconds=_float_env("RELAY_DISPATCH_COOLDOWN_SECONDS", DEFAULT_COOLDOWN_SECONDS),
        executor_timeout_seconds=timeout if timeout > 0 else None,
        max_queue_length=_int_env("RELAY_MAX_QUEUE_LENGTH", DEFAULT_MAX_QUEUE_LENGTH),
        task_retention=_int_env("RELAY_TASK_RETENTION", 0),
        stream_buffer_lines=max(1, _int_env("RELAY_STREAM_BUFFER_LINES", DEFAULT_STREAM_BUFFER_LINES)),
        stream_outbox_frames=max(1, _int_env("RELAY_STREAM_OUTBOX_FRAMES", DEFAULT_STREAM_OUTBOX_FRAMES)),
        workspace_dirs=_workspace_dirs(),
        require_executor_key=_truthy(os.getenv("RELAY_REQUIRE_EXECUTOR_KEY", "1")),
        openrouter_model=model,
        openrouter_vision_model=(os.getenv("OPENROUTER_VISION_MODEL") or model).strip() or model,
        openrouter_timeout_seconds=_float_env("OPENROUTER_TIMEOUT_SECONDS", 45.0) or 45.0,
        allowed_origins=[origin.strip() for origin in origins.split(",") if origin.strip()],
    )

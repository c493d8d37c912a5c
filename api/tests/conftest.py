"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def _isolate_relay_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    # Settings and readiness gates read the environment; keep each test hermetic.
    for key in (
        "RELAY_DISPATCH_COOLDOWN_SECONDS",
        "RELAY_EXECUTOR_TIMEOUT_SECONDS",
        "RELAY_MAX_QUEUE_LENGTH",
        "RELAY_TASK_RETENTION",
        "RELAY_STREAM_BUFFER_LINES",
        "RELAY_STREAM_OUTBOX_FRAMES",
        "RELAY_REQUIRE_EXECUTOR_KEY",
        "OPENROUTER_API_KEY",
        "OPENROUTER_MODEL",
        "OPENROUTER_VISION_MODEL",
        "OPENROUTER_CHAT_URL",
        "OPENROUTER_X_TITLE",
        "OPENROUTER_HTTP_REFERER",
        "RELAY_API_BASE",
        "ALLOWED_ORIGINS",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("RELAY_WORKSPACE_DIRS", str(tmp_path))

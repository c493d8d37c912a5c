"""Action executors: the collaborators the dispatcher hands each task to.

Every executor satisfies ``async execute(request) -> ExecutionResult``. An
executor may raise; the dispatcher records that as a failed task.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

from devrelay.models.task import ExecutionResult, TaskCreate
from devrelay.services import openrouter_client
from devrelay.services.openrouter_client import OpenRouterError

logger = logging.getLogger(__name__)

_KNOWN_CONTEXT_KEYS = ("log", "stackTrace", "file", "line", "source")


class ActionExecutor(Protocol):
    async def execute(self, request: TaskCreate) -> ExecutionResult: ...


def format_prompt(request: TaskCreate) -> str:
    """Render context sections followed by the request itself as markdown."""
    parts: list[str] = []
    ctx = request.context or {}
    if ctx:
        lines: list[str] = []
        if ctx.get("log"):
            lines.append(f"**Log:**\n```\n{ctx['log']}\n```")
        if ctx.get("stackTrace"):
            lines.append(f"**Stack trace:**\n```\n{ctx['stackTrace']}\n```")
        if ctx.get("file"):
            line_ref = f":{ctx['line']}" if ctx.get("line") else ""
            lines.append(f"**File:** `{ctx['file']}{line_ref}`")
        for key, value in ctx.items():
            if key in _KNOWN_CONTEXT_KEYS or not value:
                continue
            lines.append(f"**{key}:** {json.dumps(value, default=str)}")
        if lines:
            parts.append("## Context\n" + "\n\n".join(lines))
    parts.append("## Request\n" + (request.prompt or ""))
    return "\n\n".join(parts)


class OpenRouterExecutor:
    """Send the formatted prompt (and any image attachments) to an OpenRouter model."""

    def __init__(self, model: str, *, timeout_s: float = 45.0, multimodal: bool = False) -> None:
        self.model = model
        self.timeout_s = timeout_s
        self.multimodal = multimodal

    def _images(self, request: TaskCreate) -> list[dict[str, str]]:
        if not self.multimodal:
            return []
        return [{"data": item.data, "mime_type": item.mime_type} for item in request.attachments]

    async def execute(self, request: TaskCreate) -> ExecutionResult:
        prompt = format_prompt(request)
        images = self._images(request)
        logger.info(
            "executor_request model=%s prompt_chars=%s images=%s has_context=%s",
            self.model,
            len(prompt),
            len(images),
            bool(request.context),
        )
        try:
            content, usage, meta = await asyncio.to_thread(
                openrouter_client.chat_completion,
                model=self.model,
                prompt=prompt,
                images=images,
                timeout_s=self.timeout_s,
            )
        except OpenRouterError as exc:
            return ExecutionResult(success=False, message="Executor request failed", error=str(exc))
        output: dict[str, Any] = {
            "content": content,
            "model": self.model,
            "usage": usage,
            "elapsedMs": meta.get("elapsed_ms"),
            "responseId": meta.get("response_id"),
        }
        if images:
            output["images"] = len(images)
        return ExecutionResult(success=True, message=f"Completed by {self.model}", output=output)

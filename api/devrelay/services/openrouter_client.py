"""OpenRouter chat-completion call used by the action executors.

Synchronous httpx; callers on the event loop go through ``asyncio.to_thread``.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Sequence

import httpx

logger = logging.getLogger(__name__)

DEFAULT_CHAT_URL = "https://openrouter.ai/api/v1/chat/completions"
_ERROR_PREVIEW_CHARS = 500


class OpenRouterError(RuntimeError):
    pass


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def _chat_url() -> str:
    url = os.getenv("OPENROUTER_CHAT_URL", DEFAULT_CHAT_URL).strip()
    if not url:
        raise OpenRouterError("OPENROUTER_CHAT_URL is empty")
    return url


def _request_headers() -> dict[str, str]:
    api_key = os.getenv("OPENROUTER_API_KEY", "").strip()
    if not api_key:
        raise OpenRouterError("OPENROUTER_API_KEY is not configured")
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
    # OpenRouter attributes traffic by referer/title.
    for header, env_name, default in (
        ("HTTP-Referer", "OPENROUTER_HTTP_REFERER", ""),
        ("X-Title", "OPENROUTER_X_TITLE", "devrelay"),
    ):
        value = (os.getenv(env_name) or default).strip()
        if value:
            headers[header] = value
    return headers


def build_user_content(prompt: str, images: Sequence[dict[str, str]] = ()) -> str | list[dict[str, Any]]:
    """Plain string for text-only prompts, content parts when images are attached.

    Each image is ``{"data": <base64>, "mime_type": "image/png"}``.
    """
    if not images:
        return prompt
    parts: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
    parts.extend(
        {
            "type": "image_url",
            "image_url": {"url": f"data:{image.get('mime_type') or 'image/png'};base64,{image['data']}"},
        }
        for image in images
    )
    return parts


def _request_body(model: str, prompt: str, images: Sequence[dict[str, str]]) -> dict[str, Any]:
    body: dict[str, Any] = {
        "model": model,
        "messages": [{"role": "user", "content": build_user_content(prompt, images)}],
        "temperature": float(os.getenv("OPENROUTER_TEMPERATURE", "0.2") or 0.2),
    }
    if _truthy(os.getenv("OPENROUTER_DISABLE_STREAM", "1")):
        body["stream"] = False
    return body


def _message_content(data: Any) -> str:
    if not isinstance(data, dict):
        raise OpenRouterError(f"Unexpected OpenRouter payload type: {type(data).__name__}")
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        raise OpenRouterError("OpenRouter payload missing choices")
    message = choices[0].get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str):
        raise OpenRouterError("OpenRouter payload missing message.content")
    return content


def chat_completion(
    *,
    model: str,
    prompt: str,
    images: Sequence[dict[str, str]] = (),
    timeout_s: float = 45.0,
) -> tuple[str, dict[str, Any], dict[str, Any]]:
    """Return ``(content, usage, meta)``; raise OpenRouterError on any transport or payload problem.

    meta: status_code, elapsed_ms, provider_request_id, response_id.
    """
    headers = _request_headers()
    url = _chat_url()
    body = _request_body(model, prompt, images)

    started = time.perf_counter()
    try:
        with httpx.Client(timeout=timeout_s, headers=headers) as client:
            resp = client.post(url, json=body)
    except httpx.HTTPError as exc:
        logger.warning("openrouter_transport_error model=%s error=%s", model, exc)
        raise OpenRouterError(f"OpenRouter request failed: {exc}") from exc
    elapsed_ms = int(round((time.perf_counter() - started) * 1000))

    try:
        data = resp.json()
    except ValueError as exc:
        preview = (resp.text or "")[:_ERROR_PREVIEW_CHARS]
        raise OpenRouterError(
            f"OpenRouter response was not JSON (status={resp.status_code}): {preview}"
        ) from exc
    if resp.status_code >= 400:
        detail = data.get("error") if isinstance(data, dict) else None
        logger.warning("openrouter_http_error model=%s status=%s", model, resp.status_code)
        raise OpenRouterError(f"OpenRouter error (status={resp.status_code}): {detail or data}")

    content = _message_content(data)
    usage = data.get("usage")
    meta = {
        "status_code": resp.status_code,
        "elapsed_ms": elapsed_ms,
        "provider_request_id": (
            resp.headers.get("x-request-id") or resp.headers.get("x-openrouter-request-id") or ""
        ).strip(),
        "response_id": str(data.get("id") or ""),
    }
    logger.info("openrouter_completion model=%s status=%s elapsed_ms=%s", model, resp.status_code, elapsed_ms)
    return content, usage if isinstance(usage, dict) else {}, meta

"""OpenRouter-backed action executors and prompt formatting.

Uses mocked HTTP responses (respx) to avoid real OpenRouter calls.
"""

import json

import pytest
import respx
from httpx import Response

from devrelay.models.task import TaskCreate
from devrelay.services import openrouter_client
from devrelay.services.executors import OpenRouterExecutor, format_prompt
from devrelay.services.openrouter_client import OpenRouterError

CHAT_URL = openrouter_client.DEFAULT_CHAT_URL

COMPLETION = {
    "id": "gen-123",
    "choices": [{"message": {"role": "assistant", "content": "Patched the null check."}}],
    "usage": {"prompt_tokens": 12, "completion_tokens": 5},
}


@pytest.fixture
def api_key(monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.setenv("OPENROUTER_API_KEY", "sk-test")
    return "sk-test"


def test_format_prompt_renders_context_before_request():
    request = TaskCreate(
        prompt="Why does this crash?",
        context={
            "log": "NullPointerException",
            "file": "src/app.ts",
            "line": 42,
            "source": "editor",
            "branch": "main",
        },
    )
    text = format_prompt(request)
    assert text.startswith("## Context\n")
    assert "**Log:**\n```\nNullPointerException\n```" in text
    assert "**File:** `src/app.ts:42`" in text
    assert '**branch:** "main"' in text
    assert "source" not in text
    assert text.endswith("## Request\nWhy does this crash?")


def test_format_prompt_without_context_is_just_the_request():
    assert format_prompt(TaskCreate(prompt="hello")) == "## Request\nhello"


def test_build_user_content_adds_image_parts():
    assert openrouter_client.build_user_content("hi") == "hi"
    parts = openrouter_client.build_user_content("hi", [{"data": "AAAA", "mime_type": "image/jpeg"}])
    assert parts[0] == {"type": "text", "text": "hi"}
    assert parts[1]["image_url"]["url"] == "data:image/jpeg;base64,AAAA"


def test_chat_completion_requires_api_key():
    with pytest.raises(OpenRouterError):
        openrouter_client.chat_completion(model="m", prompt="p")


@respx.mock
def test_chat_completion_sends_bearer_token(api_key: str):
    route = respx.post(CHAT_URL).mock(return_value=Response(200, json=COMPLETION))
    content, usage, meta = openrouter_client.chat_completion(model="acme/coder", prompt="fix it")

    assert content == "Patched the null check."
    assert usage["completion_tokens"] == 5
    assert meta["status_code"] == 200
    assert meta["response_id"] == "gen-123"
    request = route.calls[0].request
    assert request.headers["authorization"] == f"Bearer {api_key}"
    assert request.headers["x-title"] == "devrelay"
    body = json.loads(request.content)
    assert body["model"] == "acme/coder"
    assert body["messages"][0]["content"] == "fix it"


@respx.mock
def test_chat_completion_surfaces_provider_errors(api_key: str):
    respx.post(CHAT_URL).mock(return_value=Response(429, json={"error": {"message": "rate limited"}}))
    with pytest.raises(OpenRouterError) as excinfo:
        openrouter_client.chat_completion(model="m", prompt="p")
    assert "status=429" in str(excinfo.value)


@respx.mock
def test_chat_completion_rejects_missing_choices(api_key: str):
    respx.post(CHAT_URL).mock(return_value=Response(200, json={"id": "x", "choices": []}))
    with pytest.raises(OpenRouterError):
        openrouter_client.chat_completion(model="m", prompt="p")


@pytest.mark.asyncio
async def test_executor_returns_completed_result(api_key: str):
    executor = OpenRouterExecutor("acme/coder", timeout_s=5.0)
    with respx.mock:
        respx.post(CHAT_URL).mock(return_value=Response(200, json=COMPLETION))
        result = await executor.execute(TaskCreate(prompt="fix it", context={"file": "a.py"}))

    assert result.success is True
    assert result.message == "Completed by acme/coder"
    assert result.output["content"] == "Patched the null check."
    assert result.output["responseId"] == "gen-123"
    assert "images" not in result.output


@pytest.mark.asyncio
async def test_multimodal_executor_forwards_attachments(api_key: str):
    executor = OpenRouterExecutor("acme/vision", timeout_s=5.0, multimodal=True)
    request = TaskCreate(prompt="what is this?", attachments=[{"data": "AAAA", "mimeType": "image/png"}])
    with respx.mock:
        route = respx.post(CHAT_URL).mock(return_value=Response(200, json=COMPLETION))
        result = await executor.execute(request)

    assert result.success is True
    assert result.output["images"] == 1
    content = json.loads(route.calls[0].request.content)["messages"][0]["content"]
    assert content[1]["image_url"]["url"] == "data:image/png;base64,AAAA"


@pytest.mark.asyncio
async def test_executor_reports_provider_failure_as_result(api_key: str):
    executor = OpenRouterExecutor("acme/coder", timeout_s=5.0)
    with respx.mock:
        respx.post(CHAT_URL).mock(return_value=Response(500, json={"error": "upstream down"}))
        result = await executor.execute(TaskCreate(prompt="fix it"))

    assert result.success is False
    assert result.message == "Executor request failed"
    assert "upstream down" in result.error

from __future__ import annotations

import json

import httpx
import pytest

pytest.importorskip("pytest_httpx")

from llm.client.base import ModelUnavailableError, PermanentLLMError, TransientLLMError
from llm.client.gemini_client import GeminiClient
from llm.settings import GenerationSettings

BASE = "https://generativelanguage.googleapis.com"


def _settings(**overrides) -> GenerationSettings:
    values = {"gemini_api_key": "g-key", "api_version": "v1", "gemini_api_base": BASE}
    values.update(overrides)
    return GenerationSettings(**values)


async def _generate(client: GeminiClient, model: str = "gemini-2.0-flash"):
    return await client.generate(model=model, prompt="hello", temperature=0.35, max_output_tokens=600)


def _ok_body(text: str):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.mark.asyncio
async def test_generate_posts_to_versioned_endpoint(httpx_mock):
    url = f"{BASE}/v1/models/gemini-2.0-flash:generateContent"
    httpx_mock.add_response(method="POST", url=f"{url}?key=g-key", json=_ok_body('{"title": "T", "summary": "S"}'))

    resp = await _generate(GeminiClient(_settings()))

    assert resp.model == "gemini-2.0-flash"
    assert json.loads(resp.text) == {"title": "T", "summary": "S"}
    request = httpx_mock.get_requests()[0]
    assert request.url.params["key"] == "g-key"
    assert "x-goog-api-key" not in request.headers
    body = json.loads(request.content)
    assert body["contents"][0]["parts"][0]["text"] == "hello"
    assert body["generationConfig"] == {"temperature": 0.35, "maxOutputTokens": 600}


@pytest.mark.asyncio
async def test_api_version_is_configurable(httpx_mock):
    url = f"{BASE}/v1beta/models/gemini-2.5-flash:generateContent"
    httpx_mock.add_response(method="POST", url=f"{url}?key=g-key", json=_ok_body("{}"))

    client = GeminiClient(_settings(api_version="v1beta"))
    assert client.endpoint("gemini-2.5-flash") == url
    await _generate(client, model="gemini-2.5-flash")


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [403, 404])
async def test_not_found_or_forbidden_is_model_unavailable(httpx_mock, status):
    httpx_mock.add_response(
        method="POST",
        json={"error": {"code": status, "message": "models/x is not found for API version v1"}},
        status_code=status,
    )

    with pytest.raises(ModelUnavailableError) as ei:
        await _generate(GeminiClient(_settings()))
    assert ei.value.status == status
    assert "not found" in str(ei.value)


@pytest.mark.asyncio
async def test_rate_limit_is_transient_with_retry_delay(httpx_mock):
    httpx_mock.add_response(
        method="POST",
        json={
            "error": {
                "code": 429,
                "message": "Resource has been exhausted",
                "details": [{"@type": "type.googleapis.com/google.rpc.RetryInfo", "retryDelay": "7s"}],
            }
        },
        status_code=429,
    )

    with pytest.raises(TransientLLMError) as ei:
        await _generate(GeminiClient(_settings()))
    assert ei.value.retry_after == 7.0


@pytest.mark.asyncio
async def test_service_unavailable_uses_retry_after_header(httpx_mock):
    httpx_mock.add_response(method="POST", status_code=503, headers={"retry-after": "2"}, text="overloaded")

    with pytest.raises(TransientLLMError) as ei:
        await _generate(GeminiClient(_settings()))
    assert ei.value.status == 503
    assert ei.value.retry_after == 2.0


@pytest.mark.asyncio
async def test_unauthorized_is_permanent(httpx_mock):
    httpx_mock.add_response(method="POST", json={"error": {"message": "API key not valid"}}, status_code=401)

    with pytest.raises(PermanentLLMError):
        await _generate(GeminiClient(_settings()))


@pytest.mark.asyncio
async def test_missing_candidates_yield_empty_text(httpx_mock):
    httpx_mock.add_response(method="POST", json={"promptFeedback": {"blockReason": "SAFETY"}})

    resp = await _generate(GeminiClient(_settings()))
    assert resp.text == ""


@pytest.mark.asyncio
async def test_timeout_is_transient(httpx_mock):
    httpx_mock.add_exception(httpx.ReadTimeout("slow"))

    with pytest.raises(TransientLLMError):
        await _generate(GeminiClient(_settings()))

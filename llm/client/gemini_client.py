"""Gemini REST (generateContent) 클라이언트.

- ListModels를 호출하지 않는다 (503 유발). 후보 모델을 순서대로 시도하는 쪽은 Synthesizer.
- HTTP 상태를 오류 분류(일시/모델 불가/영구)로 변환한다.
- httpx.AsyncClient 주입으로 테스트 시 실제 네트워크 의존성 제거 (pytest-httpx).
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from llm.client.base import (
    GenerationResponse,
    TransientLLMError,
    error_for_status,
    parse_retry_after,
)
from llm.settings import GenerationSettings


def _retry_delay_from_body(body: Dict[str, Any]) -> Optional[float]:
    """Extract ``google.rpc.RetryInfo.retryDelay`` from an error payload."""
    details = (body.get("error") or {}).get("details") or []
    for detail in details:
        if isinstance(detail, dict) and "retryDelay" in detail:
            return parse_retry_after(detail.get("retryDelay"))
    return None


def _extract_text(body: Dict[str, Any]) -> str:
    candidates = body.get("candidates") or []
    if not candidates:
        return ""
    parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
    return "".join(str(p.get("text") or "") for p in parts if isinstance(p, dict)).strip()


class GeminiClient:
    """Thin async wrapper over ``models/{model}:generateContent``."""

    def __init__(self, settings: GenerationSettings, *, client: Optional[httpx.AsyncClient] = None) -> None:
        self._settings = settings
        self._client = client

    def endpoint(self, model: str) -> str:
        base = self._settings.gemini_api_base.rstrip("/")
        return f"{base}/{self._settings.api_version}/models/{model}:generateContent"

    async def aclose(self) -> None:
        # 주입된 httpx 클라이언트는 호출자가 닫는다
        return None

    async def generate(
        self,
        *,
        model: str,
        prompt: str,
        temperature: float,
        max_output_tokens: int,
    ) -> GenerationResponse:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_output_tokens,
            },
        }
        headers = {"content-type": "application/json"}
        params = {"key": self._settings.api_key}
        timeout = float(self._settings.request_timeout_seconds)

        try:
            if self._client is not None:
                resp = await self._client.post(self.endpoint(model), json=payload, headers=headers, params=params, timeout=timeout)
            else:
                async with httpx.AsyncClient() as client:
                    resp = await client.post(self.endpoint(model), json=payload, headers=headers, params=params, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise TransientLLMError(f"Gemini 타임아웃 ({model})", model=model) from exc
        except httpx.HTTPError as exc:
            raise TransientLLMError(f"Gemini 호출 오류 ({model}): {exc}", model=model) from exc

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.status_code >= 400:
            message = f"Gemini API error {resp.status_code}"
            if isinstance(body, dict):
                message = str((body.get("error") or {}).get("message") or message)
            retry_after = parse_retry_after(resp.headers.get("retry-after"))
            if retry_after is None and isinstance(body, dict):
                retry_after = _retry_delay_from_body(body)
            raise error_for_status(resp.status_code, message, model=model, retry_after=retry_after)

        if not isinstance(body, dict):
            # 200인데 JSON이 아니면 게이트웨이/프록시 문제로 본다
            raise TransientLLMError(f"Gemini 응답이 JSON이 아닙니다 ({resp.status_code})", status=resp.status_code, model=model)

        # blocked prompts come back without candidates; the empty text is handled as malformed output
        return GenerationResponse(text=_extract_text(body), model=model)

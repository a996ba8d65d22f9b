"""OpenAI 클라이언트 래퍼 (대체 생성 엔드포인트).

특징
- Chat Completions 호출을 GenerationClient 인터페이스로 감싼다
- openai SDK 예외를 일시/모델 불가/영구 오류로 변환
- Provider 주입으로 테스트 시 네트워크/실제 의존성 제거
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

from llm.client.base import (
    GenerationResponse,
    LLMError,
    PermanentLLMError,
    TransientLLMError,
    error_for_status,
    parse_retry_after,
)
from llm.settings import GenerationSettings, get_generation_settings


ProviderFn = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


def _translate_openai_error(exc: Exception, model: str) -> LLMError:
    import openai  # noqa: PLC0415

    if isinstance(exc, openai.APITimeoutError):
        return TransientLLMError(f"OpenAI 타임아웃 ({model})", model=model)
    if isinstance(exc, openai.APIConnectionError):
        return TransientLLMError(f"OpenAI 연결 오류 ({model}): {exc}", model=model)
    if isinstance(exc, openai.APIStatusError):
        retry_after = parse_retry_after(exc.response.headers.get("retry-after"))
        return error_for_status(exc.status_code, str(exc), model=model, retry_after=retry_after)
    return PermanentLLMError(f"OpenAI 호출 실패 ({model}): {exc}", model=model)


@dataclass
class OpenAIClient:
    settings: GenerationSettings
    provider: Optional[ProviderFn] = None
    _sdk_client: Any = field(default=None, init=False, repr=False)

    @classmethod
    def from_env(cls, provider: Optional[ProviderFn] = None) -> "OpenAIClient":
        return cls(get_generation_settings(), provider=provider)

    def _get_provider(self) -> ProviderFn:
        if self.provider is not None:
            return self.provider

        client = self._get_sdk_client()

        async def _call(payload: Dict[str, Any]) -> Dict[str, Any]:
            try:
                resp = await client.chat.completions.create(**payload)
            except Exception as exc:
                raise _translate_openai_error(exc, payload["model"]) from exc
            return {
                "choices": [{"message": {"content": resp.choices[0].message.content}}],
                "model": resp.model,
            }

        return _call

    def _get_sdk_client(self) -> Any:
        if self._sdk_client is None:
            from openai import AsyncOpenAI  # noqa: PLC0415

            self._sdk_client = AsyncOpenAI(
                api_key=self.settings.api_key,
                timeout=float(self.settings.request_timeout_seconds),
                max_retries=0,  # retries/backoff are owned by the synthesizer
            )
        return self._sdk_client

    async def aclose(self) -> None:
        if self._sdk_client is not None:
            await self._sdk_client.close()
            self._sdk_client = None

    async def generate(
        self,
        *,
        model: str,
        prompt: str,
        temperature: float,
        max_output_tokens: int,
    ) -> GenerationResponse:
        payload = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": float(temperature),
            "max_tokens": int(max_output_tokens),
            "response_format": {"type": "json_object"},
        }
        resp = await self._get_provider()(payload)
        content = (resp.get("choices") or [{}])[0].get("message", {}).get("content") or ""
        return GenerationResponse(text=str(content).strip(), model=model)

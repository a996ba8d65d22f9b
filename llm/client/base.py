"""Generation client protocol and error taxonomy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol


class LLMError(Exception):
    """LLM 호출 관련 기본 오류."""

    def __init__(self, message: str, *, status: Optional[int] = None, model: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status
        self.model = model


class TransientLLMError(LLMError):
    """일시 오류(재시도 대상): rate limit, 일시적 서비스 불가, 네트워크 오류, 타임아웃."""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        model: Optional[str] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message, status=status, model=model)
        self.retry_after = retry_after


class ModelUnavailableError(LLMError):
    """모델을 찾을 수 없거나 사용할 수 없음(다음 후보로 즉시 이동)."""


class PermanentLLMError(LLMError):
    """영구 오류(재시도 불가, 후보 루프 중단)."""


@dataclass(frozen=True)
class GenerationResponse:
    text: str
    model: str


class GenerationClient(Protocol):
    async def generate(
        self,
        *,
        model: str,
        prompt: str,
        temperature: float,
        max_output_tokens: int,
    ) -> GenerationResponse: ...

    async def aclose(self) -> None: ...


TRANSIENT_STATUSES = frozenset({408, 429, 500, 502, 503, 504})
UNAVAILABLE_STATUSES = frozenset({403, 404})


def error_for_status(
    status: int,
    message: str,
    *,
    model: Optional[str] = None,
    retry_after: Optional[float] = None,
) -> LLMError:
    """Map an HTTP status to the error class that drives candidate handling."""
    if status in UNAVAILABLE_STATUSES:
        return ModelUnavailableError(message, status=status, model=model)
    if status in TRANSIENT_STATUSES:
        return TransientLLMError(message, status=status, model=model, retry_after=retry_after)
    return PermanentLLMError(message, status=status, model=model)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds from a ``Retry-After`` header or a ``"12s"`` style delay; None if unparseable."""
    if value is None:
        return None
    s = str(value).strip().lower()
    if s.endswith("s"):
        s = s[:-1]
    try:
        seconds = float(s)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None

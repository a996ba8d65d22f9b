"""Settings for the synthesis (generation endpoint) stage."""

from __future__ import annotations

from functools import lru_cache
from typing import List, Literal, Optional, Tuple

from pydantic import (
    AliasChoices,
    Field,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict, SettingsError

from ingestion.settings import ConfigurationError

DEFAULT_MODEL_CANDIDATES = {
    "gemini": ("gemini-2.5-flash", "gemini-2.0-flash", "gemini-1.5-flash"),
    "openai": ("gpt-4o-mini", "gpt-4.1-mini"),
}


def _split_csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class GenerationSettings(BaseSettings):
    """Environment-driven configuration for the synthesis stage."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    llm_provider: Literal["gemini", "openai"] = Field("gemini", alias="LLM_PROVIDER", description="생성 엔드포인트 종류")
    gemini_api_key: Optional[SecretStr] = Field(None, alias="GEMINI_API_KEY", description="Gemini API key")
    openai_api_key: Optional[SecretStr] = Field(None, alias="OPENAI_API_KEY", description="OpenAI API key")
    forced_model: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("forced_model", "LLM_MODEL", "GEMINI_MODEL"),
        description="후보 목록보다 먼저 시도할 모델",
    )
    candidate_models_csv: str = Field(
        "",
        validation_alias=AliasChoices("candidate_models_csv", "LLM_MODEL_CANDIDATES", "GEMINI_MODEL_CANDIDATES"),
        description="쉼표로 구분된 후보 모델 목록 (비어 있으면 기본값)",
    )
    api_version: str = Field("v1", alias="GEMINI_API_VERSION", description="Gemini REST API 버전")
    gemini_api_base: str = Field(
        "https://generativelanguage.googleapis.com",
        alias="GEMINI_API_BASE",
        description="Gemini REST API base URL",
    )
    output_language: str = Field("fr_FR", alias="OUTPUT_LANGUAGE", description="합성 출력 언어(locale)")
    temperature: float = Field(0.35, ge=0.0, le=2.0, alias="LLM_TEMPERATURE", description="Sampling temperature")
    max_output_tokens: PositiveInt = Field(600, alias="LLM_MAX_OUTPUT_TOKENS", description="Max completion tokens")
    request_timeout_seconds: PositiveFloat = Field(
        20.0,
        alias="LLM_REQUEST_TIMEOUT_SECONDS",
        description="요청당 타임아웃(초)",
    )
    retry_max_attempts: PositiveInt = Field(
        3,
        alias="LLM_RETRY_MAX_ATTEMPTS",
        description="후보 모델당 최대 시도 횟수 (일시 오류 기준)",
    )
    backoff_schedule_csv: str = Field(
        "1.5,3,6",
        alias="LLM_BACKOFF_SCHEDULE_SECONDS",
        description="재시도 대기 시간 스케줄(초, 쉼표 구분)",
    )
    backoff_max_seconds: PositiveFloat = Field(30.0, alias="LLM_BACKOFF_MAX_SECONDS", description="재시도 대기 상한(초)")
    synthesis_max_items: int = Field(6, ge=5, le=8, alias="SYNTHESIS_MAX_ITEMS", description="프롬프트에 넣을 최대 기사 수")

    @field_validator("forced_model")
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @field_validator("backoff_schedule_csv")
    @classmethod
    def _validate_schedule(cls, v: str) -> str:
        parts = _split_csv(v)
        if not parts:
            raise ValueError("LLM_BACKOFF_SCHEDULE_SECONDS는 비어 있을 수 없습니다.")
        try:
            values = [float(p) for p in parts]
        except ValueError as exc:
            raise ValueError("LLM_BACKOFF_SCHEDULE_SECONDS는 숫자 목록이어야 합니다.") from exc
        if any(x < 0 for x in values):
            raise ValueError("LLM_BACKOFF_SCHEDULE_SECONDS는 음수를 포함할 수 없습니다.")
        return v

    @model_validator(mode="after")
    def _require_api_key(self) -> "GenerationSettings":
        key = self.gemini_api_key if self.llm_provider == "gemini" else self.openai_api_key
        if key is None or not key.get_secret_value().strip():
            name = "GEMINI_API_KEY" if self.llm_provider == "gemini" else "OPENAI_API_KEY"
            raise ValueError(f"{name}가 설정되지 않았습니다.")
        return self

    @property
    def api_key(self) -> str:
        key = self.gemini_api_key if self.llm_provider == "gemini" else self.openai_api_key
        assert key is not None
        return key.get_secret_value().strip()

    @property
    def backoff_schedule(self) -> Tuple[float, ...]:
        return tuple(float(p) for p in _split_csv(self.backoff_schedule_csv))

    def candidate_models(self) -> List[str]:
        """Forced model first, then configured (or default) candidates, without duplicates."""
        configured = _split_csv(self.candidate_models_csv) or list(DEFAULT_MODEL_CANDIDATES[self.llm_provider])
        ordered: List[str] = []
        for model in ([self.forced_model] if self.forced_model else []) + configured:
            if model not in ordered:
                ordered.append(model)
        return ordered


@lru_cache()
def get_generation_settings() -> GenerationSettings:
    try:
        return GenerationSettings()
    except (ValidationError, SettingsError) as exc:
        raise ConfigurationError(f"생성 설정 검증 실패: {exc}") from exc


def reset_generation_settings_cache() -> None:
    get_generation_settings.cache_clear()  # type: ignore[attr-defined]

"""Configuration models for the ingestion run."""

from __future__ import annotations

import json
import re
from functools import lru_cache
from typing import Any, List, Optional, Set

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
    ValidationError,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict, SettingsError


class ConfigurationError(RuntimeError):
    """Fatal configuration problem; aborts the run before any output is written."""


_CATEGORY_RE = re.compile(r"^[a-z0-9_-]+$")

# Aggregate document is written as ``<AGGREGATE_DOCUMENT>.json`` next to the category documents.
AGGREGATE_DOCUMENT = "feeds"

CATEGORY_LABELS = {
    "accueil": "Accueil",
    "pays": "Pays",
    "monde": "Monde",
    "economie": "Économie",
    "tech": "Tech",
    "sport": "Sport",
}


class FeedSource(BaseModel):
    """A configured RSS/Atom source tagged with a category."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="피드 식별자 (실행 간 고정).")
    name: str = Field(..., description="표시용 소스 이름.")
    category: str = Field(..., description="카테고리 태그 (소문자).")
    country: Optional[str] = Field(None, description="ISO-3166 국가 코드 (대문자) 또는 null.")
    url: str = Field(..., description="피드 URL.")

    @field_validator("id", "name", "url")
    @classmethod
    def _non_blank(cls, value: str) -> str:
        s = value.strip()
        if not s:
            raise ValueError("피드 필드는 공백일 수 없습니다.")
        return s

    @field_validator("category")
    @classmethod
    def _category_lower(cls, value: str) -> str:
        category = value.strip().lower()
        if not category:
            raise ValueError("category는 공백일 수 없습니다.")
        if not _CATEGORY_RE.match(category):
            raise ValueError(f"category는 영문 소문자, 숫자, -, _ 만 허용됩니다: {value!r}")
        if category == AGGREGATE_DOCUMENT:
            raise ValueError(f"category 이름 {category!r}는 집계 문서용으로 예약되어 있습니다.")
        return category

    @field_validator("country")
    @classmethod
    def _country_upper(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        code = value.strip().upper()
        if not code:
            return None
        if len(code) != 2 or not code.isalpha():
            raise ValueError(f"country는 2자리 국가 코드여야 합니다: {value!r}")
        return code

    @property
    def category_label(self) -> str:
        return CATEGORY_LABELS.get(self.category, self.category.capitalize())


DEFAULT_FEEDS: List[dict[str, Any]] = [
    {
        "id": "bbc-world",
        "name": "BBC",
        "url": "https://feeds.bbci.co.uk/news/world/rss.xml",
        "category": "monde",
        "country": "GB",
    },
    {
        "id": "france24",
        "name": "France24",
        "url": "https://www.france24.com/fr/rss",
        "category": "monde",
        "country": "FR",
    },
    {
        "id": "the-verge",
        "name": "The Verge",
        "url": "https://www.theverge.com/rss/index.xml",
        "category": "tech",
        "country": "US",
    },
    {
        "id": "lemonde-economie",
        "name": "Le Monde",
        "url": "https://www.lemonde.fr/economie/rss_full.xml",
        "category": "economie",
        "country": "FR",
    },
    {
        "id": "lemonde-sport",
        "name": "Le Monde",
        "url": "https://www.lemonde.fr/sport/rss_full.xml",
        "category": "sport",
        "country": "FR",
    },
]


class Settings(BaseSettings):
    """Ingestion용 환경 설정."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
        frozen=True,
        populate_by_name=True,
    )

    feeds: List[FeedSource] = Field(
        default_factory=lambda: [FeedSource(**item) for item in DEFAULT_FEEDS],
        alias="FEEDS",
        description="JSON 배열 형태의 피드 목록.",
    )
    output_dir: str = Field("data", alias="OUTPUT_DIR", description="JSON 산출물 디렉터리.")
    feed_request_timeout_seconds: PositiveInt = Field(
        15,
        alias="FEED_REQUEST_TIMEOUT_SECONDS",
        description="피드 요청 타임아웃(초)",
    )
    feed_max_attempts: PositiveInt = Field(2, alias="FEED_MAX_ATTEMPTS", description="피드 요청 최대 시도 횟수")
    feed_user_agent: str = Field(
        "flash-info-bot/1.0 (+scheduled ingest)",
        alias="FEED_USER_AGENT",
        description="피드 요청 User-Agent",
    )
    item_max_age_hours: PositiveInt = Field(36, alias="ITEM_MAX_AGE_HOURS", description="기사 최대 경과 시간")
    item_excerpt_max_chars: PositiveInt = Field(
        400,
        alias="ITEM_EXCERPT_MAX_CHARS",
        description="기사 발췌 최대 길이",
    )
    ingest_concurrency: PositiveInt = Field(
        1,
        alias="INGEST_CONCURRENCY",
        description="동시에 처리할 피드 수 (기본 1: 업스트림 rate limit 회피).",
    )
    ingest_interval_minutes: PositiveInt = Field(
        30,
        alias="INGEST_INTERVAL_MINUTES",
        description="주기 실행 간격(분).",
    )
    celery_broker_url: str = Field(
        "redis://localhost:6379/0",
        alias="CELERY_BROKER_URL",
        description="Celery 브로커 DSN.",
    )
    structlog_level: str = Field("INFO", alias="STRUCTLOG_LEVEL", description="로그 레벨.")
    log_json: bool = Field(False, alias="LOG_JSON", description="로그를 JSON 형식으로 출력할지 여부.")

    @field_validator("feeds", mode="before")
    @classmethod
    def _parse_feeds(cls, value: Any) -> List[Any]:
        if value in (None, "", []):
            return [dict(item) for item in DEFAULT_FEEDS]
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError("FEEDS는 JSON 배열이어야 합니다.") from exc
            if not isinstance(parsed, list):
                raise ValueError("FEEDS는 JSON 배열이어야 합니다.")
            return parsed
        if isinstance(value, list):
            return value
        raise ValueError("FEEDS는 리스트 형태여야 합니다.")

    @field_validator("feeds")
    @classmethod
    def _validate_unique_feeds(cls, value: List[FeedSource]) -> List[FeedSource]:
        seen: Set[str] = set()
        for feed in value:
            if feed.id in seen:
                raise ValueError(f"중복된 피드 식별자가 존재합니다: {feed.id}")
            seen.add(feed.id)
        return value

    @field_validator("output_dir")
    @classmethod
    def _validate_output_dir(cls, value: str) -> str:
        root = value.strip()
        if not root:
            raise ValueError("OUTPUT_DIR는 공백일 수 없습니다.")
        return root

    def categories(self) -> List[str]:
        """Distinct categories in configured feed order."""
        ordered: List[str] = []
        for feed in self.feeds:
            if feed.category not in ordered:
                ordered.append(feed.category)
        return ordered


@lru_cache()
def get_settings() -> Settings:
    """환경 변수를 기준으로 Settings 인스턴스를 반환한다."""
    try:
        return Settings()
    except (ValidationError, SettingsError) as exc:
        raise ConfigurationError(f"환경 변수 검증에 실패했습니다: {exc}") from exc


def reset_settings_cache() -> None:
    """Settings LRU 캐시를 초기화한다 (테스트 용도)."""
    get_settings.cache_clear()  # type: ignore[attr-defined]

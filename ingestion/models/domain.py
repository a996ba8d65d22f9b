"""Domain DTOs for the ingestion pipeline."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class NormalizedItem(BaseModel):
    """One feed entry in the uniform shape used by synthesis and publishing."""

    title: str = Field(..., description="기사 제목 (공백 불가)")
    url: str = Field(..., description="기사 URL (피드 내 유일)")
    published_at: Optional[datetime] = None
    excerpt: str = Field("", description="HTML 제거 후 잘라낸 본문 발췌")
    image_url: Optional[str] = None

    @field_validator("title", "url")
    @classmethod
    def _strip_nonempty(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("빈 문자열은 허용되지 않습니다.")
        return s

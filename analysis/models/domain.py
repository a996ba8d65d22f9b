"""DTO/스키마: 합성 입력 컨텍스트와 결과 정의.

Pydantic v2 기반의 명확한 스키마로 LLM 입/출력을 정규화한다.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

TITLE_MAX_CHARS = 140
SUMMARY_MAX_CHARS = 400
KEY_POINTS_MAX = 5
BODY_MAX_CHARS = 2000
COUNTRIES_MAX = 8


def _clamp(value: str, length: int) -> str:
    if len(value) <= length:
        return value
    return value[: length - 1].rstrip() + "…"


def _country_codes(value: object) -> List[str]:
    if not isinstance(value, list):
        return []
    codes: List[str] = []
    for raw in value:
        code = str(raw or "").strip().upper()
        if code and code not in codes:
            codes.append(code)
        if len(codes) >= COUNTRIES_MAX:
            break
    return codes


class SynthesisContext(BaseModel):
    """Feed-level context embedded in the instruction text."""

    model_config = ConfigDict(frozen=True)

    category: str
    category_label: str
    source: str
    country: Optional[str] = None
    language: str = "fr_FR"


class SynthesisSections(BaseModel):
    """Optional structured breakdown: what is established, assumed, still open."""

    known: str = ""
    assumed: str = ""
    unknown: str = ""

    @field_validator("known", "assumed", "unknown", mode="before")
    @classmethod
    def _to_text(cls, v: object) -> str:
        if v is None:
            return ""
        if isinstance(v, list):
            return " ".join(str(x).strip() for x in v if str(x).strip())
        return str(v).strip()

    def is_empty(self) -> bool:
        return not (self.known or self.assumed or self.unknown)


class SynthesisPayload(BaseModel):
    """The JSON object the model is asked to return."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    summary: str
    sections: Optional[SynthesisSections] = None
    key_points: List[str] = Field(default_factory=list, alias="keyPoints")
    body: Optional[str] = None
    countries: List[str] = Field(default_factory=list)

    @field_validator("title", "summary", mode="before")
    @classmethod
    def _required_text(cls, v: object) -> str:
        if not isinstance(v, str):
            raise ValueError("문자열이어야 합니다.")
        s = " ".join(v.split())
        if not s:
            raise ValueError("빈 문자열은 허용되지 않습니다.")
        return s

    @field_validator("sections", mode="before")
    @classmethod
    def _sections_optional(cls, v: object) -> object:
        return v if isinstance(v, dict) else None

    @field_validator("key_points", mode="before")
    @classmethod
    def _key_points_cleanup(cls, v: object) -> List[str]:
        if not isinstance(v, list):
            return []
        cleaned: List[str] = []
        for point in v:
            s = " ".join(str(point or "").split())
            if s and s not in cleaned:
                cleaned.append(s)
            if len(cleaned) >= KEY_POINTS_MAX:
                break
        return cleaned

    @field_validator("body", mode="before")
    @classmethod
    def _body_optional(cls, v: object) -> Optional[str]:
        if not isinstance(v, str):
            return None
        lines = [" ".join(line.split()) for line in v.strip().splitlines()]
        return "\n".join(lines).strip() or None

    @field_validator("countries", mode="before")
    @classmethod
    def _countries_cleanup(cls, v: object) -> List[str]:
        return _country_codes(v)


class SynthesisResult(BaseModel):
    """합성 결과 표준 스키마. title/summary는 항상 비어 있지 않다."""

    title: str = Field(..., min_length=1)
    summary: str = Field(..., min_length=1)
    sections: Optional[SynthesisSections] = None
    key_points: List[str] = Field(default_factory=list)
    body: Optional[str] = None
    countries: List[str] = Field(default_factory=list)
    model: Optional[str] = None
    error: Optional[str] = None
    repaired: bool = False
    fallback: bool = False

    @field_validator("title", "summary")
    @classmethod
    def _clamp_text(cls, v: str, info: ValidationInfo) -> str:
        s = v.strip()
        if not s:
            raise ValueError(f"{info.field_name}는 공백일 수 없습니다.")
        return _clamp(s, TITLE_MAX_CHARS if info.field_name == "title" else SUMMARY_MAX_CHARS)

    @field_validator("body")
    @classmethod
    def _clamp_body(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return _clamp(v.strip(), BODY_MAX_CHARS)

    @field_validator("countries", mode="before")
    @classmethod
    def _countries_cleanup(cls, v: object) -> List[str]:
        return _country_codes(v)

    @property
    def degraded(self) -> bool:
        return self.fallback or self.error is not None

    @classmethod
    def from_payload(cls, payload: SynthesisPayload, *, model: str, repaired: bool = False) -> "SynthesisResult":
        sections = payload.sections if payload.sections and not payload.sections.is_empty() else None
        return cls(
            title=payload.title,
            summary=payload.summary,
            sections=sections,
            key_points=payload.key_points,
            body=payload.body,
            countries=payload.countries,
            model=model,
            repaired=repaired,
        )

"""Turn per-feed synthesis outcomes into the UI-facing JSON documents.

One aggregate document (``feeds.json``) plus one document per category, all
with the same ``{generatedAt, count, items}`` shape. Each run fully replaces
the previous documents.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from analysis.models.domain import SynthesisContext, SynthesisResult, SynthesisSections
from analysis.services.fallback import build_fallback_synthesis
from ingestion.models.domain import NormalizedItem
from ingestion.settings import AGGREGATE_DOCUMENT, FeedSource
from publish.storage import PersistenceError, atomic_write_json

logger = logging.getLogger(__name__)

MAX_SOURCE_REFS = 8


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def make_entry_id(feed_id: str, url: Optional[str]) -> str:
    """Stable id for (feed, representative item url); identical across runs."""
    data = (feed_id.strip() + "\n" + (url or "").strip()).encode("utf-8")
    return "id_" + hashlib.sha256(data).hexdigest()[:16]


def build_context(feed: FeedSource, language: str) -> SynthesisContext:
    return SynthesisContext(
        category=feed.category,
        category_label=feed.category_label,
        source=feed.name,
        country=feed.country,
        language=language,
    )


class SourceRef(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    country: Optional[str] = None
    title: str
    url: str
    published_at: Optional[str] = Field(None, alias="publishedAt")


class PublishedEntry(BaseModel):
    """Persisted record: a synthesis plus bookkeeping for the card UI."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    feed_id: str = Field(..., alias="feedId")
    category: str
    category_label: str = Field(..., alias="categoryLabel")
    country: Optional[str] = None
    source: str
    sources_count: int = Field(..., ge=0, alias="sourcesCount")
    title: str = Field(..., min_length=1)
    summary: str = Field(..., min_length=1)
    url: Optional[str] = None
    image: Optional[str] = None
    updated_at: str = Field(..., alias="updatedAt")
    model: Optional[str] = None
    error: Optional[str] = None
    sections: Optional[SynthesisSections] = None
    body: Optional[str] = None
    key_points: List[str] = Field(default_factory=list, alias="keyPoints")
    countries: List[str] = Field(default_factory=list)
    sources: List[SourceRef] = Field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True)
        # optional keys are omitted rather than written as null
        for key in ("error", "sections", "body"):
            if data.get(key) is None:
                data.pop(key, None)
        return data


class FeedDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    generated_at: str = Field(..., alias="generatedAt")
    count: int = Field(..., ge=0)
    items: List[PublishedEntry] = Field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        return {
            "generatedAt": self.generated_at,
            "count": self.count,
            "items": [entry.to_document() for entry in self.items],
        }


@dataclass(frozen=True)
class FeedOutcome:
    """What one feed produced during a run; ``error`` set when the feed failed upstream."""

    feed: FeedSource
    items: Sequence[NormalizedItem] = ()
    synthesis: Optional[SynthesisResult] = None
    error: Optional[str] = None


@dataclass
class PublishReport:
    entries: List[PublishedEntry] = field(default_factory=list)
    written: List[Path] = field(default_factory=list)
    failed_documents: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> int:
        return sum(1 for entry in self.entries if entry.error)


def _source_refs(feed: FeedSource, items: Sequence[NormalizedItem]) -> List[SourceRef]:
    return [
        SourceRef(
            name=feed.name,
            country=feed.country,
            title=item.title,
            url=item.url,
            published_at=_iso(item.published_at) if item.published_at else None,
        )
        for item in items[:MAX_SOURCE_REFS]
    ]


def build_entry(
    feed: FeedSource,
    items: Sequence[NormalizedItem],
    synthesis: SynthesisResult,
    *,
    now: datetime,
) -> PublishedEntry:
    primary_url = items[0].url if items else None
    image = next((item.image_url for item in items if item.image_url), None)
    return PublishedEntry(
        id=make_entry_id(feed.id, primary_url),
        feed_id=feed.id,
        category=feed.category,
        category_label=feed.category_label,
        country=feed.country,
        source=feed.name,
        sources_count=len(items),
        title=synthesis.title,
        summary=synthesis.summary,
        url=primary_url,
        image=image,
        updated_at=_iso(now),
        model=synthesis.model,
        error=synthesis.error,
        sections=synthesis.sections,
        body=synthesis.body,
        key_points=list(synthesis.key_points),
        countries=list(synthesis.countries) or ([feed.country] if feed.country else []),
        sources=_source_refs(feed, items),
    )


def build_degraded_entry(
    feed: FeedSource,
    items: Sequence[NormalizedItem],
    error: str,
    *,
    now: datetime,
    language: str = "fr_FR",
) -> PublishedEntry:
    synthesis = build_fallback_synthesis(build_context(feed, language), items, error=error)
    return build_entry(feed, items, synthesis, now=now)


def materialize_entries(
    outcomes: Iterable[FeedOutcome],
    *,
    now: datetime,
    language: str = "fr_FR",
) -> List[PublishedEntry]:
    """One entry per outcome; a feed that cannot be assembled degrades alone."""
    entries: List[PublishedEntry] = []
    for outcome in outcomes:
        feed = outcome.feed
        try:
            if outcome.synthesis is None:
                raise ValueError(outcome.error or "no synthesis produced")
            entry = build_entry(feed, outcome.items, outcome.synthesis, now=now)
        except Exception as exc:
            error = outcome.error or str(exc)
            logger.warning(
                "publish.entry_degraded",
                extra={"feed": feed.id, "category": feed.category, "error": error},
            )
            entry = build_degraded_entry(feed, outcome.items, error, now=now, language=language)
        entries.append(entry)
    return entries


def assemble_documents(
    entries: Sequence[PublishedEntry],
    *,
    generated_at: datetime,
    categories: Optional[Sequence[str]] = None,
) -> Dict[str, FeedDocument]:
    """Aggregate document under ``AGGREGATE_DOCUMENT`` plus one per category.

    Categories follow ``categories`` when given (configured feed order), then
    any category first seen in ``entries``.
    """
    stamp = _iso(generated_at)
    ordered: List[str] = list(categories or [])
    for entry in entries:
        if entry.category not in ordered:
            ordered.append(entry.category)

    documents: Dict[str, FeedDocument] = {
        AGGREGATE_DOCUMENT: FeedDocument(generated_at=stamp, count=len(entries), items=list(entries)),
    }
    for category in ordered:
        members = [entry for entry in entries if entry.category == category]
        documents[category] = FeedDocument(generated_at=stamp, count=len(members), items=members)
    return documents


def write_documents(output_dir: Path, documents: Dict[str, FeedDocument]) -> PublishReport:
    """Write the aggregate first; its failure is fatal, a category failure is not."""
    report = PublishReport(entries=list(documents[AGGREGATE_DOCUMENT].items))
    aggregate_path = output_dir / f"{AGGREGATE_DOCUMENT}.json"
    try:
        atomic_write_json(aggregate_path, documents[AGGREGATE_DOCUMENT].to_document())
    except OSError as exc:
        raise PersistenceError(f"집계 문서 저장 실패: {aggregate_path} ({exc})") from exc
    report.written.append(aggregate_path)

    for name, document in documents.items():
        if name == AGGREGATE_DOCUMENT:
            continue
        path = output_dir / f"{name}.json"
        try:
            atomic_write_json(path, document.to_document())
        except OSError:
            logger.exception("publish.category_write_failed", extra={"category": name, "path": str(path)})
            report.failed_documents.append(name)
            continue
        report.written.append(path)

    logger.info(
        "publish.written",
        extra={
            "output_dir": str(output_dir),
            "documents": len(report.written),
            "entries": len(report.entries),
            "degraded": report.degraded,
        },
    )
    return report


def publish_outcomes(
    outcomes: Iterable[FeedOutcome],
    output_dir: Path,
    *,
    now: Optional[datetime] = None,
    categories: Optional[Sequence[str]] = None,
    language: str = "fr_FR",
) -> PublishReport:
    stamp = now or datetime.now(timezone.utc)
    entries = materialize_entries(outcomes, now=stamp, language=language)
    documents = assemble_documents(entries, generated_at=stamp, categories=categories)
    return write_documents(output_dir, documents)

"""Ingestion run: fetch → normalize → synthesize → publish."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
from celery import shared_task

from analysis.services.synthesizer import Synthesizer
from ingestion.connectors.base import BaseConnector, ConnectorError
from ingestion.connectors.rss import RSSConnector
from ingestion.models.domain import NormalizedItem
from ingestion.settings import ConfigurationError, FeedSource, Settings, get_settings
from ingestion.utils.logging import get_logger
from llm.client import build_generation_client
from llm.settings import GenerationSettings, get_generation_settings
from publish.materializer import FeedOutcome, PublishReport, build_context, publish_outcomes

logger = get_logger(__name__)

# Connector factory is kept pluggable for tests; it must return an object with async .fetch(feed).
ConnectorFactory = Callable[[FeedSource], BaseConnector]


@dataclass
class IngestionReport:
    trace_id: str
    started_at: datetime
    finished_at: datetime
    outcomes: List[FeedOutcome]
    publish: PublishReport

    @property
    def degraded(self) -> int:
        return self.publish.degraded

    def summary(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "feeds": len(self.outcomes),
            "entries": len(self.publish.entries),
            "degraded": self.degraded,
            "documents": [str(p) for p in self.publish.written],
            "failed_documents": list(self.publish.failed_documents),
            "duration_seconds": round((self.finished_at - self.started_at).total_seconds(), 3),
        }


async def process_feed(
    feed: FeedSource,
    *,
    connector_factory: ConnectorFactory,
    synthesizer: Synthesizer,
    settings: Settings,
    language: str,
    now: datetime,
    trace_id: str,
) -> FeedOutcome:
    """Everything that can go wrong for one feed stays inside this boundary.

    Only :class:`ConfigurationError` escapes.
    """
    extra = {"trace_id": trace_id, "feed": feed.id, "category": feed.category}
    items: List[NormalizedItem] = []
    fetch_error: Optional[str] = None
    try:
        connector = connector_factory(feed)
        items = await connector.fetch(feed, max_attempts=int(settings.feed_max_attempts), now=now)
    except ConfigurationError:
        raise
    except ConnectorError as exc:
        fetch_error = f"fetch failed: {exc}"
        logger.warning("feed.fetch_failed", extra={**extra, "error": str(exc)})
    except Exception as exc:
        fetch_error = f"fetch failed: {type(exc).__name__}: {exc}"
        logger.exception("feed.fetch_unexpected_error", extra=extra)
    else:
        logger.info("feed.fetched", extra={**extra, "items": len(items)})

    try:
        synthesis = await synthesizer.synthesize(build_context(feed, language), items)
    except ConfigurationError:
        raise
    except Exception as exc:
        logger.exception("feed.synthesis_failed", extra=extra)
        return FeedOutcome(feed=feed, items=items, error=f"{type(exc).__name__}: {exc}")

    if fetch_error and synthesis.error is None:
        synthesis = synthesis.model_copy(update={"error": fetch_error})
    return FeedOutcome(feed=feed, items=items, synthesis=synthesis)


async def _gather_outcomes(
    settings: Settings,
    *,
    connector_factory: ConnectorFactory,
    synthesizer: Synthesizer,
    language: str,
    now: datetime,
    trace_id: str,
) -> List[FeedOutcome]:
    # Semaphore waiters are served FIFO, so with concurrency 1 feeds run in configured order.
    semaphore = asyncio.Semaphore(int(settings.ingest_concurrency))

    async def _bounded(feed: FeedSource) -> FeedOutcome:
        async with semaphore:
            return await process_feed(
                feed,
                connector_factory=connector_factory,
                synthesizer=synthesizer,
                settings=settings,
                language=language,
                now=now,
                trace_id=trace_id,
            )

    return list(await asyncio.gather(*(_bounded(feed) for feed in settings.feeds)))


async def run_ingestion(
    settings: Settings,
    generation_settings: GenerationSettings,
    *,
    connector_factory: Optional[ConnectorFactory] = None,
    synthesizer: Optional[Synthesizer] = None,
    output_dir: Optional[Path] = None,
    now: Optional[datetime] = None,
) -> IngestionReport:
    """Run one full-refresh ingestion and write the document set.

    Raises ``ConfigurationError`` or ``PersistenceError``; every other failure
    degrades the affected feed only.
    """
    trace_id = str(uuid.uuid4())
    started_at = now or datetime.now(timezone.utc)
    target = Path(output_dir or settings.output_dir)
    language = generation_settings.output_language
    logger.info(
        "ingest.start",
        extra={
            "trace_id": trace_id,
            "feeds": len(settings.feeds),
            "concurrency": int(settings.ingest_concurrency),
            "output_dir": str(target),
        },
    )

    async with httpx.AsyncClient(follow_redirects=True) as http:
        if connector_factory is None:
            connector = RSSConnector.from_settings(settings, client=http)
            connector_factory = lambda _feed: connector  # noqa: E731
        owned_client = None
        if synthesizer is None:
            owned_client = build_generation_client(generation_settings, http_client=http)
            synthesizer = Synthesizer(owned_client, generation_settings)

        try:
            outcomes = await _gather_outcomes(
                settings,
                connector_factory=connector_factory,
                synthesizer=synthesizer,
                language=language,
                now=started_at,
                trace_id=trace_id,
            )
        finally:
            if owned_client is not None:
                await owned_client.aclose()

    report = publish_outcomes(
        outcomes,
        target,
        now=started_at,
        categories=settings.categories(),
        language=language,
    )
    finished_at = datetime.now(timezone.utc) if now is None else started_at
    result = IngestionReport(
        trace_id=trace_id,
        started_at=started_at,
        finished_at=finished_at,
        outcomes=outcomes,
        publish=report,
    )
    logger.info("ingest.done", extra=result.summary())
    return result


@shared_task(name="ingestion.tasks.ingest.run_ingestion_task")
def run_ingestion_task() -> Dict[str, Any]:  # pragma: no cover - thin wrapper
    report = asyncio.run(run_ingestion(get_settings(), get_generation_settings()))
    return report.summary()

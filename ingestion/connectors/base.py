"""Connector abstraction, errors, and normalization helpers."""

from __future__ import annotations

import calendar
import re
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from html import unescape
from typing import Any, Dict, Iterable, List, Optional

from ingestion.models.domain import NormalizedItem
from ingestion.settings import FeedSource
from ingestion.utils.logging import get_logger

logger = get_logger(__name__)

_HTML_TAG_RE = re.compile(r"<[^>]+>")
_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")


class ConnectorError(Exception):
    """Base connector error."""


class TransientError(ConnectorError):
    """Retryable error (e.g., rate limit, network hiccup)."""


class PermanentError(ConnectorError):
    """Non-retryable error (e.g., 4xx semantics, unparseable feed)."""


def strip_html(value: Any) -> str:
    if not value:
        return ""
    text = _SCRIPT_STYLE_RE.sub(" ", str(value))
    text = _HTML_TAG_RE.sub(" ", text)
    text = unescape(text).replace("\xa0", " ")
    return _WHITESPACE_RE.sub(" ", text).strip()


def truncate(value: str, length: int) -> str:
    if len(value) <= length:
        return value
    return value[: length - 1].rstrip() + "…"


def _coerce_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, time.struct_time) or (isinstance(value, tuple) and len(value) >= 6):
        try:
            return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
        except (OverflowError, ValueError, TypeError):
            return None
    if isinstance(value, str):
        s = value.strip()
        try:
            parsed = parsedate_to_datetime(s)
        except (TypeError, ValueError):
            try:
                parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
            except ValueError:
                return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _first_content_value(entry: Dict[str, Any]) -> str:
    content = entry.get("content")
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict):
                val = block.get("value")
                if isinstance(val, str) and val.strip():
                    return val
    return ""


def _first_url(candidates: Any, key: str = "url") -> Optional[str]:
    if isinstance(candidates, dict):
        candidates = [candidates]
    if not isinstance(candidates, list):
        return None
    for candidate in candidates:
        if isinstance(candidate, dict):
            url = candidate.get(key) or candidate.get("href")
            if isinstance(url, str) and url.strip():
                return url.strip()
    return None


def pick_image_url(entry: Dict[str, Any]) -> Optional[str]:
    """Best-effort image lookup; field names vary across feeds."""
    for enclosure in entry.get("enclosures") or []:
        if not isinstance(enclosure, dict):
            continue
        kind = str(enclosure.get("type") or "")
        href = enclosure.get("href") or enclosure.get("url")
        if href and (not kind or kind.startswith("image/")):
            return str(href).strip()
    for key in ("media_content", "media_thumbnail"):
        url = _first_url(entry.get(key))
        if url:
            return url
    image = entry.get("image")
    if isinstance(image, str) and image.strip():
        return image.strip()
    return _first_url(image, key="href")


class BaseConnector(ABC):
    """Abstract feed connector with retry and normalization hooks."""

    def __init__(self, *, max_excerpt_chars: int = 400, max_age_hours: Optional[int] = 36) -> None:
        self._max_excerpt_chars = max_excerpt_chars
        self._max_age_hours = max_age_hours

    async def fetch(
        self,
        feed: FeedSource,
        *,
        max_attempts: int = 2,
        now: Optional[datetime] = None,
    ) -> List[NormalizedItem]:
        attempts = 0
        last_error: Optional[Exception] = None
        while attempts < max_attempts:
            attempts += 1
            try:
                raw = await self._fetch_raw(feed)
                return self.normalize(raw, now=now)
            except TransientError as exc:  # retry
                last_error = exc
                logger.info(
                    "feed.fetch_retry",
                    extra={"feed": feed.id, "attempt": attempts, "error": str(exc)},
                )
                if attempts >= max_attempts:
                    raise
            except PermanentError:
                raise
        assert last_error is not None
        raise last_error

    @abstractmethod
    async def _fetch_raw(self, feed: FeedSource) -> List[Dict[str, Any]]:
        """Return a list of raw entry dicts from the upstream."""

    def normalize(self, entries: Iterable[Dict[str, Any]], *, now: Optional[datetime] = None) -> List[NormalizedItem]:
        """Drop incomplete, duplicate and stale entries; newest first, undated last."""
        reference = now or datetime.now(timezone.utc)
        cutoff = reference - timedelta(hours=self._max_age_hours) if self._max_age_hours else None
        seen: set[str] = set()
        normalized: List[NormalizedItem] = []
        for entry in entries:
            item = self._normalize_entry(entry)
            if item is None or item.url in seen:
                continue
            if cutoff is not None and item.published_at is not None and item.published_at < cutoff:
                continue
            seen.add(item.url)
            normalized.append(item)
        normalized.sort(
            key=lambda it: (it.published_at is not None, it.published_at or reference),
            reverse=True,
        )
        return normalized

    def _normalize_entry(self, entry: Dict[str, Any]) -> Optional[NormalizedItem]:
        title = strip_html(entry.get("title"))
        url = str(entry.get("link") or entry.get("url") or entry.get("id") or entry.get("guid") or "").strip()
        if not title or not url:
            return None
        published_at = None
        for key in ("published_parsed", "updated_parsed", "published_at", "published", "updated", "publishedAt"):
            published_at = _coerce_datetime(entry.get(key))
            if published_at is not None:
                break
        body = (
            strip_html(entry.get("summary"))
            or strip_html(entry.get("description"))
            or strip_html(_first_content_value(entry))
        )
        return NormalizedItem(
            title=title,
            url=url,
            published_at=published_at,
            excerpt=truncate(body, self._max_excerpt_chars),
            image_url=pick_image_url(entry),
        )

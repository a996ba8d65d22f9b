"""RSS/Atom connector (httpx fetch + feedparser, fetcher-injectable for tests/offline)."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Optional

import feedparser
import httpx

from ingestion.settings import FeedSource, Settings

from .base import BaseConnector, PermanentError, TransientError


FetcherFn = Callable[[FeedSource], Awaitable[List[Dict[str, Any]]]]

_ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.7"


class RSSConnector(BaseConnector):
    """Connector that downloads a feed document and normalizes its entries.

    - fetcher 주입 시: 오프라인 모드 (raw entry dict 목록을 그대로 사용)
    - fetcher 미주입 시: httpx로 실제 HTTP 호출 후 feedparser로 파싱
    """

    def __init__(
        self,
        fetcher: Optional[FetcherFn] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 15.0,
        user_agent: str = "flash-info-bot/1.0",
        max_excerpt_chars: int = 400,
        max_age_hours: Optional[int] = 36,
    ) -> None:
        super().__init__(max_excerpt_chars=max_excerpt_chars, max_age_hours=max_age_hours)
        self._fetcher = fetcher
        self._client = client
        self._timeout = timeout_seconds
        self._headers = {"user-agent": user_agent, "accept": _ACCEPT}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        fetcher: Optional[FetcherFn] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "RSSConnector":
        return cls(
            fetcher,
            client=client,
            timeout_seconds=float(settings.feed_request_timeout_seconds),
            user_agent=settings.feed_user_agent,
            max_excerpt_chars=int(settings.item_excerpt_max_chars),
            max_age_hours=int(settings.item_max_age_hours),
        )

    async def _fetch_raw(self, feed: FeedSource) -> List[Dict[str, Any]]:
        if self._fetcher is not None:
            return await self._fetcher(feed)

        if self._client is not None:
            content = await self._download(self._client, feed)
        else:
            async with httpx.AsyncClient(follow_redirects=True) as client:
                content = await self._download(client, feed)

        parsed = feedparser.parse(content)
        entries = list(parsed.get("entries") or [])
        if not entries and (parsed.get("bozo") or not parsed.get("version")):
            raise PermanentError(f"피드 파싱 실패: {feed.url} ({parsed.get('bozo_exception')})")
        return entries

    async def _download(self, client: httpx.AsyncClient, feed: FeedSource) -> bytes:
        try:
            resp = await client.get(feed.url, headers=self._headers, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            raise TransientError(f"피드 타임아웃: {feed.url}") from exc
        except httpx.HTTPError as exc:
            raise TransientError(f"피드 호출 오류: {feed.url} ({exc})") from exc

        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientError(f"피드 일시 오류: {resp.status_code} for {feed.url}")
        if resp.status_code >= 400:
            raise PermanentError(f"피드 오류: {resp.status_code} for {feed.url}")
        return resp.content

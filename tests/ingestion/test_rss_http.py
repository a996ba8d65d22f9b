from __future__ import annotations

from datetime import datetime, timezone

import pytest

pytest.importorskip("pytest_httpx")
pytest.importorskip("feedparser")

from ingestion.connectors.base import PermanentError, TransientError
from ingestion.connectors.rss import RSSConnector
from ingestion.settings import FeedSource

FEED_URL = "https://feeds.example.com/world/rss.xml"
FEED = FeedSource(id="world", name="Example", category="monde", country="FR", url=FEED_URL)
NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

RSS_BODY = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example world</title>
    <link>https://example.com</link>
    <description>World news</description>
    <item>
      <title>Summit opens in Paris</title>
      <link>https://example.com/summit</link>
      <description><![CDATA[<p>Leaders <b>gather</b> today.</p>]]></description>
      <pubDate>Sat, 01 Mar 2025 10:00:00 GMT</pubDate>
      <enclosure url="https://img.example.com/summit.jpg" type="image/jpeg" length="1000"/>
    </item>
    <item>
      <title>Markets steady</title>
      <link>https://example.com/markets</link>
      <description>Indexes flat.</description>
      <pubDate>Sat, 01 Mar 2025 11:30:00 GMT</pubDate>
    </item>
  </channel>
</rss>
"""


@pytest.mark.asyncio
async def test_rss_fetch_parses_feed_document(httpx_mock):
    httpx_mock.add_response(method="GET", url=FEED_URL, content=RSS_BODY, status_code=200)

    connector = RSSConnector(user_agent="flash-info-test/1.0")
    items = await connector.fetch(FEED, now=NOW)

    assert [it.url for it in items] == ["https://example.com/markets", "https://example.com/summit"]
    summit = items[1]
    assert summit.title == "Summit opens in Paris"
    assert summit.excerpt == "Leaders gather today."
    assert summit.image_url == "https://img.example.com/summit.jpg"
    assert summit.published_at == datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)

    request = httpx_mock.get_requests()[0]
    assert request.headers["user-agent"] == "flash-info-test/1.0"


@pytest.mark.asyncio
async def test_rss_fetch_not_found_is_permanent(httpx_mock):
    httpx_mock.add_response(method="GET", url=FEED_URL, status_code=404)

    connector = RSSConnector()
    with pytest.raises(PermanentError):
        await connector.fetch(FEED, max_attempts=2, now=NOW)
    assert len(httpx_mock.get_requests()) == 1


@pytest.mark.asyncio
async def test_rss_fetch_retries_server_error(httpx_mock):
    httpx_mock.add_response(method="GET", url=FEED_URL, status_code=503)
    httpx_mock.add_response(method="GET", url=FEED_URL, content=RSS_BODY, status_code=200)

    connector = RSSConnector()
    items = await connector.fetch(FEED, max_attempts=2, now=NOW)

    assert len(items) == 2
    assert len(httpx_mock.get_requests()) == 2


@pytest.mark.asyncio
async def test_rss_fetch_rate_limited_raises_transient_after_attempts(httpx_mock):
    httpx_mock.add_response(method="GET", url=FEED_URL, status_code=429)

    connector = RSSConnector()
    with pytest.raises(TransientError):
        await connector.fetch(FEED, max_attempts=1, now=NOW)


@pytest.mark.asyncio
async def test_rss_fetch_unparseable_document_is_permanent(httpx_mock):
    httpx_mock.add_response(method="GET", url=FEED_URL, content=b"<html><body>maintenance", status_code=200)

    connector = RSSConnector()
    with pytest.raises(PermanentError):
        await connector.fetch(FEED, max_attempts=2, now=NOW)

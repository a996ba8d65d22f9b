"""Quick RSS connector smoke test (no synthesis, nothing written).

Usage:
  python scripts/fetch_feeds.py -f bbc-world -n 5 --attempts 2

Reads FEEDS and the fetch policy from .env via pydantic settings.
Prints fetched count and a few top items (title + URL) per feed.
"""

from __future__ import annotations

import argparse
import asyncio
from typing import List

from ingestion.connectors.base import PermanentError, TransientError
from ingestion.connectors.rss import RSSConnector
from ingestion.settings import FeedSource, get_settings


async def _fetch_all(feeds: List[FeedSource], top: int, attempts: int) -> int:
    cfg = get_settings()
    connector = RSSConnector.from_settings(cfg)
    failures = 0
    for feed in feeds:
        try:
            items = await connector.fetch(feed, max_attempts=attempts)
        except PermanentError as exc:
            print(f"[{feed.id}] Permanent error: {exc}")
            failures += 1
            continue
        except TransientError as exc:
            print(f"[{feed.id}] Transient error: {exc}")
            failures += 1
            continue

        print(f"[{feed.id}] Fetched {len(items)} items ({feed.category}).")
        for idx, it in enumerate(items[:top], start=1):
            stamp = it.published_at.isoformat() if it.published_at else "-"
            print(f"{idx}. {it.title[:120]}\n   {it.url} ({stamp})")
    return failures


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="RSS feed smoke test")
    parser.add_argument("-f", "--feed", action="append", help="Feed id to fetch (repeatable; default: all)")
    parser.add_argument("-n", "--top", type=int, default=5, help="Print top N items (default: 5)")
    parser.add_argument("--attempts", type=int, default=2, help="Max attempts per feed (default: 2)")
    args = parser.parse_args(argv)

    cfg = get_settings()
    feeds = [f for f in cfg.feeds if not args.feed or f.id in args.feed]
    if not feeds:
        print(f"No configured feed matches {args.feed}.")
        return 2

    failures = asyncio.run(_fetch_all(feeds, args.top, args.attempts))
    return 3 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())

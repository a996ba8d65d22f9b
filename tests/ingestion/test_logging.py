from __future__ import annotations

import json
import logging
import sys

from ingestion.utils.logging import JsonFormatter


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("ingestion.tasks.ingest", logging.INFO, __file__, 1, "feed.fetched", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_merges_extra_fields():
    line = JsonFormatter().format(_record(feed="bbc-world", items=3))
    payload = json.loads(line)

    assert payload["event"] == "feed.fetched"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "ingestion.tasks.ingest"
    assert payload["feed"] == "bbc-world"
    assert payload["items"] == 3
    assert "msg" not in payload


def test_json_formatter_includes_exception_text():
    try:
        raise ValueError("boom")
    except ValueError:
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "publish.failed", None, sys.exc_info())

    payload = json.loads(JsonFormatter().format(record))
    assert "ValueError: boom" in payload["exception"]

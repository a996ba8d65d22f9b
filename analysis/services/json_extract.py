"""Locate a JSON object inside free-form model output.

Models wrap JSON in code fences, prefix it with a sentence, or append trailing
commentary. :func:`extract_json_object` scans for balanced ``{...}`` spans
(ignoring braces inside string literals) and returns the first one that decodes
to a dict.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterator, Optional, Tuple

from pydantic import ValidationError

from analysis.models.domain import SynthesisPayload


def _balanced_spans(text: str) -> Iterator[Tuple[int, int]]:
    """Yield ``(start, end)`` for each balanced top-level object, in order.

    An unbalanced opening brace yields nothing for that start; scanning resumes
    at the next ``{``.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        end = -1
        for idx in range(start, len(text)):
            ch = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    end = idx + 1
                    break
        if end != -1:
            yield start, end
            start = text.find("{", end)
        else:
            start = text.find("{", start + 1)


def extract_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Return the first balanced JSON object in ``text`` that decodes to a dict."""
    if not text:
        return None
    for start, end in _balanced_spans(text):
        try:
            value = json.loads(text[start:end])
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


class MalformedOutputError(ValueError):
    """Model output does not contain the expected synthesis object."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


def parse_synthesis_payload(text: Optional[str]) -> SynthesisPayload:
    """Extract and validate ``{"title", "summary", ...}`` from model output."""
    data = extract_json_object(text)
    if data is None:
        raise MalformedOutputError("no JSON object in model output", raw=text or "")
    try:
        return SynthesisPayload.model_validate(data)
    except ValidationError as exc:
        raise MalformedOutputError(f"JSON object missing required keys: {exc.error_count()} error(s)", raw=text or "") from exc

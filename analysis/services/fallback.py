"""Deterministic, non-generative syntheses built only from the input items."""

from __future__ import annotations

from typing import Optional, Sequence

from analysis.models.domain import SynthesisContext, SynthesisResult
from ingestion.models.domain import NormalizedItem

NO_DATA_SUMMARY = "Aucune donnée disponible pour le moment."
UNAVAILABLE_SUMMARY = "Synthèse temporairement indisponible."
SUMMARY_TITLES = 2
KEY_POINT_TITLES = 3
BODY_TITLES = 3


def build_placeholder_synthesis(context: SynthesisContext) -> SynthesisResult:
    return SynthesisResult(
        title=f"{context.category_label} : aucune donnée",
        summary=NO_DATA_SUMMARY,
        model=None,
        fallback=True,
    )


def build_fallback_synthesis(
    context: SynthesisContext,
    items: Sequence[NormalizedItem],
    *,
    error: Optional[str] = None,
) -> SynthesisResult:
    """Title from the first item, summary from the first titles. Must not raise."""
    titles = [it.title for it in items if it.title]
    if not titles:
        result = build_placeholder_synthesis(context)
        return result.model_copy(update={"error": error})
    summary = " • ".join(titles[:SUMMARY_TITLES]) or UNAVAILABLE_SUMMARY
    body = "\n".join(f"- {title} ({context.source})" for title in titles[:BODY_TITLES])
    return SynthesisResult(
        title=f"{context.category_label} : {titles[0]}",
        summary=summary,
        key_points=titles[:KEY_POINT_TITLES],
        body=body,
        countries=[context.country] if context.country else [],
        model=None,
        error=error,
        fallback=True,
    )

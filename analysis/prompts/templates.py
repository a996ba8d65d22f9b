"""프롬프트 템플릿/빌더.

LLM에게 단일 JSON 객체 출력을 요청하는 지시문과, 형식이 깨진 출력을
다시 JSON으로 정리하도록 요청하는 repair 지시문을 생성한다.
"""

from __future__ import annotations

from typing import List, Sequence

from analysis.models.domain import SynthesisContext
from ingestion.models.domain import NormalizedItem

EXCERPT_MAX_CHARS = 280
TITLE_TARGET_CHARS = 90

JSON_SCHEMA_SNIPPET = (
    "{\n"
    f'  "title": string (<= {TITLE_TARGET_CHARS} caractères),\n'
    '  "summary": string (2 à 3 phrases maximum),\n'
    '  "body": string (6 à 12 phrases, paragraphes courts),\n'
    '  "sections": {"known": string, "assumed": string, "unknown": string},\n'
    '  "keyPoints": array<string> (0 à 5 éléments),\n'
    '  "countries": array<string> (codes pays ISO-3166 alpha-2, optionnel)\n'
    "}"
)

_LANGUAGE_NAMES = {
    "fr": "français",
    "en": "English",
    "es": "español",
    "de": "Deutsch",
}


def language_name(locale: str) -> str:
    """Human name of the output language for a locale like ``fr_FR``."""
    code = locale.replace("-", "_").split("_")[0].lower()
    return _LANGUAGE_NAMES.get(code, locale)


def _excerpt(text: str, limit: int = EXCERPT_MAX_CHARS) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def format_sources_block(items: Sequence[NormalizedItem]) -> str:
    lines: List[str] = []
    for idx, item in enumerate(items, start=1):
        lines.append(f"#{idx} {item.title}")
        if item.excerpt:
            lines.append(f"Extrait: {_excerpt(item.excerpt)}")
        lines.append(f"Lien: {item.url}")
        lines.append("")
    return "\n".join(lines).strip()


def build_synthesis_prompt(context: SynthesisContext, items: Sequence[NormalizedItem]) -> str:
    """Single instruction text: language, strict JSON format, rules, then the sources.

    ``items`` must already be truncated by the caller.
    """
    source = context.source + (f" ({context.country})" if context.country else "")
    return (
        f'Tu es un rédacteur "Flash Info". Langue de sortie obligatoire: {language_name(context.language)} '
        f"(locale={context.language}).\n"
        f"Tu reçois {len(items)} articles (titres + extraits) de la source {source}, "
        f"rubrique: {context.category_label}.\n\n"
        "Objectif: produire UNE synthèse claire, neutre et utile.\n\n"
        "Règles:\n"
        "1) N'invente aucun fait, chiffre, nom ou citation absent des sources.\n"
        "2) Ton neutre et factuel: pas d'opinion, pas de sensationnalisme.\n"
        "3) Si des sources se contredisent, dis-le (\"selon X... selon Y...\").\n"
        f"4) title: court, {TITLE_TARGET_CHARS} caractères maximum.\n"
        "5) summary: 2 à 3 phrases maximum; body: 6 à 12 phrases en paragraphes courts, style mobile.\n"
        "6) sections.known = ce qui est établi, sections.assumed = ce qui est supposé ou rapporté, "
        "sections.unknown = ce qui reste inconnu.\n"
        "7) countries: seulement les pays directement concernés, sinon une liste vide.\n\n"
        "Sortie OBLIGATOIRE: un seul objet JSON strict (pas de markdown, pas de texte autour), "
        "avec exactement les clés suivantes:\n"
        f"{JSON_SCHEMA_SNIPPET}\n\n"
        "Sources:\n"
        f"{format_sources_block(items)}\n"
    )


def build_repair_prompt(raw_output: str, context: SynthesisContext) -> str:
    """Ask the model to reformat a previous answer strictly as the expected JSON object."""
    raw = raw_output.strip() or "(réponse vide)"
    return (
        "La réponse ci-dessous devait être un objet JSON strict mais n'est pas exploitable.\n"
        "Reformate-la en UN SEUL objet JSON valide, sans markdown ni texte autour, "
        "avec exactement les clés suivantes:\n"
        f"{JSON_SCHEMA_SNIPPET}\n\n"
        f"Langue: {language_name(context.language)}. N'ajoute aucune information nouvelle.\n"
        "Si le titre ou le résumé manque, déduis-le uniquement du contenu ci-dessous.\n\n"
        "Réponse à reformater:\n"
        f"{raw}\n"
    )

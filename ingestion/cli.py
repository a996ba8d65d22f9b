"""Command-line entrypoint: one ingestion run, then exit.

Usage:
  flash-info-ingest --output-dir data --concurrency 1 --json-logs

Exit codes: 0 on success (degraded feeds included), 2 on configuration error,
3 when the aggregate document could not be written.
"""

from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any, Dict, List

from ingestion.settings import ConfigurationError, get_settings
from ingestion.tasks.ingest import run_ingestion
from ingestion.utils.logging import configure_logging, get_logger
from llm.settings import get_generation_settings
from publish.storage import PersistenceError

logger = get_logger("ingestion.cli")

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_PERSISTENCE = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flash-info-ingest",
        description="RSS 피드를 수집하고 피드별 합성을 JSON 문서로 저장한다.",
    )
    parser.add_argument("--output-dir", default=None, help="JSON 산출물 디렉터리 (기본: OUTPUT_DIR)")
    parser.add_argument("--concurrency", type=int, default=None, help="동시 처리 피드 수 (기본: INGEST_CONCURRENCY)")
    parser.add_argument("--log-level", default=None, help="로그 레벨 (기본: STRUCTLOG_LEVEL)")
    parser.add_argument("--json-logs", action="store_true", help="로그를 JSON 한 줄 형식으로 출력")
    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    update: Dict[str, Any] = {}
    if args.output_dir:
        update["output_dir"] = args.output_dir
    if args.concurrency is not None:
        if args.concurrency < 1:
            raise ConfigurationError("--concurrency는 1 이상이어야 합니다.")
        update["ingest_concurrency"] = args.concurrency
    return update


def main(argv: List[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
        configure_logging(args.log_level or settings.structlog_level, json_enabled=args.json_logs or settings.log_json)
        settings = settings.model_copy(update=_overrides(args))
        generation_settings = get_generation_settings()
    except ConfigurationError as exc:
        configure_logging(args.log_level or "INFO", json_enabled=args.json_logs)
        logger.error("ingest.configuration_error", extra={"error": str(exc)})
        return EXIT_CONFIG

    try:
        report = asyncio.run(run_ingestion(settings, generation_settings))
    except ConfigurationError as exc:
        logger.error("ingest.configuration_error", extra={"error": str(exc)})
        return EXIT_CONFIG
    except PersistenceError as exc:
        logger.error("ingest.persistence_error", extra={"error": str(exc)})
        return EXIT_PERSISTENCE

    print(json.dumps(report.summary(), ensure_ascii=False))
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())

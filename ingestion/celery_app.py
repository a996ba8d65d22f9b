"""Celery 애플리케이션 부트스트랩 (주기 실행용)."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict

from celery import Celery
from celery.schedules import schedule as celery_schedule

from .settings import Settings, get_settings
from .utils.logging import configure_logging

_CELERY_APP: Celery | None = None

INGEST_TASK_NAME = "ingestion.tasks.ingest.run_ingestion_task"


def create_celery_app(settings: Settings | None = None) -> Celery:
    """설정을 기반으로 Celery 인스턴스를 생성한다.

    Runs must never overlap against the same output directory, so the worker
    runs one task at a time and beat entries expire before the next tick.
    """
    config = settings or get_settings()
    configure_logging(config.structlog_level, json_enabled=config.log_json)

    app = Celery("flash_info", broker=config.celery_broker_url)
    app.conf.update(
        task_default_queue="ingestion.default",
        task_default_exchange="ingestion",
        task_default_routing_key="ingestion.default",
        worker_concurrency=1,
        worker_prefetch_multiplier=1,
        task_acks_late=True,
        beat_schedule=_build_beat_schedule(config),
        timezone="UTC",
        enable_utc=True,
    )

    app.autodiscover_tasks(["ingestion.tasks"], related_name="ingest")
    _install_signal_handlers(app)
    return app


def get_celery_app() -> Celery:
    """싱글톤 Celery 인스턴스를 반환한다."""
    global _CELERY_APP
    if _CELERY_APP is None:
        _CELERY_APP = create_celery_app()
    return _CELERY_APP


def _build_beat_schedule(settings: Settings) -> Dict[str, Dict[str, Any]]:
    interval = timedelta(minutes=settings.ingest_interval_minutes)
    return {
        "ingest.all_feeds": {
            "task": INGEST_TASK_NAME,
            "schedule": celery_schedule(interval),
            "options": {"queue": "ingestion.default", "expires": interval.total_seconds()},
        }
    }


def _install_signal_handlers(app: Celery) -> None:
    from celery import signals

    logger = logging.getLogger("ingestion.worker")

    @signals.worker_shutdown.connect  # type: ignore[attr-defined]
    def _on_worker_shutdown(sender=None, **kwargs):  # noqa: ANN001
        logger.info("Celery worker shutdown detected", extra={"sender": str(sender)})

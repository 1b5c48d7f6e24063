"""Celery application configuration"""
from __future__ import annotations

from celery import Celery
from kombu import Queue

from core.config import settings
from core.logging_config import get_logger
from .beat import CELERY_BEAT_SCHEDULE

logger = get_logger(__name__)

CELERY_IMPORTS = ("infrastructure.tasks.tasks",)

celery_app = Celery("reconcile_core")

celery_app.conf.update(
    broker_url=settings.redis.url,
    result_backend=settings.redis.url,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # payout batches are idempotent per batch id, so a redelivered message is safe
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_default_queue="default",
    task_default_retry_delay=5,
    task_queues=(
        Queue("high"),
        Queue("default"),
        Queue("low"),
    ),
    # money-moving jobs stay off the low-priority queue
    task_routes={
        "infrastructure.tasks.tasks.affiliates.*": {"queue": "high"},
        "infrastructure.tasks.tasks.conversions.*": {"queue": "low"},
    },
    beat_schedule=CELERY_BEAT_SCHEDULE,
    imports=CELERY_IMPORTS,
)

if settings.ENVIRONMENT.lower() in {"development", "dev", "test", "testing"}:
    celery_app.conf.task_always_eager = True


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info("celery_configured", broker=sender.conf.broker_url, always_eager=sender.conf.task_always_eager)

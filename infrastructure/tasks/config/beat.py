"""Celery beat schedule configuration.

Commission approval runs daily; the payout batch runs weekly so its default
batch id (the ISO week) is stable across the whole run.
"""
from __future__ import annotations

from celery.schedules import crontab

CELERY_BEAT_SCHEDULE = {
    "affiliate-auto-approve-commissions": {
        "task": "infrastructure.tasks.tasks.affiliates.auto_approve_commissions",
        "schedule": crontab(hour=2, minute=0),
    },
    "affiliate-weekly-payout-batch": {
        "task": "infrastructure.tasks.tasks.affiliates.run_payout_batch",
        "schedule": crontab(day_of_week="mon", hour=6, minute=0),
        "kwargs": {"dry_run": False, "initiator": "scheduler"},
    },
}

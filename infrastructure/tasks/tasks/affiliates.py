"""
Scheduled affiliate jobs: commission auto-approval and the payout batch.

Each run owns a fresh engine so asyncio.run gets connections bound to its own loop.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

from celery import shared_task

from ..utils.base_task import BaseTask
from core.config import settings
from core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def _run(work: Callable[[Any], Awaitable[T]]) -> T:
    from infrastructure.composition import Services
    from infrastructure.database import build_engine, build_session_factory

    async def _main() -> T:
        engine = build_engine(settings.database.url)
        try:
            return await work(Services(build_session_factory(engine)))
        finally:
            await engine.dispose()

    return asyncio.run(_main())


@shared_task(bind=True, base=BaseTask, max_retries=3, default_retry_delay=60)
def auto_approve_commissions(self) -> dict:
    approved = _run(lambda services: services.commissions.auto_approve_commissions())
    return {"approved": approved}


@shared_task(bind=True, base=BaseTask, acks_late=True)
def run_payout_batch(self, dry_run: bool = False, initiator: str = "scheduler", batch_id: Optional[str] = None) -> dict:
    """No autoretry: a rerun with the same batch id is safe but is an operator decision."""
    summary = _run(
        lambda services: services.payouts.run_payout_batch(dry_run=dry_run, initiator=initiator, batch_id=batch_id)
    )
    logger.info(
        "payout_batch_task_finished",
        batch_id=summary.batch_id,
        success_count=summary.success_count,
        failure_count=summary.failure_count,
    )
    return summary.model_dump(exclude={"results"})

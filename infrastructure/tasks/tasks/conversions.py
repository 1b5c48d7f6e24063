"""Conversion-adjustment tasks"""
from __future__ import annotations

from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger

logger = get_logger(__name__)


@shared_task(
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def report_refund_conversion(self, refund_id: str, order_id: str, amount: int) -> dict:
    """Reduce the attributed conversion value for a settled refund.

    The ad/analytics sink is external; this task is the single place it is called from.
    """
    logger.info("conversion_adjustment_reported", refund_id=refund_id, order_id=order_id, amount=amount)
    return {"refund_id": refund_id, "order_id": order_id, "amount": -amount}

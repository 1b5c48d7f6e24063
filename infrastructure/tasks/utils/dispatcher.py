"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from ..config.celery import celery_app


class TaskDispatcher:
    """Internal facade used by application layer to schedule tasks."""

    def send_refund_conversion(self, refund_id: str, order_id: str, amount: int) -> None:
        """Fire-and-forget conversion adjustment after a refund settles."""
        celery_app.send_task(
            "infrastructure.tasks.tasks.conversions.report_refund_conversion",
            kwargs={"refund_id": refund_id, "order_id": order_id, "amount": amount},
        )


class CeleryConversionNotifier:
    """ConversionNotifier backed by the task queue."""

    def __init__(self, dispatcher: TaskDispatcher | None = None) -> None:
        self._dispatcher = dispatcher or TaskDispatcher()

    def notify_refund_processed(self, refund_id: str, order_id: str, amount: int) -> None:
        self._dispatcher.send_refund_conversion(refund_id, order_id, amount)

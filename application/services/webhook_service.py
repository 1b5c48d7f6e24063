"""
Payment webhook handling.

Events are deduplicated by provider event id: the processed-event row is
inserted in the same transaction as the effect, so a redelivered event is a
no-op and a failed effect leaves the event unrecorded for the next delivery.
Transfer events settle batch payouts whose transfer outcome was unknown.
"""
from __future__ import annotations

from typing import Any, Callable, Iterable, List, Optional

from application.dtos.payments import WebhookEvent
from application.ports.payment_gateway import PaymentGateway
from application.services.payout_service import PayoutBatchService
from application.services.refund_service import RefundService
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.events import RefundProcessed
from domain.order.exceptions import DuplicateEventException

logger = get_logger(__name__)

REFUND_EVENT_TYPES = frozenset({"refund.updated", "refund.created", "refund.failed", "charge.refund.updated", "charge.refunded"})
TRANSFER_EVENT_TYPES = frozenset({"transfer.created", "transfer.updated", "transfer.paid", "transfer.failed", "transfer.reversed"})


def _refund_objects(event: WebhookEvent) -> Iterable[dict[str, Any]]:
    obj = (event.data or {}).get("object") or {}
    if obj.get("object") == "refund":
        return [obj]
    # charge.refunded carries the refunds list on the charge
    refunds = obj.get("refunds") or {}
    return list(refunds.get("data") or [])


class WebhookService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        refunds: RefundService,
        payouts: Optional[PayoutBatchService] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._refunds = refunds
        self._payouts = payouts

    async def handle(self, headers: dict[str, Any], body: bytes) -> bool:
        """Verify, dedupe and apply one delivery. Returns False for a duplicate."""
        event = self._gateway.parse_webhook(headers, body)
        logger.info("payment_webhook_parsed", provider=event.provider, event_type=event.type, event_id=event.id)
        return await self.apply(event)

    async def apply(self, event: WebhookEvent) -> bool:
        published: List[Optional[RefundProcessed]] = []
        try:
            async with self._uow_factory() as uow:
                await uow.processed_events.add(event.id, event.type, event.provider)
                if event.type in REFUND_EVENT_TYPES:
                    for obj in _refund_objects(event):
                        if not obj.get("id"):
                            continue
                        published.append(await self._refunds.apply_provider_refund_status(uow, obj["id"], obj.get("status")))
                elif event.type in TRANSFER_EVENT_TYPES and self._payouts is not None:
                    await self._apply_transfer(uow, event)
                else:
                    logger.info("payment_webhook_ignored", event_type=event.type, event_id=event.id)
        except DuplicateEventException:
            logger.info("payment_webhook_duplicate", event_id=event.id, event_type=event.type)
            return False
        for processed in published:
            self._refunds.publish(processed)
        return True

    async def _apply_transfer(self, uow: AbstractUnitOfWork, event: WebhookEvent) -> None:
        obj = (event.data or {}).get("object") or {}
        metadata = obj.get("metadata") or {}
        failed = event.type in ("transfer.reversed", "transfer.failed") or bool(obj.get("reversed"))
        await self._payouts.apply_transfer_status(
            uow,
            transfer_id=obj.get("id"),
            payout_id=metadata.get("payout_id"),
            failed=failed,
            raw_status="reversed" if obj.get("reversed") else event.type.rsplit(".", 1)[-1],
        )

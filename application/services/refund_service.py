"""
Refund orchestrator.

Validation, the provider call, the refund insert, the audit entry and the
payment-status recompute run inside one unit of work that holds a row lock on
the order, so concurrent refunds against the same order are serialised and
cannot jointly exceed the refundable amount.
"""
from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple

from application.dtos.payments import RefundRequest, RefundResult
from application.dtos.refunds import CreateRefundCommand, RefundDTO, RefundOutcome, RefundSummaryDTO
from application.ports.notifications import ConversionNotifier
from application.ports.payment_gateway import PaymentGateway
from application.services.commission_service import CommissionService
from core.logging_config import get_logger
from domain.audit.entity import AuditEntry
from domain.common.exceptions import BusinessException, DomainValidationException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order import ledger
from domain.order.entity import (
    Order,
    PaymentStatus,
    Refund,
    RefundReasonCode,
    RefundSource,
    RefundStatus,
)
from domain.order.events import RefundProcessed
from domain.order.exceptions import RefundError, RefundErrorCode
from shared.codes.payment_codes import PaymentCode

logger = get_logger(__name__)

_PROVIDER_ERROR_CODES = {
    PaymentCode.PROVIDER_ERROR,
    PaymentCode.PROVIDER_RECOVERABLE,
    PaymentCode.TIMEOUT,
    PaymentCode.RATE_LIMITED,
    PaymentCode.NOT_CONFIGURED,
}


def refund_idempotency_key(order_id: str, amount: int, requested_at: datetime) -> str:
    # same (order, amount, request time) always yields the same provider key
    if requested_at.tzinfo is None:
        requested_at = requested_at.replace(tzinfo=timezone.utc)
    base = f"refund|{order_id}|{amount}|{int(requested_at.timestamp() * 1000)}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


def _validate_amount(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise RefundError(
            RefundErrorCode.INVALID_AMOUNT,
            "Refund amount must be a positive integer",
            field="amount",
            details={"amount": value if isinstance(value, (int, float, str)) else repr(value)},
        )
    return value


def _validate_reason(value: Optional[str]) -> Optional[RefundReasonCode]:
    try:
        return RefundReasonCode.parse(value)
    except ValueError as exc:
        raise RefundError(
            RefundErrorCode.INVALID_REASON_CODE,
            f"Unknown refund reason code: {value}",
            field="reason_code",
            details={"allowed": [c.value for c in RefundReasonCode]},
        ) from exc


class RefundService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: Optional[PaymentGateway] = None,
        *,
        notifier: Optional[ConversionNotifier] = None,
        commissions: Optional[CommissionService] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._notifier = notifier
        self._commissions = commissions
        self._clock = clock

    async def _validate(
        self,
        uow: AbstractUnitOfWork,
        cmd: CreateRefundCommand,
        *,
        processor: bool,
    ) -> Tuple[Order, List[Refund], int, Optional[RefundReasonCode]]:
        """Checks run in a fixed order; the first failure wins."""
        order = await uow.orders.get_for_update(cmd.order_id)
        if order is None:
            raise RefundError(RefundErrorCode.ORDER_NOT_FOUND, "Order not found", details={"order_id": cmd.order_id})
        if processor and not order.has_processor_charge:
            raise RefundError(
                RefundErrorCode.NOT_PROCESSOR_PAID,
                "Order has no processor payment; use a manual refund",
                details={"order_id": order.id},
            )
        if not ledger.is_refund_eligible(order):
            raise RefundError(
                RefundErrorCode.ORDER_NOT_PAID,
                "Order is not paid",
                details={"order_id": order.id, "status": order.status.value},
            )
        amount = _validate_amount(cmd.amount)
        reason_code = _validate_reason(cmd.reason_code)
        # re-read under the order lock
        refunds = await uow.refunds.list_by_order_id(order.id)
        available = ledger.refundable_amount(order, refunds)
        if amount > available:
            raise RefundError(
                RefundErrorCode.EXCEEDS_REFUNDABLE,
                f"Refund amount {amount} exceeds refundable amount {available}",
                field="amount",
                details={"amount": amount, "refundable_amount": available},
            )
        return order, refunds, amount, reason_code

    async def _call_provider(self, order: Order, amount: int, reason_code: Optional[RefundReasonCode], cmd: CreateRefundCommand) -> RefundResult:
        if self._gateway is None:
            raise RefundError(RefundErrorCode.PROCESSOR_NOT_CONFIGURED, "Payment processor is not configured")
        key = refund_idempotency_key(order.id, amount, cmd.requested_at)
        request = RefundRequest(
            payment_reference=order.payment_reference,
            amount=amount,
            reason_code=reason_code.value if reason_code else None,
            idempotency_key=key,
            metadata={"order_id": order.id},
        )
        logger.info("refund_provider_request", order_id=order.id, amount=amount, idempotency_key=key)
        try:
            return await self._gateway.create_refund(request)
        except BusinessException as exc:
            if exc.code not in _PROVIDER_ERROR_CODES:
                raise
            details = {"idempotency_key": key, "provider_error": exc.message}
            if exc.code == PaymentCode.TIMEOUT:
                logger.warning("refund_provider_timeout", order_id=order.id, idempotency_key=key)
                raise RefundError(
                    RefundErrorCode.PROCESSOR_TIMEOUT,
                    "Refund outcome unknown; retry with the same request time",
                    details=details,
                ) from exc
            if exc.code == PaymentCode.NOT_CONFIGURED:
                logger.error("refund_provider_not_configured", order_id=order.id)
                raise RefundError(RefundErrorCode.PROCESSOR_NOT_CONFIGURED, "Payment processor is not configured", details=details) from exc
            logger.warning("refund_provider_failed", order_id=order.id, error=exc.message)
            raise RefundError(RefundErrorCode.PROCESSOR_REFUND_FAILED, "Payment processor refused the refund", details=details) from exc

    async def _recompute(self, uow: AbstractUnitOfWork, order: Order, reason: str) -> Tuple[PaymentStatus, int]:
        refunds = await uow.refunds.list_by_order_id(order.id)
        status = ledger.payment_status(order, refunds)
        if status is not order.payment_status:
            await uow.orders.update_payment_status(order.id, status)
        if status is PaymentStatus.REFUNDED and self._commissions is not None:
            await self._commissions.reverse_for_order(uow, order.id, reason)
        return status, ledger.refundable_amount(order, refunds)

    def _notify(self, event: RefundProcessed) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify_refund_processed(event.refund_id, event.order_id, event.amount)
        except Exception as exc:  # noqa: BLE001 - notification must never fail a refund
            logger.warning("refund_notification_failed", refund_id=event.refund_id, error=str(exc))

    async def create_processor_refund(self, cmd: CreateRefundCommand) -> RefundOutcome:
        """Refund through the payment processor; no row is written unless the provider returns."""
        event: Optional[RefundProcessed] = None
        async with self._uow_factory() as uow:
            order, _, amount, reason_code = await self._validate(uow, cmd, processor=True)
            result = await self._call_provider(order, amount, reason_code, cmd)
            now = self._clock()
            refund = Refund(
                id=str(uuid.uuid4()),
                order_id=order.id,
                amount=amount,
                status=RefundStatus(result.status),
                source=RefundSource.PROCESSOR,
                reason_code=reason_code,
                reason=cmd.reason,
                provider_refund_id=result.refund_id,
                refund_type=ledger.refund_type(order, amount),
                created_by=cmd.actor,
                created_at=now,
                processed_at=now if result.status == RefundStatus.PROCESSED.value else None,
            )
            refund = await uow.refunds.create(refund)
            await uow.audit_logs.add(
                AuditEntry(
                    action="refund.created",
                    entity_type="refund",
                    entity_id=refund.id,
                    actor=cmd.actor,
                    metadata={
                        "order_id": order.id,
                        "amount": amount,
                        "order_total": order.total_amount,
                        "reason_code": reason_code.value if reason_code else None,
                        "source": RefundSource.PROCESSOR.value,
                        "provider": result.provider,
                        "provider_refund_id": result.refund_id,
                        "raw_status": result.raw_status,
                        "status": refund.status.value,
                    },
                )
            )
            status, refundable = await self._recompute(uow, order, "order refunded")
            if refund.status is RefundStatus.PROCESSED:
                event = RefundProcessed(refund_id=refund.id, order_id=order.id, amount=amount, occurred_at=now)

        logger.info(
            "refund_created",
            refund_id=refund.id,
            order_id=order.id,
            amount=amount,
            status=refund.status.value,
            raw_status=result.raw_status,
            payment_status=status.value,
        )
        if event is not None:
            self._notify(event)
        return RefundOutcome(refund=RefundDTO.from_entity(refund), payment_status=status.value, refundable_amount=refundable)

    async def create_manual_refund(self, cmd: CreateRefundCommand) -> RefundOutcome:
        """Record an out-of-band refund as pending; an operator resolves it later."""
        async with self._uow_factory() as uow:
            order, _, amount, reason_code = await self._validate(uow, cmd, processor=False)
            refund = await uow.refunds.create(
                Refund(
                    id=str(uuid.uuid4()),
                    order_id=order.id,
                    amount=amount,
                    status=RefundStatus.PENDING,
                    source=RefundSource.MANUAL,
                    reason_code=reason_code,
                    reason=cmd.reason,
                    refund_type=ledger.refund_type(order, amount),
                    created_by=cmd.actor,
                    created_at=self._clock(),
                )
            )
            await uow.audit_logs.add(
                AuditEntry(
                    action="refund.created",
                    entity_type="refund",
                    entity_id=refund.id,
                    actor=cmd.actor,
                    metadata={
                        "order_id": order.id,
                        "amount": amount,
                        "order_total": order.total_amount,
                        "reason_code": reason_code.value if reason_code else None,
                        "source": RefundSource.MANUAL.value,
                        "raw_status": None,
                        "status": refund.status.value,
                    },
                )
            )
            status, refundable = await self._recompute(uow, order, "order refunded")

        logger.info("refund_created", refund_id=refund.id, order_id=order.id, amount=amount, status="pending", source="manual")
        return RefundOutcome(refund=RefundDTO.from_entity(refund), payment_status=status.value, refundable_amount=refundable)

    async def resolve_manual_refund(self, refund_id: str, outcome: str, actor: Optional[str] = None) -> RefundOutcome:
        """Operator marks a pending manual refund as processed or rejected."""
        if outcome not in (RefundStatus.PROCESSED.value, RefundStatus.REJECTED.value):
            raise DomainValidationException(
                f"Manual refunds resolve to processed or rejected, not {outcome}",
                field="outcome",
            )
        target = RefundStatus(outcome)
        event: Optional[RefundProcessed] = None
        async with self._uow_factory() as uow:
            refund = await uow.refunds.get_by_id(refund_id)
            if refund is None or refund.source is not RefundSource.MANUAL:
                raise RefundError(RefundErrorCode.REFUND_NOT_FOUND, "Manual refund not found", details={"refund_id": refund_id})
            order = await uow.orders.get_for_update(refund.order_id)
            if refund.status is not RefundStatus.PENDING:
                raise RefundError(
                    RefundErrorCode.REFUND_NOT_PENDING,
                    f"Refund is already {refund.status.value}",
                    details={"refund_id": refund_id, "status": refund.status.value},
                )
            now = self._clock()
            previous = refund.status
            refund.transition_to(target, at=now)
            await uow.refunds.update(refund)
            await uow.audit_logs.add(
                AuditEntry(
                    action="refund.resolved",
                    entity_type="refund",
                    entity_id=refund.id,
                    actor=actor,
                    metadata={"order_id": refund.order_id, "from": previous.value, "to": refund.status.value},
                )
            )
            status, refundable = await self._recompute(uow, order, "order refunded")
            if refund.status is RefundStatus.PROCESSED:
                event = RefundProcessed(refund_id=refund.id, order_id=refund.order_id, amount=refund.amount, occurred_at=now)

        logger.info("manual_refund_resolved", refund_id=refund_id, status=refund.status.value, actor=actor)
        if event is not None:
            self._notify(event)
        return RefundOutcome(refund=RefundDTO.from_entity(refund), payment_status=status.value, refundable_amount=refundable)

    async def apply_provider_refund_status(
        self,
        uow: AbstractUnitOfWork,
        provider_refund_id: str,
        raw_status: Optional[str],
    ) -> Optional[RefundProcessed]:
        """
        Apply an asynchronous settlement inside the caller's unit of work.

        Only pending refunds move; repeated or out-of-order deliveries for a
        terminal refund are ignored. Returns the event to publish after commit.
        """
        refund = await uow.refunds.get_by_provider_refund_id(provider_refund_id)
        if refund is None:
            logger.info("refund_sync_unknown_refund", provider_refund_id=provider_refund_id)
            return None
        order = await uow.orders.get_for_update(refund.order_id)
        mapped = self._gateway.map_refund_status(raw_status) if self._gateway else "pending"
        target = RefundStatus(mapped)
        if refund.status.is_terminal or target is RefundStatus.PENDING:
            logger.info(
                "refund_sync_ignored",
                refund_id=refund.id,
                current=refund.status.value,
                incoming=target.value,
            )
            return None
        now = self._clock()
        previous = refund.status
        refund.transition_to(target, at=now)
        await uow.refunds.update(refund)
        await uow.audit_logs.add(
            AuditEntry(
                action="refund.status_synced",
                entity_type="refund",
                entity_id=refund.id,
                metadata={
                    "order_id": refund.order_id,
                    "from": previous.value,
                    "to": refund.status.value,
                    "raw_status": raw_status,
                },
            )
        )
        status, _ = await self._recompute(uow, order, "order refunded")
        logger.info("refund_status_synced", refund_id=refund.id, status=refund.status.value, payment_status=status.value)
        if refund.status is RefundStatus.PROCESSED:
            return RefundProcessed(refund_id=refund.id, order_id=refund.order_id, amount=refund.amount, occurred_at=now)
        return None

    def publish(self, event: Optional[RefundProcessed]) -> None:
        if event is not None:
            self._notify(event)

    async def get_refund_summary(self, order_id: str) -> RefundSummaryDTO:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.orders.get_by_id(order_id)
            if order is None:
                raise RefundError(RefundErrorCode.ORDER_NOT_FOUND, "Order not found", details={"order_id": order_id})
            refunds = await uow.refunds.list_by_order_id(order_id)
        return RefundSummaryDTO.build(order_id, ledger.refund_summary(order, refunds), ledger.refundable_amount(order, refunds))

    async def list_refunds(self, order_id: str) -> List[RefundDTO]:
        async with self._uow_factory(readonly=True) as uow:
            refunds = await uow.refunds.list_by_order_id(order_id)
        return [RefundDTO.from_entity(r) for r in refunds]

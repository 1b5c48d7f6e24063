"""
Payout batch processor.

One external transfer per affiliate per batch. The payout row and the referral
set it covers are committed before the transfer is requested; the transfer
carries the idempotency key ``payout-{batch_id}-{affiliate_id}`` so a rerun of
the same batch reuses the recorded referral set and never transfers twice.
Referrals only become ``paid`` after the provider reports the transfer paid.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from application.dtos.affiliates import PayoutBatchDetail, PayoutBatchSummary, PayoutDTO, PayoutItemResult
from application.dtos.payments import TransferRequest, TransferResult
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from core.settings import AffiliateSettings, affiliate_settings, payment_settings
from domain.affiliate.commission import BalanceDelta
from domain.affiliate.entity import (
    Affiliate,
    AffiliatePayout,
    AffiliateReferral,
    PayoutAccount,
    PayoutItemStatus,
    PayoutStatus,
)
from domain.affiliate.exceptions import (
    AffiliateNotFoundException,
    DuplicatePayoutException,
    PayoutRequestException,
)
from domain.audit.entity import AuditEntry
from domain.common.exceptions import BusinessException
from domain.common.unit_of_work import AbstractUnitOfWork
from shared.codes.payment_codes import PaymentCode

logger = get_logger(__name__)

def iso_week_batch_id(now: datetime) -> str:
    year, week, _ = now.isocalendar()
    return f"BATCH-{year}-W{week:02d}"


def payout_idempotency_key(batch_id: str, affiliate_id: str) -> str:
    return f"payout-{batch_id}-{affiliate_id}"


def select_referrals(referrals: List[AffiliateReferral], cap: int) -> List[AffiliateReferral]:
    """Oldest first, stopping before the running total would exceed ``cap``."""
    selected: List[AffiliateReferral] = []
    total = 0
    for referral in referrals:
        if total + referral.commission_amount > cap:
            break
        selected.append(referral)
        total += referral.commission_amount
    return selected


def ineligible_reason(account: Optional[PayoutAccount], *, country: str, currency: str) -> Optional[str]:
    if account is None or not account.external_account_id:
        return "payout account not connected"
    if not account.payouts_enabled:
        return "payouts not enabled"
    if not account.details_submitted:
        return "account details not submitted"
    if not account.is_payable(country=country, currency=currency):
        return "unsupported payout country or currency"
    return None


class PayoutBatchService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: Optional[PaymentGateway] = None,
        *,
        config: AffiliateSettings = affiliate_settings,
        currency: Optional[str] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = gateway
        self._config = config
        self._currency = (currency or payment_settings.payout_currency).lower()
        self._clock = clock

    async def run_payout_batch(
        self,
        *,
        dry_run: bool = False,
        initiator: Optional[str] = None,
        batch_id: Optional[str] = None,
    ) -> PayoutBatchSummary:
        batch_id = batch_id or iso_week_batch_id(self._clock())
        async with self._uow_factory(readonly=True) as uow:
            eligible = await uow.affiliates.list_with_approved_balance(self._config.minimum_payout)
            existing = {p.affiliate_id: p for p in await uow.payouts.list_by_batch(batch_id)}
            candidates: List[Affiliate] = list(eligible)
            seen = {a.id for a in eligible}
            # affiliates already settled in this batch drop out of the balance query
            for affiliate_id in existing:
                if affiliate_id not in seen:
                    affiliate = await uow.affiliates.get_by_id(affiliate_id)
                    if affiliate is not None:
                        candidates.append(affiliate)

        logger.info("payout_batch_started", batch_id=batch_id, dry_run=dry_run, candidates=len(candidates), initiator=initiator)
        summary = PayoutBatchSummary(batch_id=batch_id, dry_run=dry_run)
        for affiliate in candidates:
            try:
                item = await self._process(affiliate, existing.get(affiliate.id), batch_id, dry_run, initiator)
            except BusinessException as exc:
                logger.error("payout_item_failed", batch_id=batch_id, affiliate_id=affiliate.id, error=exc.message)
                item = PayoutItemResult(affiliate_id=affiliate.id, amount=0, status=PayoutItemStatus.FAILED, reason=exc.message)
            summary.results.append(item)
            self._tally(summary, item)

        if not dry_run:
            async with self._uow_factory() as uow:
                await uow.audit_logs.add(
                    AuditEntry(
                        action="affiliate_payout_batch",
                        entity_type="payout_batch",
                        entity_id=batch_id,
                        actor=initiator,
                        metadata=summary.model_dump(exclude={"results"}),
                    )
                )
        logger.info(
            "payout_batch_finished",
            batch_id=batch_id,
            dry_run=dry_run,
            total_payouts=summary.total_payouts,
            total_amount=summary.total_amount,
            success_count=summary.success_count,
            failure_count=summary.failure_count,
        )
        return summary

    @staticmethod
    def _tally(summary: PayoutBatchSummary, item: PayoutItemResult) -> None:
        if item.status.is_attempted:
            summary.total_payouts += 1
            summary.total_amount += item.amount
        if item.status is PayoutItemStatus.PAID:
            summary.success_count += 1
            summary.paid_amount += item.amount
        elif item.status in (PayoutItemStatus.FAILED, PayoutItemStatus.PENDING):
            summary.failure_count += 1
        elif item.status is PayoutItemStatus.ALREADY_PAID:
            summary.already_paid_count += 1
        elif item.status is PayoutItemStatus.SKIPPED:
            summary.skipped_count += 1

    async def _plan(
        self,
        affiliate: Affiliate,
        existing: Optional[AffiliatePayout],
    ) -> Tuple[Optional[PayoutAccount], Optional[AffiliatePayout], List[str], int, Optional[str]]:
        """Returns (account, open request, referral ids, amount, skip reason)."""
        async with self._uow_factory(readonly=True) as uow:
            account = await uow.affiliates.get_payout_account(affiliate.id)
            reason = ineligible_reason(account, country=self._config.payout_country, currency=self._currency)
            if reason:
                return account, None, [], 0, reason
            if existing is not None:
                return account, None, list(existing.referral_ids), existing.amount, None
            request = await uow.payouts.get_open_request(affiliate.id)
            # referrals held by a pending payout of an earlier batch stay out until it settles
            referrals = await uow.referrals.list_approved_unpaid(affiliate.id, exclude_in_flight=True)
        cap = min(affiliate.approved_balance, sum(r.commission_amount for r in referrals))
        if request is not None:
            cap = min(cap, request.amount)
        elif cap < self._config.minimum_payout:
            return account, None, [], 0, "payable balance below minimum"
        selected = select_referrals(referrals, cap)
        if not selected:
            return account, request, [], 0, "no approved referrals within payout amount"
        return account, request, [r.id for r in selected], sum(r.commission_amount for r in selected), None

    async def _process(
        self,
        affiliate: Affiliate,
        existing: Optional[AffiliatePayout],
        batch_id: str,
        dry_run: bool,
        initiator: Optional[str],
    ) -> PayoutItemResult:
        if existing is not None and existing.status is PayoutStatus.PAID:
            return PayoutItemResult(
                affiliate_id=affiliate.id,
                amount=existing.amount,
                status=PayoutItemStatus.ALREADY_PAID,
                payout_id=existing.id,
                transfer_reference=existing.transfer_reference,
                referral_count=len(existing.referral_ids),
            )
        account, request, referral_ids, amount, reason = await self._plan(affiliate, existing)
        if reason:
            logger.info("payout_affiliate_skipped", batch_id=batch_id, affiliate_id=affiliate.id, reason=reason)
            return PayoutItemResult(affiliate_id=affiliate.id, amount=0, status=PayoutItemStatus.SKIPPED, reason=reason)
        if dry_run:
            return PayoutItemResult(
                affiliate_id=affiliate.id, amount=amount, status=PayoutItemStatus.DRY_RUN, referral_count=len(referral_ids)
            )
        if self._gateway is None:
            raise BusinessException(
                code=PaymentCode.NOT_CONFIGURED,
                message="Payment processor is not configured",
                error_type="PaymentNotConfiguredError",
                status_code=503,
            )

        payout = await self._record_pending(affiliate, existing, request, batch_id, referral_ids, amount, initiator)
        if payout is None:
            return PayoutItemResult(
                affiliate_id=affiliate.id, amount=0, status=PayoutItemStatus.SKIPPED, reason="payout recorded by a concurrent run"
            )

        key = payout_idempotency_key(batch_id, affiliate.id)
        try:
            result = await self._gateway.create_transfer(
                TransferRequest(
                    amount=amount,
                    currency=self._currency,
                    destination_account=account.external_account_id,
                    metadata={"batch_id": batch_id, "affiliate_id": affiliate.id, "payout_id": payout.id},
                    idempotency_key=key,
                )
            )
        except BusinessException as exc:
            if exc.code == PaymentCode.TIMEOUT:
                # unknown outcome: keep the row pending so the rerun or a transfer webhook settles it
                logger.warning("payout_transfer_timeout", batch_id=batch_id, affiliate_id=affiliate.id, idempotency_key=key)
                return self._item(payout, PayoutItemStatus.PENDING, reason="transfer outcome unknown")
            logger.warning("payout_transfer_failed", batch_id=batch_id, affiliate_id=affiliate.id, error=exc.message)
            await self._finish(payout, PayoutStatus.FAILED, failure_reason=exc.message)
            return self._item(payout, PayoutItemStatus.FAILED, reason=exc.message)
        return await self._settle(payout, result)

    async def _record_pending(
        self,
        affiliate: Affiliate,
        existing: Optional[AffiliatePayout],
        request: Optional[AffiliatePayout],
        batch_id: str,
        referral_ids: List[str],
        amount: int,
        initiator: Optional[str],
    ) -> Optional[AffiliatePayout]:
        try:
            async with self._uow_factory() as uow:
                if existing is not None:
                    existing.status = PayoutStatus.PENDING
                    existing.failure_reason = None
                    return await uow.payouts.update(existing)
                if request is not None:
                    request.batch_id = batch_id
                    request.amount = amount
                    request.status = PayoutStatus.PENDING
                    request.referral_ids = referral_ids
                    return await uow.payouts.update(request)
                return await uow.payouts.create(
                    AffiliatePayout(
                        id=str(uuid.uuid4()),
                        affiliate_id=affiliate.id,
                        amount=amount,
                        status=PayoutStatus.PENDING,
                        batch_id=batch_id,
                        requested_by=initiator,
                        referral_ids=referral_ids,
                    )
                )
        except DuplicatePayoutException:
            logger.info("payout_duplicate_ignored", batch_id=batch_id, affiliate_id=affiliate.id)
            return None

    async def _apply_outcome(
        self,
        uow: AbstractUnitOfWork,
        payout: AffiliatePayout,
        status: PayoutStatus,
        *,
        transfer_reference: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> None:
        now = self._clock()
        payout.status = status
        payout.transfer_reference = transfer_reference or payout.transfer_reference
        payout.failure_reason = failure_reason
        payout.processed_at = now
        await uow.payouts.update(payout)
        if status is not PayoutStatus.PAID:
            return
        # only referrals still approved move; paid_balance follows what actually moved
        moved = await uow.referrals.mark_paid(payout.referral_ids, now)
        if moved != payout.amount:
            logger.warning("payout_referrals_changed", payout_id=payout.id, amount=payout.amount, moved=moved)
        if moved:
            await uow.affiliates.apply_balance_delta(payout.affiliate_id, BalanceDelta.for_payout(moved))

    async def _finish(
        self,
        payout: AffiliatePayout,
        status: PayoutStatus,
        *,
        transfer_reference: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> None:
        async with self._uow_factory() as uow:
            await self._apply_outcome(uow, payout, status, transfer_reference=transfer_reference, failure_reason=failure_reason)

    async def apply_transfer_status(
        self,
        uow: AbstractUnitOfWork,
        *,
        transfer_id: Optional[str],
        payout_id: Optional[str],
        failed: bool,
        raw_status: Optional[str] = None,
    ) -> Optional[AffiliatePayout]:
        """
        Settle a batch payout left pending from a provider transfer event.

        Runs inside the caller's unit of work. Only pending batch payouts move;
        events for payouts already settled are ignored.
        """
        payout = await uow.payouts.get_by_id(payout_id) if payout_id else None
        if payout is None and transfer_id:
            payout = await uow.payouts.get_by_transfer_reference(transfer_id)
        if payout is None or payout.batch_id is None:
            logger.info("payout_transfer_event_unmatched", transfer_id=transfer_id, payout_id=payout_id)
            return None
        if payout.status is not PayoutStatus.PENDING:
            logger.info("payout_transfer_event_ignored", payout_id=payout.id, status=payout.status.value)
            return None
        if failed:
            reason = f"transfer {raw_status or 'reversed'}"
            await self._apply_outcome(uow, payout, PayoutStatus.FAILED, transfer_reference=transfer_id, failure_reason=reason)
        else:
            await self._apply_outcome(uow, payout, PayoutStatus.PAID, transfer_reference=transfer_id)
        logger.info("payout_transfer_settled", payout_id=payout.id, status=payout.status.value, transfer_id=transfer_id)
        return payout

    async def _settle(self, payout: AffiliatePayout, result: TransferResult) -> PayoutItemResult:
        if result.status == "paid":
            await self._finish(payout, PayoutStatus.PAID, transfer_reference=result.transfer_id)
            logger.info("payout_transfer_paid", payout_id=payout.id, affiliate_id=payout.affiliate_id, amount=payout.amount)
            return self._item(payout, PayoutItemStatus.PAID)
        if result.status == "failed":
            reason = f"transfer {result.raw_status or 'failed'}"
            await self._finish(payout, PayoutStatus.FAILED, transfer_reference=result.transfer_id, failure_reason=reason)
            logger.warning("payout_transfer_failed", payout_id=payout.id, affiliate_id=payout.affiliate_id, raw_status=result.raw_status)
            return self._item(payout, PayoutItemStatus.FAILED, reason=reason)
        async with self._uow_factory() as uow:
            payout.transfer_reference = result.transfer_id
            await uow.payouts.update(payout)
        return self._item(payout, PayoutItemStatus.PENDING, reason="transfer pending at provider")

    @staticmethod
    def _item(payout: AffiliatePayout, status: PayoutItemStatus, *, reason: Optional[str] = None) -> PayoutItemResult:
        return PayoutItemResult(
            affiliate_id=payout.affiliate_id,
            amount=payout.amount,
            status=status,
            payout_id=payout.id,
            transfer_reference=payout.transfer_reference,
            referral_count=len(payout.referral_ids),
            reason=reason,
        )

    async def get_batch(self, batch_id: str) -> PayoutBatchDetail:
        async with self._uow_factory(readonly=True) as uow:
            payouts = await uow.payouts.list_by_batch(batch_id)
        return PayoutBatchDetail(
            batch_id=batch_id,
            payouts=[PayoutDTO.from_entity(p) for p in payouts],
            total_payouts=len(payouts),
            total_amount=sum(p.amount for p in payouts),
            paid_count=sum(1 for p in payouts if p.status is PayoutStatus.PAID),
            failed_count=sum(1 for p in payouts if p.status is PayoutStatus.FAILED),
            pending_count=sum(1 for p in payouts if p.status.is_open),
        )

    async def request_payout(self, affiliate_id: str, amount: int, requested_by: Optional[str] = None) -> PayoutDTO:
        """Affiliate-initiated request; the next batch pays it from the oldest approved referrals."""
        async with self._uow_factory() as uow:
            affiliate = await uow.affiliates.get_by_id(affiliate_id)
            if affiliate is None:
                raise AffiliateNotFoundException(affiliate_id)
            if not affiliate.is_active:
                raise PayoutRequestException("Affiliate is not active", details={"affiliate_id": affiliate_id})
            if isinstance(amount, bool) or not isinstance(amount, int) or amount < self._config.minimum_payout:
                raise PayoutRequestException(
                    f"Minimum payout is {self._config.minimum_payout}",
                    details={"amount": amount, "minimum": self._config.minimum_payout},
                )
            if amount > affiliate.approved_balance:
                raise PayoutRequestException(
                    "Requested amount exceeds approved balance",
                    details={"amount": amount, "approved_balance": affiliate.approved_balance},
                )
            if await uow.payouts.get_open_request(affiliate_id) is not None:
                raise PayoutRequestException("A payout request is already open", details={"affiliate_id": affiliate_id})
            payout = await uow.payouts.create(
                AffiliatePayout(
                    id=str(uuid.uuid4()),
                    affiliate_id=affiliate_id,
                    amount=amount,
                    status=PayoutStatus.PENDING,
                    requested_by=requested_by or affiliate_id,
                )
            )
        logger.info("payout_requested", affiliate_id=affiliate_id, amount=amount, payout_id=payout.id)
        return PayoutDTO.from_entity(payout)

"""
佣金应用服务（application/services）- 推广佣金的创建、审核、冲销与余额查询

推广者的三个余额计数器只通过 BalanceDelta 在 SQL 中原子调整。
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from application.dtos.affiliates import AffiliateBalance, CommissionResult, ReferralDTO
from core.logging_config import get_logger
from core.settings import AffiliateSettings, affiliate_settings
from domain.affiliate.attribution import resolve_code
from domain.affiliate.commission import BalanceDelta, compute_commission, resolve_rate
from domain.affiliate.entity import (
    Affiliate,
    AffiliateReferral,
    AttributionType,
    ReferralStatus,
)
from domain.affiliate.exceptions import (
    AffiliateNotFoundException,
    DuplicateReferralException,
    ReferralNotFoundException,
    ReferralStateException,
)
from domain.audit.entity import AuditEntry
from domain.common.exceptions import DomainValidationException, NotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.ledger import is_paid

logger = get_logger(__name__)


class CommissionService:
    """佣金账本"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        *,
        config: AffiliateSettings = affiliate_settings,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._uow_factory = uow_factory
        self._config = config
        self._clock = clock

    async def _existing(self, order_id: str) -> Optional[AffiliateReferral]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.referrals.get_by_order_id(order_id)

    async def _resolve_affiliate(
        self,
        uow: AbstractUnitOfWork,
        affiliate_id: Optional[str],
        affiliate_code: Optional[str],
    ) -> tuple[Optional[Affiliate], bool]:
        """返回 (推广者, 是否亲友码)"""
        if affiliate_id:
            affiliate = await uow.affiliates.get_by_id(affiliate_id)
            if affiliate is None:
                raise AffiliateNotFoundException(affiliate_id)
            return affiliate, False
        if not affiliate_code:
            return None, False
        code, base_code = resolve_code(affiliate_code, ff_prefix=self._config.ff_prefix if self._config.ff_enabled else None)
        affiliate = await uow.affiliates.get_by_code(code)
        if affiliate is None and base_code:
            affiliate = await uow.affiliates.get_by_code(base_code)
            return affiliate, affiliate is not None
        return affiliate, False

    async def record_commission(
        self,
        order_id: str,
        *,
        affiliate_id: Optional[str] = None,
        session_id: Optional[str] = None,
        attribution_type: str = AttributionType.COOKIE.value,
        friends_family: bool = False,
    ) -> Optional[CommissionResult]:
        """
        为已支付且已归因的订单创建佣金（每个订单至多一条）

        归因来源依次为：显式 affiliate_id、点击会话、订单上的推广码。
        重复调用（含唯一约束竞争）返回已有记录，created=False。
        无归因时返回 None。
        """
        existing = await self._existing(order_id)
        if existing is not None:
            logger.info("commission_duplicate_ignored", order_id=order_id, referral_id=existing.id)
            return CommissionResult(created=False, referral=ReferralDTO.from_entity(existing))

        try:
            async with self._uow_factory() as uow:
                order = await uow.orders.get_by_id(order_id)
                if order is None:
                    raise NotFoundException("Order", order_id)
                if not is_paid(order):
                    raise DomainValidationException("订单未支付，无法计算佣金", field="order_id", details={"order_id": order_id})

                click = await uow.clicks.get_by_session_id(session_id) if session_id else None
                if affiliate_id is None and click is not None:
                    affiliate_id = click.affiliate_id
                    friends_family = friends_family or click.friends_family
                affiliate, via_ff_code = await self._resolve_affiliate(uow, affiliate_id, order.affiliate_code)
                if affiliate is None:
                    logger.info("commission_not_attributed", order_id=order_id)
                    return None
                if not affiliate.is_active:
                    logger.info("commission_skipped_inactive_affiliate", order_id=order_id, affiliate_id=affiliate.id)
                    return None
                friends_family = (friends_family or via_ff_code) and self._config.ff_enabled

                commission_type, rate = resolve_rate(
                    affiliate,
                    default_type=self._config.default_commission_type,
                    default_value=self._config.default_commission_value,
                    friends_family=friends_family,
                    ff_type=self._config.ff_commission_type,
                    ff_value=self._config.ff_commission_value,
                )
                amount = compute_commission(order.total_amount, commission_type, rate)
                referral = await uow.referrals.create(
                    AffiliateReferral(
                        id=str(uuid.uuid4()),
                        affiliate_id=affiliate.id,
                        order_id=order.id,
                        order_amount=order.total_amount,
                        commission_type=commission_type,
                        commission_rate=rate,
                        commission_amount=amount,
                        # 点击归属于其他推广者时不关联
                        click_id=click.id if click is not None and click.affiliate_id == affiliate.id else None,
                        attribution_type=AttributionType(attribution_type),
                        friends_family=friends_family,
                    )
                )
                await uow.affiliates.apply_balance_delta(
                    affiliate.id,
                    BalanceDelta.for_creation(amount),
                    referrals=1,
                    sales=order.total_amount,
                )
        except DuplicateReferralException:
            existing = await self._existing(order_id)
            if existing is None:
                raise
            logger.info("commission_duplicate_ignored", order_id=order_id, referral_id=existing.id)
            return CommissionResult(created=False, referral=ReferralDTO.from_entity(existing))

        logger.info(
            "commission_recorded",
            order_id=order_id,
            affiliate_id=referral.affiliate_id,
            commission_type=referral.commission_type.value,
            commission_rate=referral.commission_rate,
            commission_amount=referral.commission_amount,
        )
        return CommissionResult(created=True, referral=ReferralDTO.from_entity(referral))

    async def _approve(self, uow: AbstractUnitOfWork, referral: AffiliateReferral, now: datetime) -> bool:
        referral.status = ReferralStatus.APPROVED
        referral.approved_at = now
        if not await uow.referrals.update(referral, expected=ReferralStatus.PENDING):
            return False
        await uow.affiliates.apply_balance_delta(referral.affiliate_id, BalanceDelta.for_approval(referral.commission_amount))
        return True

    async def _current_status(self, uow: AbstractUnitOfWork, referral_id: str) -> str:
        current = await uow.referrals.get_by_id(referral_id)
        return current.status.value if current else "missing"

    async def approve_commission(self, referral_id: str, actor: Optional[str] = None) -> ReferralDTO:
        """人工审核通过（仅 pending 可审核）"""
        async with self._uow_factory() as uow:
            referral = await uow.referrals.get_by_id(referral_id)
            if referral is None:
                raise ReferralNotFoundException(referral_id)
            if referral.status is not ReferralStatus.PENDING:
                raise ReferralStateException(referral_id, referral.status.value, "approve")
            if not await self._approve(uow, referral, self._clock()):
                raise ReferralStateException(referral_id, await self._current_status(uow, referral_id), "approve")
            await uow.audit_logs.add(
                AuditEntry(
                    action="referral.approved",
                    entity_type="affiliate_referral",
                    entity_id=referral.id,
                    actor=actor,
                    metadata={"commission_amount": referral.commission_amount},
                )
            )
        logger.info("commission_approved", referral_id=referral_id, actor=actor)
        return ReferralDTO.from_entity(referral)

    async def auto_approve_commissions(self, now: Optional[datetime] = None) -> int:
        """审核窗口已过的 pending 佣金自动转为 approved，返回实际处理条数"""
        now = now or self._clock()
        cutoff = now - timedelta(days=self._config.approval_days)
        approved = 0
        async with self._uow_factory() as uow:
            referrals = await uow.referrals.list_pending_created_before(cutoff)
            for referral in referrals:
                if await self._approve(uow, referral, now):
                    approved += 1
        logger.info("commissions_auto_approved", count=approved, candidates=len(referrals), cutoff=cutoff.isoformat())
        return approved

    async def _reverse(self, uow: AbstractUnitOfWork, referral: AffiliateReferral, reason: str) -> bool:
        expected = referral.status
        delta = BalanceDelta.for_reversal(referral.commission_amount, expected)
        referral.status = ReferralStatus.REVERSED
        referral.reversed_at = self._clock()
        referral.reversal_reason = reason
        if not await uow.referrals.update(referral, expected=expected):
            return False
        await uow.affiliates.apply_balance_delta(referral.affiliate_id, delta)
        return True

    async def reverse_commission(self, referral_id: str, reason: str, actor: Optional[str] = None) -> ReferralDTO:
        """人工冲销；已被未结打款占用的佣金需等打款结束后再处理"""
        async with self._uow_factory() as uow:
            referral = await uow.referrals.get_by_id(referral_id)
            if referral is None:
                raise ReferralNotFoundException(referral_id)
            if referral.status not in (ReferralStatus.PENDING, ReferralStatus.APPROVED):
                raise ReferralStateException(referral_id, referral.status.value, "reverse")
            if await uow.payouts.has_open_payout_for_referral(referral_id):
                raise ReferralStateException(referral_id, "in_payout", "reverse")
            if not await self._reverse(uow, referral, reason):
                raise ReferralStateException(referral_id, await self._current_status(uow, referral_id), "reverse")
            await uow.audit_logs.add(
                AuditEntry(
                    action="referral.reversed",
                    entity_type="affiliate_referral",
                    entity_id=referral.id,
                    actor=actor,
                    metadata={"reason": reason, "commission_amount": referral.commission_amount},
                )
            )
        logger.info("commission_reversed", referral_id=referral_id, reason=reason)
        return ReferralDTO.from_entity(referral)

    async def reverse_for_order(self, uow: AbstractUnitOfWork, order_id: str, reason: str) -> Optional[AffiliateReferral]:
        """
        在调用方事务内冲销订单的佣金

        已支付或已冲销的记录保持不变；正在打款中的记录不冲销，只写审计留待人工处理。
        条件更新失败（并发审核）时重读一次再冲销。
        """
        referral = None
        for _ in range(2):
            referral = await uow.referrals.get_by_order_id(order_id)
            if referral is None:
                return None
            if referral.status not in (ReferralStatus.PENDING, ReferralStatus.APPROVED):
                logger.info("commission_reversal_skipped", order_id=order_id, status=referral.status.value)
                return referral
            if await uow.payouts.has_open_payout_for_referral(referral.id):
                logger.warning("commission_reversal_blocked_by_payout", referral_id=referral.id, order_id=order_id)
                await uow.audit_logs.add(
                    AuditEntry(
                        action="referral.reversal_blocked",
                        entity_type="affiliate_referral",
                        entity_id=referral.id,
                        metadata={"reason": reason, "order_id": order_id},
                    )
                )
                return referral
            if await self._reverse(uow, referral, reason):
                await uow.audit_logs.add(
                    AuditEntry(
                        action="referral.reversed",
                        entity_type="affiliate_referral",
                        entity_id=referral.id,
                        metadata={"reason": reason, "order_id": order_id, "commission_amount": referral.commission_amount},
                    )
                )
                logger.info("commission_reversed", referral_id=referral.id, order_id=order_id, reason=reason)
                return referral
        logger.warning("commission_reversal_conflict", order_id=order_id)
        return referral

    async def get_balance(self, affiliate_id: str) -> AffiliateBalance:
        async with self._uow_factory(readonly=True) as uow:
            affiliate = await uow.affiliates.get_by_id(affiliate_id)
        if affiliate is None:
            raise AffiliateNotFoundException(affiliate_id)
        return AffiliateBalance(
            affiliate_id=affiliate.id,
            total_earnings=affiliate.total_earnings,
            pending_balance=affiliate.pending_balance,
            paid_balance=affiliate.paid_balance,
            approved_balance=affiliate.approved_balance,
        )

    async def list_approved_unpaid(self, affiliate_id: str) -> List[ReferralDTO]:
        async with self._uow_factory(readonly=True) as uow:
            referrals = await uow.referrals.list_approved_unpaid(affiliate_id)
        return [ReferralDTO.from_entity(r) for r in referrals]

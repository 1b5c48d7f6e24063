"""
订单管理应用服务 - 管理端批量删除（显式级联）
"""
from __future__ import annotations

from typing import Callable, List, Optional, Sequence

from core.logging_config import get_logger
from domain.affiliate.commission import BalanceDelta
from domain.affiliate.entity import ReferralStatus
from domain.audit.entity import AuditEntry
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.exceptions import OrderDeleteForbiddenException

logger = get_logger(__name__)


class OrderAdminService:

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]):
        self._uow_factory = uow_factory

    async def bulk_delete_orders(self, order_ids: Sequence[str], actor: Optional[str] = None) -> int:
        """
        删除订单及其退款、佣金和打款关联

        业务规则：
        1. 佣金已支付或正在打款中的订单禁止删除（整批回滚）
        2. 未支付的佣金先按冲销规则回退推广者计数器，再删除
        """
        ids: List[str] = list(dict.fromkeys(order_ids))
        if not ids:
            return 0
        async with self._uow_factory() as uow:
            referrals = await uow.referrals.list_by_order_ids(ids, for_update=True)
            for referral in referrals:
                if referral.status is ReferralStatus.PAID:
                    raise OrderDeleteForbiddenException(referral.order_id)
                if await uow.payouts.has_open_payout_for_referral(referral.id):
                    raise OrderDeleteForbiddenException(referral.order_id, "关联的佣金正在打款中")
            for referral in referrals:
                if referral.status in (ReferralStatus.PENDING, ReferralStatus.APPROVED):
                    await uow.affiliates.apply_balance_delta(
                        referral.affiliate_id,
                        BalanceDelta.for_reversal(referral.commission_amount, referral.status),
                    )
            await uow.payouts.delete_links_for_referrals([r.id for r in referrals])
            await uow.referrals.delete_by_order_ids(ids)
            await uow.refunds.delete_by_order_ids(ids)
            deleted = await uow.orders.delete_many(ids)
            for order_id in ids:
                await uow.audit_logs.add(
                    AuditEntry(action="order.deleted", entity_type="order", entity_id=order_id, actor=actor)
                )
        logger.info("orders_bulk_deleted", requested=len(ids), deleted=deleted, actor=actor)
        return deleted

"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.affiliate.repository import (
    AffiliateRepository,
    ClickRepository,
    InviteRepository,
    PayoutRepository,
    ReferralRepository,
)
from domain.audit.repository import AuditLogRepository
from domain.order.repository import OrderRepository, ProcessedEventRepository, RefundRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象"""

    orders: OrderRepository
    refunds: RefundRepository
    processed_events: ProcessedEventRepository
    audit_logs: AuditLogRepository
    affiliates: AffiliateRepository
    clicks: ClickRepository
    invites: InviteRepository
    referrals: ReferralRepository
    payouts: PayoutRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""

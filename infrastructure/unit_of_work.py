"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.affiliate_repository import (
    SQLAlchemyAffiliateRepository,
    SQLAlchemyClickRepository,
    SQLAlchemyInviteRepository,
    SQLAlchemyPayoutRepository,
    SQLAlchemyReferralRepository,
)
from infrastructure.repositories.audit_repository import SQLAlchemyAuditLogRepository
from infrastructure.repositories.order_repository import (
    SQLAlchemyOrderRepository,
    SQLAlchemyProcessedEventRepository,
    SQLAlchemyRefundRepository,
)


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session

    def _bind_repositories(self, session: AsyncSession) -> None:
        self.orders = SQLAlchemyOrderRepository(session)
        self.refunds = SQLAlchemyRefundRepository(session)
        self.processed_events = SQLAlchemyProcessedEventRepository(session)
        self.audit_logs = SQLAlchemyAuditLogRepository(session)
        self.affiliates = SQLAlchemyAffiliateRepository(session)
        self.clicks = SQLAlchemyClickRepository(session)
        self.invites = SQLAlchemyInviteRepository(session)
        self.referrals = SQLAlchemyReferralRepository(session)
        self.payouts = SQLAlchemyPayoutRepository(session)

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self._committed = False
        self._bind_repositories(self.session)
        # 仅在非只读模式下显式开启事务
        if not self._readonly and not self.session.in_transaction():
            await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None

    async def commit(self) -> None:
        if self._readonly:
            # 只读情况下不提交
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False


def uow_factory(session_factory: Callable[[], AsyncSession] = AsyncSessionLocal) -> Callable[..., SQLAlchemyUnitOfWork]:
    """服务层依赖的 UoW 工厂：每次调用得到一个新的事务边界"""

    def _make(*, readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory=session_factory, readonly=readonly)

    return _make

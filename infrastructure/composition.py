"""
服务装配：API 与 Celery 任务共用的组合根
"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from application.ports.notifications import ConversionNotifier
from application.ports.payment_gateway import PaymentGateway
from application.services.attribution_service import AttributionService
from application.services.commission_service import CommissionService
from application.services.invite_service import InviteService
from application.services.order_admin_service import OrderAdminService
from application.services.payout_service import PayoutBatchService
from application.services.refund_service import RefundService
from application.services.webhook_service import WebhookService
from infrastructure.database import AsyncSessionLocal
from infrastructure.external.payments import get_payment_gateway
from infrastructure.tasks.utils.dispatcher import CeleryConversionNotifier
from infrastructure.unit_of_work import uow_factory


class Services:
    """按会话工厂装配全部应用服务"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        *,
        gateway: Optional[PaymentGateway] = None,
        notifier: Optional[ConversionNotifier] = None,
    ):
        make_uow = uow_factory(session_factory)
        self.gateway = gateway or get_payment_gateway()
        self.commissions = CommissionService(make_uow)
        self.refunds = RefundService(
            make_uow,
            self.gateway,
            notifier=notifier or CeleryConversionNotifier(),
            commissions=self.commissions,
        )
        self.attribution = AttributionService(make_uow)
        self.invites = InviteService(make_uow)
        self.payouts = PayoutBatchService(make_uow, self.gateway)
        self.webhooks = WebhookService(make_uow, self.gateway, self.refunds, self.payouts)
        self.order_admin = OrderAdminService(make_uow)

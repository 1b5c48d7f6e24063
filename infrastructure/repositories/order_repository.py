"""
订单/退款仓储实现 - 使用SQLAlchemy实现数据访问
"""
from typing import List, Optional, Sequence

from sqlalchemy import delete, exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging_config import get_logger
from domain.order.entity import Order, PaymentStatus, Refund
from domain.order.exceptions import DuplicateEventException
from domain.order.repository import OrderRepository, ProcessedEventRepository, RefundRepository
from infrastructure.models.order import OrderModel, ProcessedWebhookEventModel, RefundModel

logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        return Order(
            id=model.id,
            total_amount=model.total_amount,
            status=model.status,
            payment_status=model.payment_status,
            payment_reference=model.payment_reference,
            customer_id=model.customer_id,
            affiliate_code=model.affiliate_code,
            currency=model.currency,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    async def create(self, order: Order) -> Order:
        db_order = OrderModel(
            id=order.id,
            total_amount=order.total_amount,
            status=order.status.value,
            payment_status=order.payment_status.value,
            payment_reference=order.payment_reference,
            customer_id=order.customer_id,
            affiliate_code=order.affiliate_code,
            currency=order.currency,
        )
        self.session.add(db_order)
        await self.session.flush()
        return self._to_entity(db_order)

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.id == order_id).execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def get_for_update(self, order_id: str) -> Optional[Order]:
        """SELECT ... FOR UPDATE；同一订单上的并发退款在此排队"""
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def update_payment_status(self, order_id: str, status: PaymentStatus) -> None:
        await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id)
            .values(payment_status=PaymentStatus(status).value)
        )

    async def delete_many(self, order_ids: Sequence[str]) -> int:
        if not order_ids:
            return 0
        result = await self.session.execute(delete(OrderModel).where(OrderModel.id.in_(list(order_ids))))
        return result.rowcount or 0


class SQLAlchemyRefundRepository(RefundRepository):
    """退款仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: RefundModel) -> Refund:
        return Refund(
            id=model.id,
            order_id=model.order_id,
            amount=model.amount,
            status=model.status,
            source=model.source,
            reason_code=model.reason_code,
            reason=model.reason,
            provider_refund_id=model.provider_refund_id,
            refund_type=model.refund_type,
            created_by=model.created_by,
            created_at=model.created_at,
            processed_at=model.processed_at,
        )

    async def create(self, refund: Refund) -> Refund:
        db_refund = RefundModel(
            id=refund.id,
            order_id=refund.order_id,
            amount=refund.amount,
            status=refund.status.value,
            source=refund.source.value,
            refund_type=refund.refund_type.value,
            reason_code=refund.reason_code.value if refund.reason_code else None,
            reason=refund.reason,
            provider_refund_id=refund.provider_refund_id,
            created_by=refund.created_by,
            processed_at=refund.processed_at,
        )
        if refund.created_at is not None:
            db_refund.created_at = refund.created_at
        self.session.add(db_refund)
        await self.session.flush()
        logger.info("refund_row_inserted", refund_id=db_refund.id, order_id=db_refund.order_id)
        return self._to_entity(db_refund)

    async def get_by_id(self, refund_id: str) -> Optional[Refund]:
        result = await self.session.execute(
            select(RefundModel).where(RefundModel.id == refund_id).execution_options(populate_existing=True)
        )
        db_refund = result.scalar_one_or_none()
        return self._to_entity(db_refund) if db_refund else None

    async def get_by_provider_refund_id(self, provider_refund_id: str) -> Optional[Refund]:
        result = await self.session.execute(
            select(RefundModel).where(RefundModel.provider_refund_id == provider_refund_id)
        )
        db_refund = result.scalar_one_or_none()
        return self._to_entity(db_refund) if db_refund else None

    async def list_by_order_id(self, order_id: str) -> List[Refund]:
        result = await self.session.execute(
            select(RefundModel)
            .where(RefundModel.order_id == order_id)
            .order_by(RefundModel.created_at.asc(), RefundModel.id.asc())
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def update(self, refund: Refund) -> Refund:
        await self.session.execute(
            update(RefundModel)
            .where(RefundModel.id == refund.id)
            .values(status=refund.status.value, processed_at=refund.processed_at)
        )
        return refund

    async def delete_by_order_ids(self, order_ids: Sequence[str]) -> int:
        if not order_ids:
            return 0
        result = await self.session.execute(delete(RefundModel).where(RefundModel.order_id.in_(list(order_ids))))
        return result.rowcount or 0


class SQLAlchemyProcessedEventRepository(ProcessedEventRepository):
    """webhook 事件去重账本"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, event_id: str, event_type: str, source: str, metadata: Optional[dict] = None) -> None:
        self.session.add(
            ProcessedWebhookEventModel(
                event_id=event_id,
                event_type=event_type,
                source=source,
                extra_metadata=metadata or {},
            )
        )
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise DuplicateEventException(event_id) from e

    async def exists(self, event_id: str) -> bool:
        result = await self.session.execute(
            select(exists().where(ProcessedWebhookEventModel.event_id == event_id))
        )
        return bool(result.scalar())

"""
订单/退款仓储接口 - 定义资金数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from .entity import Order, PaymentStatus, Refund


class OrderRepository(ABC):
    """订单仓储抽象接口"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """创建订单（结算流程使用；此处主要服务于测试与导入）"""
        pass

    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        """根据ID获取订单"""
        pass

    @abstractmethod
    async def get_for_update(self, order_id: str) -> Optional[Order]:
        """获取订单并加行锁，串行化同一订单上的退款"""
        pass

    @abstractmethod
    async def update_payment_status(self, order_id: str, status: PaymentStatus) -> None:
        """写回派生的支付状态"""
        pass

    @abstractmethod
    async def delete_many(self, order_ids: Sequence[str]) -> int:
        """物理删除订单（调用方需先清理依赖行）"""
        pass


class RefundRepository(ABC):
    """退款仓储抽象接口"""

    @abstractmethod
    async def create(self, refund: Refund) -> Refund:
        """创建退款记录"""
        pass

    @abstractmethod
    async def get_by_id(self, refund_id: str) -> Optional[Refund]:
        """根据ID获取退款"""
        pass

    @abstractmethod
    async def get_by_provider_refund_id(self, provider_refund_id: str) -> Optional[Refund]:
        """根据渠道退款ID获取退款"""
        pass

    @abstractmethod
    async def list_by_order_id(self, order_id: str) -> List[Refund]:
        """订单的全部退款（按创建时间升序）"""
        pass

    @abstractmethod
    async def update(self, refund: Refund) -> Refund:
        """更新退款状态"""
        pass

    @abstractmethod
    async def delete_by_order_ids(self, order_ids: Sequence[str]) -> int:
        """删除订单下全部退款"""
        pass


class ProcessedEventRepository(ABC):
    """已处理 webhook 事件账本"""

    @abstractmethod
    async def add(self, event_id: str, event_type: str, source: str, metadata: Optional[dict] = None) -> None:
        """记录事件；重复事件抛出 DuplicateEventException"""
        pass

    @abstractmethod
    async def exists(self, event_id: str) -> bool:
        pass

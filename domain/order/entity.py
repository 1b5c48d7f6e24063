"""
订单与退款领域实体

订单本身由结算流程创建，这里只关心与资金相关的字段：总额、支付引用与派生的支付状态。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException


class OrderStatus(str, Enum):
    """订单履约状态"""
    PENDING = "pending"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """订单支付状态（由退款集合派生，不单独维护）"""
    UNPAID = "unpaid"
    PAID = "paid"
    REFUND_PENDING = "refund_pending"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"
    REFUND_FAILED = "refund_failed"


class RefundStatus(str, Enum):
    """退款状态"""
    PENDING = "pending"
    PROCESSED = "processed"
    REJECTED = "rejected"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not RefundStatus.PENDING


class RefundSource(str, Enum):
    PROCESSOR = "processor"  # 支付渠道退款
    MANUAL = "manual"        # 线下人工退款


class RefundType(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


class RefundReasonCode(str, Enum):
    """退款原因（封闭枚举）"""
    DUPLICATE = "duplicate"
    FRAUDULENT = "fraudulent"
    REQUESTED_BY_CUSTOMER = "requested_by_customer"
    PRODUCT_NOT_RECEIVED = "product_not_received"
    PRODUCT_UNACCEPTABLE = "product_unacceptable"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["RefundReasonCode"]:
        """边界校验：None 表示未提供；未知值返回 ValueError"""
        if value is None:
            return None
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


# 视为“已支付”的履约状态
PAID_ORDER_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.DELIVERED})


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Order:
    """
    订单（资金视角）

    业务规则：
    1. total_amount 为最小货币单位整数，且不小于 0
    2. payment_status 始终由 ledger.payment_status 重新计算后写回
    """

    id: str
    total_amount: int
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    payment_reference: Optional[str] = None  # 支付渠道的 payment intent
    customer_id: Optional[str] = None
    affiliate_code: Optional[str] = None
    currency: str = "usd"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.total_amount, bool) or not isinstance(self.total_amount, int) or self.total_amount < 0:
            raise DomainValidationException(f"订单金额无效: {self.total_amount}", field="total_amount")
        self.status = OrderStatus(self.status)
        self.payment_status = PaymentStatus(self.payment_status)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    @property
    def has_processor_charge(self) -> bool:
        return bool(self.payment_reference)


@dataclass
class Refund:
    """
    退款实体

    业务规则：
    1. 金额为正整数
    2. 终态（processed/failed/rejected）不可再变更
    3. 渠道退款必须携带渠道退款 ID
    """

    id: str
    order_id: str
    amount: int
    status: RefundStatus
    source: RefundSource
    reason_code: Optional[RefundReasonCode] = None
    reason: Optional[str] = None
    provider_refund_id: Optional[str] = None
    refund_type: RefundType = RefundType.PARTIAL
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.amount, bool) or not isinstance(self.amount, int) or self.amount <= 0:
            raise DomainValidationException(f"退款金额必须为正整数: {self.amount}", field="amount")
        self.status = RefundStatus(self.status)
        self.source = RefundSource(self.source)
        self.refund_type = RefundType(self.refund_type)
        if self.reason_code is not None:
            self.reason_code = RefundReasonCode(self.reason_code)
        self.created_at = _ensure_utc(self.created_at)
        self.processed_at = _ensure_utc(self.processed_at)

    def transition_to(self, status: RefundStatus, *, at: Optional[datetime] = None) -> bool:
        """
        状态迁移：仅允许 pending -> processed/failed/rejected

        Returns:
            是否发生了迁移（重复投递同一状态返回 False）
        """
        status = RefundStatus(status)
        if status == self.status:
            return False
        if self.status.is_terminal:
            raise DomainValidationException(
                f"退款已处于终态 {self.status.value}，无法转换为 {status.value}",
                field="status",
            )
        if status is RefundStatus.PENDING:
            return False
        self.status = status
        if status is RefundStatus.PROCESSED:
            self.processed_at = at or datetime.now(timezone.utc)
        return True

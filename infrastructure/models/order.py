"""
订单/退款数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Index, String, Text

from .base import Base, new_id, utcnow


class OrderModel(Base):
    """订单表（仅映射资金相关列）"""
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    customer_id = Column(String(36), nullable=True, index=True, comment="客户ID")
    status = Column(String(20), nullable=False, default="pending", comment="履约状态: pending/paid/shipped/delivered/cancelled")
    payment_status = Column(
        String(30),
        nullable=False,
        default="unpaid",
        index=True,
        comment="派生支付状态: unpaid/paid/refund_pending/partially_refunded/refunded/refund_failed",
    )
    total_amount = Column(BigInteger, nullable=False, comment="订单总额（最小货币单位）")
    currency = Column(String(3), nullable=False, default="usd", comment="货币代码 ISO-4217")
    payment_reference = Column(String(200), nullable=True, index=True, comment="支付渠道 payment intent ID")
    affiliate_code = Column(String(64), nullable=True, comment="下单时携带的推广码")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, comment="创建时间")
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False, comment="更新时间")


class RefundModel(Base):
    """退款表"""
    __tablename__ = "refunds"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, comment="订单ID")
    amount = Column(BigInteger, nullable=False, comment="退款金额（最小货币单位）")
    status = Column(String(20), nullable=False, default="pending", comment="pending/processed/rejected/failed")
    source = Column(String(20), nullable=False, comment="processor/manual")
    refund_type = Column("type", String(20), nullable=False, default="partial", comment="full/partial")
    reason_code = Column(String(40), nullable=True, comment="退款原因代码")
    reason = Column(Text, nullable=True, comment="退款说明")
    provider_refund_id = Column(String(200), nullable=True, unique=True, comment="渠道退款ID")
    created_by = Column(String(100), nullable=True, comment="操作人")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_refunds_order_created", "order_id", "created_at"),
    )


class ProcessedWebhookEventModel(Base):
    """已处理的 webhook 事件（按渠道事件ID去重）"""
    __tablename__ = "processed_webhook_events"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(200), nullable=False, unique=True, comment="渠道事件ID")
    event_type = Column(String(100), nullable=False)
    source = Column(String(50), nullable=False, comment="渠道")
    processed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    extra_metadata = Column("metadata", JSON, nullable=True)

"""
订单资金领域事件
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(frozen=True)
class RefundProcessed:
    """退款已结算（同步成功或 webhook 确认）"""
    refund_id: str
    order_id: str
    amount: int
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


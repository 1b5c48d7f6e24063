"""
退款相关业务异常
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode


class RefundErrorCode(str, Enum):
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    NOT_PROCESSOR_PAID = "NOT_PROCESSOR_PAID"
    ORDER_NOT_PAID = "ORDER_NOT_PAID"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_REASON_CODE = "INVALID_REASON_CODE"
    EXCEEDS_REFUNDABLE = "EXCEEDS_REFUNDABLE"
    REFUND_NOT_FOUND = "REFUND_NOT_FOUND"
    REFUND_NOT_PENDING = "REFUND_NOT_PENDING"
    PROCESSOR_NOT_CONFIGURED = "PROCESSOR_NOT_CONFIGURED"
    PROCESSOR_REFUND_FAILED = "PROCESSOR_REFUND_FAILED"
    PROCESSOR_TIMEOUT = "PROCESSOR_TIMEOUT"


# HTTP 等价状态
REFUND_ERROR_STATUS = {
    RefundErrorCode.ORDER_NOT_FOUND: 404,
    RefundErrorCode.NOT_PROCESSOR_PAID: 400,
    RefundErrorCode.ORDER_NOT_PAID: 400,
    RefundErrorCode.INVALID_AMOUNT: 400,
    RefundErrorCode.INVALID_REASON_CODE: 400,
    RefundErrorCode.EXCEEDS_REFUNDABLE: 400,
    RefundErrorCode.REFUND_NOT_FOUND: 404,
    RefundErrorCode.REFUND_NOT_PENDING: 409,
    RefundErrorCode.PROCESSOR_NOT_CONFIGURED: 503,
    RefundErrorCode.PROCESSOR_REFUND_FAILED: 502,
    RefundErrorCode.PROCESSOR_TIMEOUT: 504,
}


class RefundError(BusinessException):
    """退款失败：携带稳定错误码与 HTTP 等价状态"""

    def __init__(
        self,
        error_code: RefundErrorCode,
        message: str,
        *,
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ):
        self.error_code = RefundErrorCode(error_code)
        super().__init__(
            code=BusinessCode.REFUND_ERROR,
            message=message,
            error_type=self.error_code.value,
            details=details,
            field=field,
            status_code=REFUND_ERROR_STATUS[self.error_code],
        )

    @property
    def is_provider_failure(self) -> bool:
        """渠道侧失败可能是暂时性的，调用方可重试"""
        return self.error_code in (
            RefundErrorCode.PROCESSOR_REFUND_FAILED,
            RefundErrorCode.PROCESSOR_TIMEOUT,
            RefundErrorCode.PROCESSOR_NOT_CONFIGURED,
        )


class OrderDeleteForbiddenException(BusinessException):
    """订单存在已付或打款中的佣金，禁止级联删除"""

    def __init__(self, order_id: str, reason: str = "关联的佣金已支付"):
        super().__init__(
            code=BusinessCode.ORDER_DELETE_FORBIDDEN,
            message=f"订单 {order_id} {reason}，无法删除",
            error_type="ORDER_DELETE_FORBIDDEN",
            details={"order_id": order_id},
            status_code=409,
        )


class DuplicateEventException(BusinessException):
    """webhook 事件已处理过"""

    def __init__(self, event_id: str):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message=f"事件 {event_id} 已处理",
            error_type="DUPLICATE_EVENT",
            details={"event_id": event_id},
            status_code=200,
        )

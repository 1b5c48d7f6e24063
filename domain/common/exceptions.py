"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional

from shared.codes import BusinessCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        # 显式 HTTP 状态（为空时由 core.exceptions 按业务码映射）
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundException(BusinessException):
    def __init__(self, resource: str, identifier: str):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"{resource} not found",
            error_type=f"{resource.upper().replace(' ', '_')}_NOT_FOUND",
            details={"id": identifier},
        )


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )

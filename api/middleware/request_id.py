"""
Request ID 中间件
生成或透传追踪ID，连同客户端IP和操作人一起绑定到 structlog 上下文
"""
import uuid
from contextvars import ContextVar
from typing import Optional

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
client_ip_var: ContextVar[Optional[str]] = ContextVar("client_ip", default=None)


def _client_ip(request: Request) -> str:
    # 代理链取最左侧的原始地址
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    每个请求一个 request_id：

    - 请求头 X-Request-ID 存在时透传，否则生成
    - 写入 request.state 和 contextvars，异常处理器和日志都能取到
    - X-Actor 一并绑定，退款、打款等写操作的日志可按操作人检索
    """

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(self.HEADER_NAME) or str(uuid.uuid4())
        client_ip = _client_ip(request)

        request.state.request_id = request_id
        request.state.client_ip = client_ip
        request_id_var.set(request_id)
        client_ip_var.set(client_ip)

        structlog.contextvars.clear_contextvars()
        context = {"request_id": request_id, "client_ip": client_ip, "method": request.method, "path": request.url.path}
        actor = request.headers.get("X-Actor")
        if actor:
            context["actor"] = actor
        structlog.contextvars.bind_contextvars(**context)

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response


def get_request_id() -> Optional[str]:
    """当前请求的 request_id；请求上下文之外为 None"""
    return request_id_var.get()


def get_client_ip() -> Optional[str]:
    """当前请求的客户端IP，点击归因用它计算 ip_hash"""
    return client_ip_var.get()

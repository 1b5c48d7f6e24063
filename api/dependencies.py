"""
API依赖项 - 应用服务装配
"""
from functools import lru_cache
from typing import Optional

from fastapi import Header

from infrastructure.composition import Services


@lru_cache(maxsize=1)
def get_services() -> Services:
    """进程内单例；测试通过 app.dependency_overrides 替换"""
    return Services()


async def get_actor(x_actor: Optional[str] = Header(default=None)) -> Optional[str]:
    """操作人标识，写入审计日志；认证由上游网关完成"""
    return x_actor

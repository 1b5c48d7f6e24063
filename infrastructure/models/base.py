"""
数据库模型基类（SQLAlchemy 2.0 风格）
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def new_id() -> str:
    """主键：UUID4 字符串"""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# 元数据对象用于数据库迁移
metadata = Base.metadata

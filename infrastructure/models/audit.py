"""
审计日志模型
"""
from sqlalchemy import JSON, Column, DateTime, Index, String

from .base import Base, new_id, utcnow


class AuditLogModel(Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    actor = Column(String(100), nullable=True, comment="操作人")
    action = Column(String(100), nullable=False, comment="动作，如 refund.created")
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(100), nullable=False)
    extra_metadata = Column("metadata", JSON, nullable=True, comment="原始渠道状态等取证信息")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id"),
    )

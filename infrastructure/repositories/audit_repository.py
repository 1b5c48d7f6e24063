"""
审计日志仓储实现
"""
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from domain.audit.entity import AuditEntry
from domain.audit.repository import AuditLogRepository
from infrastructure.models.audit import AuditLogModel


class SQLAlchemyAuditLogRepository(AuditLogRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: AuditLogModel) -> AuditEntry:
        return AuditEntry(
            id=model.id,
            action=model.action,
            entity_type=model.entity_type,
            entity_id=model.entity_id,
            actor=model.actor,
            metadata=model.extra_metadata or {},
            created_at=model.created_at,
        )

    async def add(self, entry: AuditEntry) -> AuditEntry:
        db_entry = AuditLogModel(
            actor=entry.actor,
            action=entry.action,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            extra_metadata=entry.metadata,
            created_at=entry.created_at,
        )
        self.session.add(db_entry)
        await self.session.flush()
        return self._to_entity(db_entry)

    async def list_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEntry]:
        result = await self.session.execute(
            select(AuditLogModel)
            .where(AuditLogModel.entity_type == entity_type, AuditLogModel.entity_id == entity_id)
            .order_by(AuditLogModel.created_at.asc(), AuditLogModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

"""
审计日志仓储接口
"""
from abc import ABC, abstractmethod
from typing import List

from .entity import AuditEntry


class AuditLogRepository(ABC):

    @abstractmethod
    async def add(self, entry: AuditEntry) -> AuditEntry:
        """追加审计记录"""
        pass

    @abstractmethod
    async def list_for_entity(self, entity_type: str, entity_id: str) -> List[AuditEntry]:
        pass

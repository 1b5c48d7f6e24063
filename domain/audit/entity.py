"""
审计日志实体：资金相关的状态变化均需留痕，写入后不可修改
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


@dataclass(frozen=True)
class AuditEntry:
    action: str            # refund.created, refund.status_synced, affiliate_payout_batch ...
    entity_type: str
    entity_id: str
    actor: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

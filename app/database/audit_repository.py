"""
Append-only action log for every per-case driver outcome.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

import structlog
from supabase import Client

from app.database.client import execute_query
from app.models.case import AuditRecord, Outcome

logger = structlog.get_logger(__name__)

AUDIT_TABLE = "reminder_logs"


class AuditSink(ABC):

    @abstractmethod
    async def append(
        self,
        case_id: str,
        action_kind: str,
        outcome: Outcome,
        detail: Optional[str],
        timestamp: datetime,
    ) -> AuditRecord:
        """Record one outcome. Raises DatabaseError if the write fails."""


class InMemoryAuditSink(AuditSink):

    def __init__(self):
        self.records: List[AuditRecord] = []

    async def append(
        self,
        case_id: str,
        action_kind: str,
        outcome: Outcome,
        detail: Optional[str],
        timestamp: datetime,
    ) -> AuditRecord:
        record = AuditRecord(
            case_id=case_id,
            action_kind=str(action_kind),
            outcome=outcome,
            detail=detail,
            timestamp=timestamp,
        )
        self.records.append(record)
        return record

    def for_case(self, case_id: str) -> List[AuditRecord]:
        return [r for r in self.records if r.case_id == case_id]


class SupabaseAuditSink(AuditSink):
    """Writes to the ``reminder_logs`` table."""

    def __init__(self, client: Client):
        self.client = client

    async def append(
        self,
        case_id: str,
        action_kind: str,
        outcome: Outcome,
        detail: Optional[str],
        timestamp: datetime,
    ) -> AuditRecord:
        record = AuditRecord(
            case_id=case_id,
            action_kind=str(action_kind),
            outcome=outcome,
            detail=detail,
            timestamp=timestamp,
        )
        execute_query(
            self.client.table(AUDIT_TABLE).insert({
                "reminder_id": record.case_id,
                "action_type": record.action_kind,
                "status": record.outcome.value,
                "error_message": record.detail,
                "sent_at": record.timestamp.isoformat(),
            }),
            "append_audit_record",
        )
        return record

"""
Audit Trail

Append-only audit log for every campaign mutation, plus the arbitration
score log. Each entry stores JSON-ready before/after documents and the
leaf-level changes between them.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel

from .models import (
    Actor,
    ArbitrationScoreRecord,
    AuditAction,
    AuditEntityType,
    AuditEntry,
    FieldChange,
)
from .protocols import NbaRepositoryProtocol

logger = logging.getLogger(__name__)


def to_document(value: Any) -> Any:
    """Convert models, enums and datetimes into plain JSON-ready data"""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {str(k): to_document(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_document(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _join(prefix: str, key: str) -> str:
    return f"{prefix}.{key}" if prefix else key


def _walk(path: str, before: Any, after: Any, changes: List[FieldChange]) -> None:
    if isinstance(before, dict) or isinstance(after, dict):
        if before is None:
            before = {}
        if after is None:
            after = {}
        if isinstance(before, dict) and isinstance(after, dict):
            for key in sorted(set(before) | set(after)):
                child = _join(path, key)
                if key not in before:
                    changes.append(FieldChange(path=child, kind="added", after=after[key]))
                elif key not in after:
                    changes.append(FieldChange(path=child, kind="removed", before=before[key]))
                else:
                    _walk(child, before[key], after[key], changes)
            return

    if isinstance(before, list) and isinstance(after, list):
        for index in range(max(len(before), len(after))):
            child = f"{path}[{index}]"
            if index >= len(before):
                changes.append(FieldChange(path=child, kind="added", after=after[index]))
            elif index >= len(after):
                changes.append(FieldChange(path=child, kind="removed", before=before[index]))
            else:
                _walk(child, before[index], after[index], changes)
        return

    if before != after:
        changes.append(FieldChange(path=path or "value", kind="changed", before=before, after=after))


def compute_diff(before: Any, after: Any) -> List[FieldChange]:
    """Leaf-level changes between two documents, in stable path order"""
    changes: List[FieldChange] = []
    _walk("", to_document(before), to_document(after), changes)
    return changes


class AuditTrail:
    """Writes and reads the audit and arbitration score logs"""

    def __init__(self, repository: NbaRepositoryProtocol):
        self.repository = repository

    async def record(
        self,
        actor: Actor,
        action: AuditAction,
        entity_type: AuditEntityType,
        entity_id: str,
        before: Any = None,
        after: Any = None,
    ) -> AuditEntry:
        """Append one audit entry with its computed changes"""
        before_doc = to_document(before)
        after_doc = to_document(after)
        entry = AuditEntry(
            actor_id=actor.actor_id,
            actor_role=actor.role,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            before=before_doc,
            after=after_doc,
            changes=compute_diff(before_doc, after_doc),
        )
        entry = await self.repository.append_audit_entry(entry)
        logger.debug(
            f"Audit {action.value} on {entity_type.value}:{entity_id} "
            f"by {actor.actor_id} ({len(entry.changes)} changes)"
        )
        return entry

    async def history(
        self,
        entity_type: AuditEntityType,
        entity_id: str,
    ) -> List[AuditEntry]:
        """Entries for one entity, newest first"""
        entries = await self.repository.list_audit_entries(entity_type, entity_id)
        return sorted(entries, key=lambda e: (e.created_at, e.sequence), reverse=True)

    async def record_score(self, record: ArbitrationScoreRecord) -> ArbitrationScoreRecord:
        """Append an arbitration score record"""
        record = await self.repository.add_score_record(record)
        logger.debug(
            f"Score recorded: customer={record.customer_id} nba={record.nba_id} "
            f"v{record.nba_version} score={record.score:.4f}"
        )
        return record

    async def score_history(self, customer_id: Optional[str] = None) -> List[ArbitrationScoreRecord]:
        records = await self.repository.list_score_records(customer_id)
        return sorted(records, key=lambda r: r.created_at, reverse=True)


__all__ = ["AuditTrail", "compute_diff", "to_document"]

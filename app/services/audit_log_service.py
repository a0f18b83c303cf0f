"""
Service for the append-only audit trail.

record() only adds the entry to the current transaction; the caller commits
it together with the mutation it describes, so each mutation yields exactly
one entry or none at all.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Query, Session

from app.constants.messaging import AuditAction
from app.core.context import RequestContext
from app.models.audit_log_entry import AuditLogEntry


class AuditLogService:
    """Create and read audit entries. No update API."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def record(
        self,
        action: AuditAction,
        context: RequestContext,
        target_id: object,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLogEntry:
        """Stage an audit entry in the caller's transaction (no commit)."""
        entry = AuditLogEntry(
            action=action.value,
            user_id=context.user_id,
            target_id=str(target_id),
            details=details or {},
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )
        self.db.add(entry)
        return entry

    def get_entries_query(
        self,
        action: Optional[AuditAction] = None,
        user_id: Optional[str] = None,
        target_id: Optional[str] = None,
    ) -> Query[AuditLogEntry]:
        """Get a query for audit entries, oldest first (for pagination)."""
        q = self.db.query(AuditLogEntry)
        if action is not None:
            q = q.filter(AuditLogEntry.action == action.value)
        if user_id is not None:
            q = q.filter(AuditLogEntry.user_id == user_id)
        if target_id is not None:
            q = q.filter(AuditLogEntry.target_id == target_id)
        return q.order_by(AuditLogEntry.created_at.asc(), AuditLogEntry.id.asc())

    def list_entries(
        self,
        action: Optional[AuditAction] = None,
        user_id: Optional[str] = None,
        target_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[AuditLogEntry]:
        return (
            self.get_entries_query(action=action, user_id=user_id, target_id=target_id)
            .offset(skip)
            .limit(limit)
            .all()
        )

    def purge_older_than(self, cutoff: datetime) -> int:
        """Delete entries created before cutoff. Only the retention sweep calls this."""
        deleted = (
            self.db.query(AuditLogEntry)
            .filter(AuditLogEntry.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted

"""Append-only audit trail helpers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from shared.records import ActorRole, AuditLog, new_record_id, now_ms

if TYPE_CHECKING:
    from collections.abc import Sequence

AUDIT_LOG_LIMIT = 1000


def create_audit_log(
    action: str,
    details: str,
    performed_by: str,
    performed_by_type: ActorRole,
    *,
    tournament_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog:
    return AuditLog(
        id=new_record_id("audit"),
        action=action,
        details=details,
        performed_by=performed_by,
        performed_by_type=performed_by_type,
        timestamp=now_ms(),
        tournament_id=tournament_id,
        metadata=metadata or {},
    )


def append_audit_log(logs: Sequence[AuditLog], entry: AuditLog, limit: int = AUDIT_LOG_LIMIT) -> list[AuditLog]:
    """Return a new newest-first log list with entry prepended and the oldest entries dropped past limit."""
    return [entry, *logs][:limit]

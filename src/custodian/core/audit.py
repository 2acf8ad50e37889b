"""Audit trail for retention and erasure accountability.

Audit events prove that retention actions happened. They are append-only:
nothing in the engine updates or deletes them. Callers pass counts and
identifiers, never the personal values that were removed.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import ColumnElement, select
from sqlalchemy.ext.asyncio import AsyncSession

from custodian.db.models.audit import AuditEvent, AuditEventType, AuditSeverity

MAX_QUERY_LIMIT = 1000


def _value(member: Enum | str | None) -> str | None:
    return member.value if isinstance(member, Enum) else member


class AuditLogger:
    """Appends and queries audit events within a caller-owned session.

    The caller commits; ``log_event`` only flushes so the event id is
    assigned.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log_event(
        self,
        event_type: AuditEventType | str,
        event_data: dict[str, Any],
        severity: AuditSeverity | str = AuditSeverity.INFO,
        tenant_id: str | None = None,
        actor_id: str | None = None,
        subject_id: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
    ) -> AuditEvent:
        """Append an audit event.

        Args:
            event_type: What happened (``data.erased``, ``data.retention_applied``, ...)
            event_data: JSON-serialisable counts and identifiers
            severity: Event severity
            tenant_id: Owning tenant (None for runs across all tenants)
            actor_id: Operator or component that caused the event
            subject_id: Data subject the event concerns
            resource_type: Kind of resource acted on (purge_run, retention_policy, ...)
            resource_id: Identifier of that resource

        Returns:
            The flushed AuditEvent
        """
        event = AuditEvent(
            event_type=_value(event_type),
            severity=_value(severity),
            tenant_id=tenant_id,
            actor_id=actor_id,
            subject_id=subject_id,
            resource_type=resource_type,
            resource_id=resource_id,
            event_data=event_data,
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def query_events(
        self,
        tenant_id: str | None = None,
        event_type: AuditEventType | str | None = None,
        subject_id: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        severity: AuditSeverity | str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditEvent]:
        """Query audit events, newest first.

        Every filter left as None is ignored. ``limit`` is capped at
        ``MAX_QUERY_LIMIT``.
        """
        equals = (
            (AuditEvent.tenant_id, tenant_id),
            (AuditEvent.event_type, _value(event_type)),
            (AuditEvent.subject_id, subject_id),
            (AuditEvent.severity, _value(severity)),
        )
        conditions: list[ColumnElement[bool]] = [
            col == value for col, value in equals if value is not None
        ]
        if start_date is not None:
            conditions.append(AuditEvent.created_at >= start_date)
        if end_date is not None:
            conditions.append(AuditEvent.created_at <= end_date)

        query = (
            select(AuditEvent)
            .where(*conditions)
            .order_by(AuditEvent.created_at.desc(), AuditEvent.audit_id.desc())
            .limit(min(limit, MAX_QUERY_LIMIT))
            .offset(offset)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def events_for_resource(self, resource_type: str, resource_id: str) -> list[AuditEvent]:
        """All events recorded against one resource, oldest first."""
        query = (
            select(AuditEvent)
            .where(AuditEvent.resource_type == resource_type, AuditEvent.resource_id == resource_id)
            .order_by(AuditEvent.created_at, AuditEvent.audit_id)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

"""Audit event models for compliance and accountability."""

from datetime import UTC, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column
from uuid_utils.compat import uuid7

from .base import Base, PortableJSON, PortableUUID


class AuditEventType(str, Enum):
    """Types of audit events written by the retention engine."""

    # Data lifecycle
    DATA_RETENTION_APPLIED = "data.retention_applied"
    DATA_GRACE_CLEANUP = "data.grace_cleanup"
    DATA_ERASED = "data.erased"

    # Policy administration
    POLICY_OVERRIDDEN = "retention.policy_overridden"

    # Notices
    GUARDIAN_NOTIFIED = "retention.guardian_notified"

    # Compliance
    COMPLIANCE_VIOLATION = "compliance.violation"


class AuditSeverity(str, Enum):
    """Severity levels for audit events."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(Base):
    """Immutable audit log entry.

    Event data holds counts, collection names and category identifiers only;
    never the personal values that were purged or erased.
    """

    __tablename__ = "audit_events"

    # UUIDv7 is time-ordered, making audit events naturally sortable by ID
    audit_id: Mapped[UUID] = mapped_column(PortableUUID(), primary_key=True, default=uuid7)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="info")

    # Context
    tenant_id: Mapped[str | None] = mapped_column(String(255), nullable=True)  # null = all tenants
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    subject_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    resource_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    resource_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    event_data: Mapped[dict] = mapped_column(PortableJSON(), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    __table_args__ = (
        Index("idx_audit_tenant", "tenant_id"),
        Index("idx_audit_event_type", "event_type"),
        Index("idx_audit_subject", "subject_id"),
        Index("idx_audit_created", "created_at"),
        Index("idx_audit_resource", "resource_type", "resource_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEvent(id={self.audit_id}, type={self.event_type}, "
            f"severity={self.severity})>"
        )

"""Database models for Custodian."""

from .audit import AuditEvent, AuditEventType, AuditSeverity
from .base import Base, PortableJSON, PortableUUID
from .retention import RetentionAuditRecord

__all__ = [
    "Base",
    "PortableJSON",
    "PortableUUID",
    "AuditEvent",
    "AuditEventType",
    "AuditSeverity",
    "RetentionAuditRecord",
]

"""Policy-driven data retention and purge engine.

The engine classifies data into regulatory categories, discovers records
that have outlived their retention window and disposes of them with one of
five strategies, leaving an audit trail that contains no personal data.

The service facade lives in ``custodian.retention.service``.
"""

from custodian.retention.anonymizer import Pseudonymizer
from custodian.retention.policies import DEFAULT_RETENTION_POLICIES, PolicyRegistry
from custodian.retention.sources import DATA_SOURCE_REGISTRY, DataSourceRegistry
from custodian.retention.types import (
    CategoryPurgeSummary,
    ComplianceFramework,
    ComplianceReport,
    ComplianceStatus,
    ComplianceViolation,
    DataSource,
    ErasureResult,
    GuardianContact,
    GuardianNoticeResult,
    JobStatus,
    PolicyInfo,
    PolicyStatus,
    PurgeAction,
    PurgeAuditEntry,
    PurgeJob,
    PurgeRunSummary,
    PurgeStrategy,
    RetentionCategory,
    RetentionDashboard,
    RetentionPolicy,
    TenantOverride,
    ViolationSeverity,
)

__all__ = [
    # Registries
    "DEFAULT_RETENTION_POLICIES",
    "DATA_SOURCE_REGISTRY",
    "PolicyRegistry",
    "DataSourceRegistry",
    "Pseudonymizer",
    # Enums
    "ComplianceFramework",
    "ComplianceStatus",
    "JobStatus",
    "PurgeAction",
    "PurgeStrategy",
    "RetentionCategory",
    "ViolationSeverity",
    # Models
    "CategoryPurgeSummary",
    "ComplianceReport",
    "ComplianceViolation",
    "DataSource",
    "ErasureResult",
    "GuardianContact",
    "GuardianNoticeResult",
    "PolicyInfo",
    "PolicyStatus",
    "PurgeAuditEntry",
    "PurgeJob",
    "PurgeRunSummary",
    "RetentionDashboard",
    "RetentionPolicy",
    "TenantOverride",
]

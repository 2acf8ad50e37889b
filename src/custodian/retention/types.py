"""Data retention type definitions.

This module defines the core types for the retention and purge engine:
- RetentionCategory: Regulatory classes of data subject to retention rules
- ComplianceFramework: Regulatory regimes a policy is designed to satisfy
- PurgeStrategy: Disposal mechanisms for expired records
- RetentionPolicy / DataSource: Immutable registry entries
- PurgeJob / PurgeAuditEntry: Mutable per-run units of work
- ComplianceReport / PurgeRunSummary: Durable run artefacts
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from uuid_utils.compat import uuid7


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class RetentionCategory(str, Enum):
    """Regulatory classification of data.

    Each category carries distinct retention obligations.
    """

    LEARNER_PII = "learner_pii"
    """Names, dates of birth, guardian emails."""

    LEARNING_SESSIONS = "learning_sessions"
    """Reading and phonics sessions."""

    ASSESSMENT_DATA = "assessment_data"
    """Scores and mastery estimates."""

    BEHAVIOURAL_ANALYTICS = "behavioural_analytics"
    """Click streams and engagement metrics."""

    AUDIO_RECORDINGS = "audio_recordings"
    """Voice samples (biometric)."""

    AI_GENERATION_LOGS = "ai_generation_logs"
    """Prompts and responses exchanged with AI providers."""

    PAYMENT_RECORDS = "payment_records"
    """Transactions, invoices, refunds."""

    AUTHENTICATION_LOGS = "authentication_logs"
    """Login attempts and token events."""

    SECURITY_AUDIT_LOGS = "security_audit_logs"
    """Security audit trails."""

    CONTENT_CREATION = "content_creation"
    """User-created content drafts."""

    NOTIFICATION_LOGS = "notification_logs"
    """Email/SMS/push delivery records."""

    DEVICE_SYNC_LOGS = "device_sync_logs"
    """Device sync payloads and conflict logs."""

    OBSERVABILITY_METRICS = "observability_metrics"
    """Metric data points."""

    SUPPORT_TICKETS = "support_tickets"
    """Feedback, bug reports, satisfaction responses."""


class ComplianceFramework(str, Enum):
    """Regulatory regimes governing retention."""

    COPPA = "coppa"
    """US Children's Online Privacy Protection Act."""

    GDPR = "gdpr"
    """EU General Data Protection Regulation."""

    FERPA = "ferpa"
    """US Family Educational Rights and Privacy Act."""

    APP = "app"
    """Australian Privacy Principles."""

    CCPA = "ccpa"
    """California Consumer Privacy Act."""


class PurgeStrategy(str, Enum):
    """How expired records are disposed of."""

    SOFT_DELETE = "soft_delete"
    """Set the soft-delete marker; recoverable during the grace period."""

    HARD_DELETE = "hard_delete"
    """Physically remove rows."""

    ANONYMISE = "anonymise"
    """Replace PII with deterministic pseudonymous tokens."""

    AGGREGATE_AND_DELETE = "aggregate_delete"
    """Roll rows into daily count buckets, then remove them."""

    ARCHIVE_AND_DELETE = "archive_delete"
    """Copy rows to cold storage, then remove them."""


class JobStatus(str, Enum):
    """Lifecycle of a purge job: pending -> running -> completed|failed|cancelled."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PurgeAction(str, Enum):
    """Kinds of batch-level audit trail entries."""

    SOFT_DELETE_BATCH = "soft_delete_batch"
    HARD_DELETE_BATCH = "hard_delete_batch"
    ANONYMISE_BATCH = "anonymise_batch"
    AGGREGATE_BATCH = "aggregate_batch"
    ARCHIVE_BATCH = "archive_batch"
    GRACE_CLEANUP_BATCH = "grace_cleanup_batch"
    DRY_RUN_SIMULATED = "dry_run_simulated"


class ViolationSeverity(str, Enum):
    """Severity of a compliance violation."""

    WARNING = "warning"
    CRITICAL = "critical"


class ComplianceStatus(str, Enum):
    """Operator-facing compliance state."""

    COMPLIANT = "compliant"
    ACTION_NEEDED = "action_needed"


# =============================================================================
# Registry entries
# =============================================================================


class RetentionPolicy(BaseModel):
    """Immutable retention rule for one data category.

    ``min_retention_days <= retention_days <= max_retention_days`` holds for
    the base policy and for every effective (tenant-overridden) policy.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    """Stable policy identifier (e.g. ``pol_learner_pii``)."""

    category: RetentionCategory
    """Category of data this policy governs."""

    frameworks: tuple[ComplianceFramework, ...]
    """Regulations this policy satisfies."""

    retention_days: int
    """Days to keep data after the age column's timestamp."""

    grace_period_days: int = 0
    """Days a soft-deleted row stays recoverable before hard purge."""

    strategy: PurgeStrategy
    """Disposal mechanism."""

    batch_size: int = 100
    """Rows per purge batch."""

    requires_guardian_notice: bool = False
    """Whether a guardian must be notified before removal (COPPA)."""

    description: str = ""
    """Human-readable explanation."""

    legal_basis: str = ""
    """Regulatory citation."""

    tenant_overridable: bool = False
    """Whether tenants may adjust retention within bounds."""

    min_retention_days: int
    """Regulatory floor."""

    max_retention_days: int
    """Regulatory ceiling."""

    @model_validator(mode="after")
    def _check_bounds(self) -> "RetentionPolicy":
        if not self.min_retention_days <= self.retention_days <= self.max_retention_days:
            raise ValueError(
                f"retention_days {self.retention_days} outside "
                f"[{self.min_retention_days}, {self.max_retention_days}]"
            )
        if self.grace_period_days < 0:
            raise ValueError("grace_period_days cannot be negative")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        return self

    @property
    def retention_period(self) -> timedelta:
        """Get retention period as timedelta."""
        return timedelta(days=self.retention_days)

    @property
    def grace_period(self) -> timedelta:
        """Get grace period as timedelta."""
        return timedelta(days=self.grace_period_days)

    def cutoff(self, now: datetime | None = None) -> datetime:
        """Records whose age column is older than this are eligible."""
        return (now or utc_now()) - self.retention_period


class DataSource(BaseModel):
    """Immutable mapping of a physical collection to a retention category."""

    model_config = ConfigDict(frozen=True)

    collection: str
    """Table name."""

    category: RetentionCategory
    """Category this collection belongs to."""

    age_column: str
    """Timestamp column determining eligibility."""

    tenant_column: str = "tenantId"
    """Multi-tenant isolation column."""

    soft_delete_column: str | None = None
    """Soft-delete marker column (``deletedAt`` when unset)."""

    pii_columns: tuple[str, ...] = ()
    """Columns subject to anonymisation."""

    aggregation_target: str | None = None
    """Daily bucket table for aggregate-and-delete."""

    archive_target: str | None = None
    """Cold storage table for archive-and-delete."""

    dependent_collections: tuple[str, ...] = ()
    """Child collections that must be purged before this one."""

    primary_key: str = "id"
    """Row identity used to bound batches."""

    subject_column: str | None = "userId"
    """Column linking rows to a data subject; None if not subject-linked."""

    anonymized_column: str = "anonymisedAt"
    """Marker set once a row has been anonymised."""

    @property
    def soft_delete_marker(self) -> str:
        """Soft-delete column, defaulting to ``deletedAt``."""
        return self.soft_delete_column or "deletedAt"


class TenantOverride(BaseModel):
    """Per-tenant delta to a base policy. Replaced wholesale on each write."""

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    policy_id: str
    retention_days: int | None = None
    grace_period_days: int | None = None
    updated_at: datetime = Field(default_factory=utc_now)

    def apply(self, base: RetentionPolicy) -> RetentionPolicy:
        """Merge this override onto base."""
        changes: dict[str, Any] = {}
        if self.retention_days is not None:
            changes["retention_days"] = self.retention_days
        if self.grace_period_days is not None:
            changes["grace_period_days"] = self.grace_period_days
        return base.model_copy(update=changes)


# =============================================================================
# Per-run state
# =============================================================================


@dataclass
class PurgeAuditEntry:
    """One batch-level entry in a job's audit trail."""

    action: PurgeAction
    record_count: int
    collection: str
    timestamp: datetime = field(default_factory=utc_now)
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "record_count": self.record_count,
            "collection": self.collection,
            "details": self.details,
        }


@dataclass
class PurgeJob:
    """Unit of purge work for one (policy, data source) pair within one run.

    Created by discovery, mutated only by the executor of the owning run.
    """

    policy_id: str
    category: RetentionCategory
    collection: str
    strategy: PurgeStrategy
    batch_size: int
    retention_days: int
    estimated_records: int
    id: str = field(default_factory=lambda: f"purge_{uuid7().hex}")
    processed_records: int = 0
    failed_records: int = 0
    status: JobStatus = JobStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    audit_trail: list[PurgeAuditEntry] = field(default_factory=list)

    def record_batch(
        self,
        action: PurgeAction,
        record_count: int,
        collection: str | None = None,
        **details: Any,
    ) -> PurgeAuditEntry:
        """Append an audit entry for a completed batch."""
        entry = PurgeAuditEntry(
            action=action,
            record_count=record_count,
            collection=collection or self.collection,
            details=details,
        )
        self.audit_trail.append(entry)
        return entry

    @property
    def shortfall(self) -> int:
        """Estimated records not processed."""
        return max(0, self.estimated_records - self.processed_records)


# =============================================================================
# Run artefacts
# =============================================================================


class ComplianceViolation(BaseModel):
    """A regulatory shortfall identified in a run."""

    framework: ComplianceFramework
    policy_id: str
    description: str
    severity: ViolationSeverity
    affected_record_count: int


class ComplianceReport(BaseModel):
    """Certification report for a purge run."""

    frameworks: list[ComplianceFramework] = Field(default_factory=list)
    all_policies_enforced: bool = True
    violations: list[ComplianceViolation] = Field(default_factory=list)
    certification_timestamp: datetime = Field(default_factory=utc_now)


class CategoryPurgeSummary(BaseModel):
    """Per-category totals of a run."""

    category: RetentionCategory
    strategy: PurgeStrategy
    collections: list[str] = Field(default_factory=list)
    records_purged: int = 0
    records_failed: int = 0


class PurgeRunSummary(BaseModel):
    """Durable summary of a purge run.

    Contains counts, collection names and category identifiers only.
    """

    run_id: str = Field(default_factory=lambda: f"run_{uuid7().hex}")
    tenant_id: str | None = None
    dry_run: bool = False
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    total_jobs: int = 0
    completed_jobs: int = 0
    failed_jobs: int = 0
    cancelled_jobs: int = 0
    total_records_purged: int = 0
    total_records_failed: int = 0
    category_summaries: dict[RetentionCategory, CategoryPurgeSummary] = Field(
        default_factory=dict
    )
    compliance_report: ComplianceReport = Field(default_factory=ComplianceReport)


class ErasureResult(BaseModel):
    """Outcome of a right-to-erasure request."""

    tables_processed: int = 0
    records_deleted: int = 0
    records_anonymised: int = 0
    records_retained: int = 0
    """Rows left untouched under an exemption (security audit logs)."""


class GuardianContact(BaseModel):
    """Responsible contact for a data subject."""

    email: str
    subject_name: str | None = None


class GuardianNoticeResult(BaseModel):
    """Outcome of a guardian notice."""

    notified: bool
    categories: list[RetentionCategory] = Field(default_factory=list)
    message_id: str | None = None


class PolicyInfo(BaseModel):
    """Operator-facing description of a policy."""

    id: str
    category: RetentionCategory
    retention_days: int
    strategy: PurgeStrategy
    frameworks: list[ComplianceFramework]
    tenant_overridable: bool
    description: str


class PolicyStatus(BaseModel):
    """Current record counts for one policy."""

    policy_id: str
    category: RetentionCategory
    retention_days: int
    strategy: PurgeStrategy
    total_records: int = 0
    expired_records: int = 0
    compliance_status: ComplianceStatus = ComplianceStatus.COMPLIANT
    frameworks: list[ComplianceFramework] = Field(default_factory=list)


class RetentionDashboard(BaseModel):
    """Read-only operational summary."""

    generated_at: datetime = Field(default_factory=utc_now)
    tenant_id: str = "all"
    policies: list[PolicyStatus] = Field(default_factory=list)
    total_expired_records: int = 0
    overall_compliance: ComplianceStatus = ComplianceStatus.COMPLIANT
    next_scheduled_purge: datetime

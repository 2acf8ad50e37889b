"""Unit tests for retention type definitions."""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from custodian.retention.types import (
    JobStatus,
    PurgeAction,
    PurgeJob,
    PurgeRunSummary,
    PurgeStrategy,
    RetentionCategory,
    RetentionPolicy,
    TenantOverride,
)


def make_policy(**overrides) -> RetentionPolicy:
    fields = {
        "id": "pol_test",
        "category": RetentionCategory.AUTHENTICATION_LOGS,
        "frameworks": (),
        "retention_days": 90,
        "strategy": PurgeStrategy.HARD_DELETE,
        "min_retention_days": 30,
        "max_retention_days": 365,
    }
    fields.update(overrides)
    return RetentionPolicy(**fields)


def make_job(**overrides) -> PurgeJob:
    fields = {
        "policy_id": "pol_test",
        "category": RetentionCategory.AUTHENTICATION_LOGS,
        "collection": "AuthLog",
        "strategy": PurgeStrategy.HARD_DELETE,
        "batch_size": 100,
        "retention_days": 90,
        "estimated_records": 10,
    }
    fields.update(overrides)
    return PurgeJob(**fields)


class TestRetentionPolicy:
    """Tests for RetentionPolicy."""

    def test_valid_policy(self):
        """Test a policy within its bounds."""
        policy = make_policy()

        assert policy.retention_period == timedelta(days=90)
        assert policy.grace_period == timedelta(0)
        assert policy.batch_size == 100
        assert policy.requires_guardian_notice is False

    def test_retention_below_minimum_rejected(self):
        """Test retention below the regulatory floor is rejected."""
        with pytest.raises(ValidationError, match="outside"):
            make_policy(retention_days=10)

    def test_retention_above_maximum_rejected(self):
        """Test retention above the regulatory ceiling is rejected."""
        with pytest.raises(ValidationError, match="outside"):
            make_policy(retention_days=400)

    def test_negative_grace_period_rejected(self):
        """Test negative grace period is rejected."""
        with pytest.raises(ValidationError):
            make_policy(grace_period_days=-1)

    def test_zero_batch_size_rejected(self):
        """Test non-positive batch size is rejected."""
        with pytest.raises(ValidationError):
            make_policy(batch_size=0)

    def test_policy_is_immutable(self):
        """Test policies cannot be mutated."""
        policy = make_policy()

        with pytest.raises(ValidationError):
            policy.retention_days = 120

    def test_cutoff(self):
        """Test cutoff is now minus the retention period."""
        policy = make_policy()
        now = datetime(2026, 6, 1, 12, 0, tzinfo=UTC)

        assert policy.cutoff(now) == datetime(2026, 3, 3, 12, 0, tzinfo=UTC)


class TestTenantOverride:
    """Tests for TenantOverride."""

    def test_apply_retention_only(self):
        """Test only the supplied fields replace the base values."""
        base = make_policy(grace_period_days=7)
        override = TenantOverride(tenant_id="tenant-a", policy_id=base.id, retention_days=60)

        effective = override.apply(base)

        assert effective.retention_days == 60
        assert effective.grace_period_days == 7
        assert base.retention_days == 90

    def test_apply_grace_only(self):
        """Test grace-only override keeps base retention."""
        base = make_policy()
        override = TenantOverride(tenant_id="tenant-a", policy_id=base.id, grace_period_days=14)

        effective = override.apply(base)

        assert effective.retention_days == 90
        assert effective.grace_period_days == 14


class TestPurgeJob:
    """Tests for PurgeJob."""

    def test_defaults(self):
        """Test a new job is pending with empty progress."""
        job = make_job()

        assert job.id.startswith("purge_")
        assert job.status == JobStatus.PENDING
        assert job.processed_records == 0
        assert job.failed_records == 0
        assert job.audit_trail == []

    def test_unique_ids(self):
        """Test job ids are unique."""
        assert make_job().id != make_job().id

    def test_shortfall(self):
        """Test shortfall never goes negative."""
        job = make_job(estimated_records=10)

        job.processed_records = 4
        assert job.shortfall == 6

        job.processed_records = 12
        assert job.shortfall == 0

    def test_record_batch(self):
        """Test recording a batch appends an audit entry."""
        job = make_job()

        entry = job.record_batch(PurgeAction.HARD_DELETE_BATCH, 25, batch=1)

        assert job.audit_trail == [entry]
        assert entry.collection == "AuthLog"
        assert entry.details == {"batch": 1}

        data = entry.to_dict()
        assert data["action"] == "hard_delete_batch"
        assert data["record_count"] == 25
        assert data["collection"] == "AuthLog"


class TestPurgeRunSummary:
    """Tests for PurgeRunSummary."""

    def test_defaults(self):
        """Test a new summary is empty and certified."""
        summary = PurgeRunSummary()

        assert summary.run_id.startswith("run_")
        assert summary.tenant_id is None
        assert summary.total_jobs == 0
        assert summary.category_summaries == {}
        assert summary.compliance_report.all_policies_enforced is True
        assert summary.compliance_report.violations == []

    def test_serializes_to_json(self):
        """Test the summary dumps to JSON-compatible data."""
        summary = PurgeRunSummary(tenant_id="tenant-a", dry_run=True)

        data = summary.model_dump(mode="json")

        assert data["tenant_id"] == "tenant-a"
        assert data["dry_run"] is True
        assert isinstance(data["started_at"], str)

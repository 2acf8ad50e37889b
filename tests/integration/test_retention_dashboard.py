"""Integration tests for the retention dashboard."""

from datetime import timedelta

import pytest

from custodian.retention.dashboard import DashboardReporter
from custodian.retention.discovery import DiscoveryEngine
from custodian.retention.overrides import TenantOverrideStore
from custodian.retention.policies import PolicyRegistry
from custodian.retention.sources import DataSourceRegistry
from custodian.retention.types import (
    ComplianceStatus,
    DataSource,
    RetentionCategory,
    utc_now,
)


def days_ago(days: int):
    return utc_now() - timedelta(days=days)


@pytest.fixture
async def auth_logs(collections):
    await collections.insert(
        "AuthLog",
        [
            {"id": "a1", "tenantId": "tenant-a", "createdAt": days_ago(120)},
            {"id": "a2", "tenantId": "tenant-a", "createdAt": days_ago(100)},
            {"id": "a3", "tenantId": "tenant-a", "createdAt": days_ago(5)},
            {"id": "b1", "tenantId": "tenant-b", "createdAt": days_ago(5)},
        ],
    )
    return collections


def status_of(dashboard, policy_id: str):
    return next(s for s in dashboard.policies if s.policy_id == policy_id)


class TestDashboard:
    """Tests for DataRetentionService.get_dashboard."""

    @pytest.mark.asyncio
    async def test_counts_per_policy(self, service, auth_logs):
        """Test totals, expired counts and compliance status."""
        dashboard = await service.get_dashboard()

        assert dashboard.tenant_id == "all"
        assert len(dashboard.policies) == 14
        auth = status_of(dashboard, "pol_auth_logs")
        assert auth.total_records == 4
        assert auth.expired_records == 2
        assert auth.compliance_status == ComplianceStatus.ACTION_NEEDED
        assert status_of(dashboard, "pol_payment_records").compliance_status == (
            ComplianceStatus.COMPLIANT
        )
        assert dashboard.total_expired_records == 2
        assert dashboard.overall_compliance == ComplianceStatus.ACTION_NEEDED

    @pytest.mark.asyncio
    async def test_compliant_after_purge(self, service, auth_logs):
        """Test a live purge clears the expired count."""
        await service.execute_purge_run(dry_run=False)

        dashboard = await service.get_dashboard()

        assert dashboard.total_expired_records == 0
        assert dashboard.overall_compliance == ComplianceStatus.COMPLIANT
        assert status_of(dashboard, "pol_auth_logs").total_records == 2

    @pytest.mark.asyncio
    async def test_tenant_scope_and_override(self, service, auth_logs):
        """Test a tenant dashboard counts its rows under its effective policy."""
        await service.set_override("pol_auth_logs", "tenant-a", retention_days=365)

        dashboard = await service.get_dashboard(tenant_id="tenant-a")

        auth = status_of(dashboard, "pol_auth_logs")
        assert dashboard.tenant_id == "tenant-a"
        assert auth.retention_days == 365
        assert auth.total_records == 3
        assert auth.expired_records == 0

    @pytest.mark.asyncio
    async def test_next_scheduled_purge(self, service):
        """Test the next purge lies ahead at the configured hour."""
        dashboard = await service.get_dashboard()

        assert dashboard.next_scheduled_purge > dashboard.generated_at
        assert dashboard.next_scheduled_purge.hour == 3
        assert dashboard.next_scheduled_purge - dashboard.generated_at <= timedelta(days=1)

    @pytest.mark.asyncio
    async def test_missing_collection_counts_zero(self, store, auth_logs):
        """Test a collection without a table contributes nothing."""
        policies = PolicyRegistry()
        sources = DataSourceRegistry(
            [
                DataSourceRegistry().get("AuthLog"),
                DataSource(
                    collection="LegacyAuthLog",
                    category=RetentionCategory.AUTHENTICATION_LOGS,
                    age_column="createdAt",
                ),
            ]
        )
        overrides = TenantOverrideStore(policies)
        reporter = DashboardReporter(
            store, policies, sources, overrides, DiscoveryEngine(store, policies, sources, overrides)
        )

        dashboard = await reporter.get_dashboard()

        auth = status_of(dashboard, "pol_auth_logs")
        assert auth.total_records == 4
        assert auth.expired_records == 2
